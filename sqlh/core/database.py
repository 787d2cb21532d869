"""
Database initialization and connection management for sqlh.

This module handles:
- Setting up SQLite with WAL mode, a busy timeout and foreign keys
- Running units of work inside serializable transactions (Helper.in_transaction)
- The query surface shared by the helper and transactions (fetch_many,
  fetch_one, execute)
"""

from __future__ import annotations

import sqlite3
import threading
import weakref
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    TypeVar,
    runtime_checkable,
)

from sqlh.core.config import Config
from sqlh.core.deadline import Deadline, enforce_deadline
from sqlh.core.errors import (
    DatabaseConnectionError,
    DeadlineError,
    NoRowsError,
    TransactionClosedError,
)
from sqlh.core.migrations import Migrator
from sqlh.core.rows import scan_row
from sqlh.utils.database_utils import ensure_autocommit, run_in_transaction
from sqlh.utils.logging_config import get_null_logger

if TYPE_CHECKING:
    from sqlh.services.job_queue import JobQueue


T = TypeVar("T")

CONNECT_TIMEOUT_SECONDS = 10.0
BUSY_TIMEOUT_MS = 5000

# Applied verbatim to every connection. Changing them breaks compatibility
# with databases created under this layer.
CONNECTION_OPTIONS: Dict[str, str] = {
    "_journal": "WAL",
    "_timeout": str(BUSY_TIMEOUT_MS),
    "_fk": "true",
}


class ConnectionTarget:
    """Database file location plus the fixed connection options."""

    def __init__(self, path: str) -> None:
        self.path = str(path)
        self.options = dict(CONNECTION_OPTIONS)

    @property
    def dsn(self) -> str:
        query = "&".join(f"{key}={value}" for key, value in self.options.items())
        return f"{self.path}?{query}"

    def __repr__(self) -> str:
        return f"ConnectionTarget({self.dsn!r})"


def configure_connection(conn: sqlite3.Connection) -> sqlite3.Connection:
    """
    Apply the connection options to a fresh connection.

    - Busy timeout, so concurrent writers wait on each other instead of erroring immediately
    - WAL mode (persisted in the database, but set every time for the first run)
    - Foreign key checks, which SQLite leaves off by default
    """
    conn.row_factory = sqlite3.Row
    conn.execute(f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@runtime_checkable
class QueryExecutor(Protocol):
    """Query operations available both on the helper and inside a transaction."""

    def fetch_many(
        self,
        query: str,
        *args: Any,
        into: Optional[Callable[..., Any]] = None,
        deadline: Optional[Deadline] = None,
    ) -> List[Any]: ...

    def fetch_one(
        self,
        query: str,
        *args: Any,
        into: Optional[Callable[..., Any]] = None,
        deadline: Optional[Deadline] = None,
    ) -> Any: ...

    def execute(
        self, query: str, *args: Any, deadline: Optional[Deadline] = None
    ) -> None: ...


def _fetch_many(
    conn: sqlite3.Connection,
    query: str,
    args: Sequence[Any],
    into: Optional[Callable[..., Any]],
    deadline: Optional[Deadline],
) -> List[Any]:
    with enforce_deadline(conn, deadline):
        rows = conn.execute(query, args).fetchall()
    return [scan_row(row, into) for row in rows]


def _fetch_one(
    conn: sqlite3.Connection,
    query: str,
    args: Sequence[Any],
    into: Optional[Callable[..., Any]],
    deadline: Optional[Deadline],
) -> Any:
    with enforce_deadline(conn, deadline):
        cursor = conn.execute(query, args)
        try:
            row = cursor.fetchone()
        finally:
            cursor.close()
    if row is None:
        raise NoRowsError()
    return scan_row(row, into)


def _execute(
    conn: sqlite3.Connection,
    query: str,
    args: Sequence[Any],
    deadline: Optional[Deadline],
) -> None:
    with enforce_deadline(conn, deadline):
        conn.execute(query, args).close()


class Tx:
    """
    Handle over one in-flight transaction.

    Only valid inside the callback given to Helper.in_transaction; any use
    after the transaction finished raises TransactionClosedError.
    """

    def __init__(self, conn: sqlite3.Connection, deadline: Optional[Deadline] = None) -> None:
        self._conn = conn
        self._deadline = deadline
        self._closed = False

    @property
    def conn(self) -> sqlite3.Connection:
        if self._closed:
            raise TransactionClosedError("transaction has already been committed or rolled back")
        return self._conn

    @property
    def closed(self) -> bool:
        return self._closed

    def _invalidate(self) -> None:
        self._closed = True

    def fetch_many(
        self,
        query: str,
        *args: Any,
        into: Optional[Callable[..., Any]] = None,
        deadline: Optional[Deadline] = None,
    ) -> List[Any]:
        """Return all rows matched by ``query``, shaped by ``into``."""
        return _fetch_many(self.conn, query, args, into, deadline or self._deadline)

    def fetch_one(
        self,
        query: str,
        *args: Any,
        into: Optional[Callable[..., Any]] = None,
        deadline: Optional[Deadline] = None,
    ) -> Any:
        """Return the first row matched by ``query``; raise NoRowsError if none."""
        return _fetch_one(self.conn, query, args, into, deadline or self._deadline)

    def execute(self, query: str, *args: Any, deadline: Optional[Deadline] = None) -> None:
        """Run a statement that returns no rows."""
        _execute(self.conn, query, args, deadline or self._deadline)


class _ThreadConnection:
    """Thread-local slot holding one thread's connection."""

    __slots__ = ("conn", "generation", "__weakref__")

    def __init__(self, conn: sqlite3.Connection, generation: int) -> None:
        self.conn = conn
        self.generation = generation


def _release_connection(helper_ref: "weakref.ref[Helper]", conn: sqlite3.Connection) -> None:
    # Runs when the owning thread's locals are freed, i.e. when the thread ends.
    helper = helper_ref()
    if helper is not None:
        helper._forget(conn)
    conn.close()


class Helper:
    """
    Owner of the database connection for the lifetime of a process or test.

    Each thread gets its own configured connection, opened lazily on first
    use, so the helper can be shared freely between threads. Transactions
    are bound to the calling thread's connection. A thread's connection is
    closed when the thread ends, or for all threads at close().
    """

    def __init__(self, path: Optional[str] = None, log: Any = None) -> None:
        """
        Args:
            path: SQLite database file. If None, uses Config.DB_PATH.
            log: structlog logger. If None, logs are discarded.
        """
        self.log = log if log is not None else get_null_logger()
        self.target = ConnectionTarget(path if path is not None else Config.DB_PATH)
        self.path = self.target.dsn
        self.jobs_queue: Optional[JobQueue] = None

        # Reentrant: a thread's release callback may run while it holds the lock.
        self._lock = threading.RLock()
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._generation = 0
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def connection_count(self) -> int:
        """Number of open per-thread connections."""
        with self._lock:
            return len(self._connections)

    def connect(self) -> None:
        """
        Open the database within a bounded startup deadline.

        Raises:
            DatabaseConnectionError: If the helper is already connected, or
                the database cannot be opened and configured in time.
        """
        with self._lock:
            if self._connected:
                raise DatabaseConnectionError("database is already connected")

            try:
                self.log.info("starting_database", path=self.path)
            except Exception:  # pragma: no cover - logging is best-effort
                pass

            conn = self._open(Deadline.after(CONNECT_TIMEOUT_SECONDS))
            self._connections.append(conn)
            self._connected = True
            generation = self._generation
        self._bind(conn, generation)

    def _open(self, deadline: Deadline) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                self.target.path,
                timeout=BUSY_TIMEOUT_MS / 1000,
                isolation_level=None,
                check_same_thread=False,
            )
        except sqlite3.Error as exc:
            raise DatabaseConnectionError(
                f"error connecting to database {self.path}: {exc}"
            ) from exc

        try:
            with enforce_deadline(conn, deadline):
                configure_connection(conn)
                conn.execute("select 1").fetchone()
        except (sqlite3.Error, DeadlineError) as exc:
            conn.close()
            raise DatabaseConnectionError(
                f"error connecting to database {self.path}: {exc}"
            ) from exc

        return conn

    def _connection(self) -> sqlite3.Connection:
        if not self._connected:
            raise DatabaseConnectionError("database is not connected")

        slot = getattr(self._local, "slot", None)
        if slot is not None and slot.generation == self._generation:
            return slot.conn

        conn = self._open(Deadline.after(CONNECT_TIMEOUT_SECONDS))
        with self._lock:
            if not self._connected:
                conn.close()
                raise DatabaseConnectionError("database is not connected")
            self._connections.append(conn)
            generation = self._generation
        self._bind(conn, generation)
        return conn

    def _bind(self, conn: sqlite3.Connection, generation: int) -> None:
        slot = _ThreadConnection(conn, generation)
        weakref.finalize(slot, _release_connection, weakref.ref(self), conn)
        self._local.slot = slot

    def _forget(self, conn: sqlite3.Connection) -> None:
        with self._lock:
            if conn in self._connections:
                self._connections.remove(conn)

    @property
    def db(self) -> sqlite3.Connection:
        """The calling thread's raw sqlite3 connection, for collaborators such as the job queue."""
        return self._connection()

    def _autocommit_connection(self) -> sqlite3.Connection:
        return ensure_autocommit(self._connection())

    def close(self) -> None:
        """Close every connection opened by this helper."""
        with self._lock:
            connections, self._connections = self._connections, []
            self._connected = False
            self._generation += 1
        for conn in connections:
            conn.close()
        self.jobs_queue = None

    def __enter__(self) -> "Helper":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------------------------------------------------------------- #
    # Transactions
    # --------------------------------------------------------------------- #

    def in_transaction(
        self,
        callback: Callable[[Tx], T],
        *,
        deadline: Optional[Deadline] = None,
    ) -> T:
        """
        Run callback in a transaction, and make sure to handle rollbacks, commits etc.

        The callback receives a Tx. If it raises, the transaction is rolled
        back and the exception re-raised; if it returns, the transaction is
        committed and its return value handed back.
        """
        conn = self._connection()
        tx = Tx(conn, deadline)
        try:
            return run_in_transaction(
                conn, lambda: callback(tx), deadline=deadline, log=self.log
            )
        finally:
            tx._invalidate()

    def ping(self, *, deadline: Optional[Deadline] = None) -> None:
        """Check the database end to end, including the transaction machinery."""
        if not self._connected:
            raise DatabaseConnectionError("database is not connected")
        self.in_transaction(lambda tx: tx.execute("select 1"), deadline=deadline)

    # --------------------------------------------------------------------- #
    # Query surface outside transactions
    #
    # Each call commits on its own. Inside an in_transaction callback these
    # raise TransactionInProgressError; use the Tx there instead.
    # --------------------------------------------------------------------- #

    def fetch_many(
        self,
        query: str,
        *args: Any,
        into: Optional[Callable[..., Any]] = None,
        deadline: Optional[Deadline] = None,
    ) -> List[Any]:
        """Return all rows matched by ``query``, shaped by ``into``."""
        return _fetch_many(self._autocommit_connection(), query, args, into, deadline)

    def fetch_one(
        self,
        query: str,
        *args: Any,
        into: Optional[Callable[..., Any]] = None,
        deadline: Optional[Deadline] = None,
    ) -> Any:
        """Return the first row matched by ``query``; raise NoRowsError if none."""
        return _fetch_one(self._autocommit_connection(), query, args, into, deadline)

    def execute(self, query: str, *args: Any, deadline: Optional[Deadline] = None) -> None:
        """Run a statement that returns no rows, in its own implicit transaction."""
        _execute(self._autocommit_connection(), query, args, deadline)

    # --------------------------------------------------------------------- #
    # Migrations
    # --------------------------------------------------------------------- #

    def migrate_up(self, *, deadline: Optional[Deadline] = None) -> str:
        """Apply all pending migrations and return the resulting version."""
        return Migrator(self._connection(), log=self.log).up(deadline=deadline)

    def migrate_down(self, *, deadline: Optional[Deadline] = None) -> str:
        """Revert all applied migrations and return the resulting version."""
        return Migrator(self._connection(), log=self.log).down(deadline=deadline)

    def migrate_to(self, version: str, *, deadline: Optional[Deadline] = None) -> str:
        """Migrate up or down to exactly ``version``."""
        return Migrator(self._connection(), log=self.log).to(version, deadline=deadline)


def initialize_database(db_path: Optional[str] = None, log: Any = None) -> Helper:
    """
    Connect to the database and bring its schema up to date.

    Args:
        db_path: Path to the SQLite database file. If None, uses Config.DB_PATH.
        log: structlog logger. If None, logs are discarded.

    Returns:
        Connected, migrated helper.
    """
    helper = Helper(db_path, log=log)
    helper.connect()
    try:
        helper.migrate_up()
    except Exception:
        helper.close()
        raise
    return helper
