"""
Versioned schema migrations.

Migrations are pairs of SQL files named ``<version>-<name>.up.sql`` and
``<version>-<name>.down.sql``, applied in version order. The ``migrations``
table holds a single row with the currently applied version ('' when none).
Every step runs in its own transaction together with its version update.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any, Iterator, List, Optional, Union

from sqlh.core.deadline import Deadline, enforce_deadline
from sqlh.core.errors import MigrationError
from sqlh.utils.database_utils import run_in_transaction
from sqlh.utils.logging_config import get_logger


logger = get_logger(__name__)

UP_SUFFIX = ".up.sql"
DOWN_SUFFIX = ".down.sql"


@dataclass(frozen=True)
class Migration:
    """One versioned schema change."""

    version: str
    up_sql: str
    down_sql: Optional[str] = None


def split_statements(script: str) -> Iterator[str]:
    """
    Split a SQL script into complete statements.

    Trigger bodies contain semicolons of their own; sqlite3.complete_statement
    knows where they end. executescript is not used because it commits any
    open transaction first.
    """
    buffer = ""
    for line in script.splitlines(keepends=True):
        buffer += line
        if sqlite3.complete_statement(buffer):
            statement = buffer.strip()
            buffer = ""
            if statement.rstrip(";").strip():
                yield statement
    if buffer.strip():
        raise MigrationError(f"incomplete SQL statement: {buffer.strip()[:80]!r}")


def _default_source() -> Any:
    return resources.files("sqlh") / "migrations"


def load_migrations(source: Union[str, Path, Any, None] = None) -> List[Migration]:
    """
    Collect migrations from a directory.

    Args:
        source: Directory (path or importlib.resources Traversable). If None,
            uses the migrations shipped with sqlh.

    Returns:
        Migrations sorted by version.

    Raises:
        MigrationError: If an up file is missing for a version.
    """
    directory = _default_source() if source is None else source
    if isinstance(directory, str):
        directory = Path(directory)

    ups = {}
    downs = {}
    try:
        entries = list(directory.iterdir())
    except OSError as exc:
        raise MigrationError(f"error reading migrations from {directory}: {exc}") from exc

    for entry in entries:
        name = entry.name
        if name.endswith(UP_SUFFIX):
            ups[name[: -len(UP_SUFFIX)]] = entry.read_text(encoding="utf-8")
        elif name.endswith(DOWN_SUFFIX):
            downs[name[: -len(DOWN_SUFFIX)]] = entry.read_text(encoding="utf-8")

    orphans = sorted(set(downs) - set(ups))
    if orphans:
        raise MigrationError(f"down migration without up migration: {orphans[0]}")

    return [
        Migration(version=version, up_sql=ups[version], down_sql=downs.get(version))
        for version in sorted(ups)
    ]


class Migrator:
    """Applies and reverts migrations on one connection."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        source: Union[str, Path, Any, None] = None,
        log: Any = None,
    ) -> None:
        self.conn = conn
        self.log = log if log is not None else logger
        self.migrations = load_migrations(source)

    def _ensure_table(self, deadline: Optional[Deadline]) -> None:
        def create() -> None:
            with enforce_deadline(self.conn, deadline):
                self.conn.execute("create table if not exists migrations (version text not null)")
                self.conn.execute(
                    "insert into migrations (version) "
                    "select '' where not exists (select 1 from migrations)"
                )

        try:
            run_in_transaction(self.conn, create, deadline=deadline, log=self.log)
        except Exception as exc:
            raise MigrationError(f"error creating migrations table: {exc}") from exc

    def current_version(self, *, deadline: Optional[Deadline] = None) -> str:
        """Return the applied version, creating the migrations table if needed."""
        self._ensure_table(deadline)
        with enforce_deadline(self.conn, deadline):
            row = self.conn.execute("select version from migrations").fetchone()
        return row[0] if row is not None else ""

    def _step(
        self,
        sql: str,
        version: str,
        new_version: str,
        event: str,
        deadline: Optional[Deadline],
    ) -> None:
        def run() -> None:
            with enforce_deadline(self.conn, deadline):
                for statement in split_statements(sql):
                    self.conn.execute(statement)
                self.conn.execute("update migrations set version = ?", (new_version,))

        try:
            run_in_transaction(self.conn, run, deadline=deadline, log=self.log)
        except Exception as exc:
            raise MigrationError(f"error running migration {version}: {exc}") from exc

        self.log.info(event, version=version, current_version=new_version)

    def _version_before(self, index: int) -> str:
        return self.migrations[index - 1].version if index > 0 else ""

    def up(self, *, deadline: Optional[Deadline] = None) -> str:
        """Apply every migration newer than the current version."""
        current = self.current_version(deadline=deadline)
        for migration in self.migrations:
            if migration.version <= current:
                continue
            self._step(migration.up_sql, migration.version, migration.version, "migration_applied", deadline)
            current = migration.version
        return current

    def down(self, *, deadline: Optional[Deadline] = None) -> str:
        """Revert every applied migration, newest first."""
        return self.to("", deadline=deadline)

    def to(self, version: str, *, deadline: Optional[Deadline] = None) -> str:
        """
        Migrate up or down so that exactly ``version`` is applied.

        Args:
            version: Target version, or '' to revert everything.

        Raises:
            MigrationError: If the version is unknown or a step fails.
        """
        versions = [migration.version for migration in self.migrations]
        if version and version not in versions:
            raise MigrationError(f"unknown migration version {version!r}")

        current = self.current_version(deadline=deadline)

        for migration in self.migrations:
            if current < migration.version <= version:
                self._step(migration.up_sql, migration.version, migration.version, "migration_applied", deadline)
                current = migration.version

        for index in reversed(range(len(self.migrations))):
            migration = self.migrations[index]
            if version < migration.version <= current:
                if migration.down_sql is None:
                    raise MigrationError(f"no down migration for version {migration.version}")
                previous = self._version_before(index)
                self._step(migration.down_sql, migration.version, previous, "migration_reverted", deadline)
                current = previous

        return current
