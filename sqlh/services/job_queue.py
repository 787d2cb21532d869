"""
Persistent job queue stored next to the application tables.

Messages live in the ``queue_messages`` table created by the jobs migration.
A received message stays invisible for the queue's timeout; if it is not
deleted in time it is delivered again, at most ``max_receive`` times.

A queue built on a Helper resolves the calling thread's connection on every
call, so one queue can be shared by many worker threads.
"""

from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Union

from sqlh.core.config import Config
from sqlh.core.errors import NoRowsError
from sqlh.utils.database_utils import ensure_autocommit, run_in_transaction
from sqlh.utils.datetime_helpers import utc_now_iso
from sqlh.utils.logging_config import get_logger

if TYPE_CHECKING:
    from sqlh.core.database import Helper, Tx

logger = get_logger(__name__)


@dataclass(frozen=True)
class Message:
    """A message handed out by JobQueue.receive."""

    id: str
    body: bytes
    received: int


class JobQueue:
    """Named queue over a helper's connections, or over one raw connection."""

    def __init__(
        self,
        db: Union["Helper", sqlite3.Connection],
        *,
        name: Optional[str] = None,
        max_receive: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._source = db
        self.name = name if name is not None else Config.QUEUE_NAME
        self.max_receive = max_receive if max_receive is not None else Config.QUEUE_MAX_RECEIVE
        self.timeout = timeout if timeout is not None else Config.QUEUE_TIMEOUT_SECONDS

        if not self.name:
            raise ValueError("queue name must not be empty")
        if self.max_receive < 1:
            raise ValueError("max_receive must be at least 1")
        if self.timeout < 0:
            raise ValueError("timeout must not be negative")

    @property
    def db(self) -> sqlite3.Connection:
        """The connection for the calling thread."""
        if isinstance(self._source, sqlite3.Connection):
            return self._source
        return self._source.db

    def _conn(self, tx: Optional["Tx"]) -> sqlite3.Connection:
        if tx is not None:
            return tx.conn
        return ensure_autocommit(self.db)

    def send(self, body: bytes, *, delay: float = 0.0, tx: Optional["Tx"] = None) -> str:
        """
        Put a message on the queue.

        Args:
            body: Message payload.
            delay: Seconds before the message becomes visible.
            tx: Optional transaction; the message is then only enqueued if it commits.

        Returns:
            ID of the new message.
        """
        if delay < 0:
            raise ValueError("delay must not be negative")

        conn = self._conn(tx)
        message_id = f"m_{uuid.uuid4().hex}"
        now = utc_now_iso()
        conn.execute(
            """
            INSERT INTO queue_messages (id, created, updated, queue, body, timeout)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (message_id, now, now, self.name, bytes(body), utc_now_iso(delay)),
        ).close()

        logger.debug("queue_message_sent", queue=self.name, message_id=message_id, delay=delay)
        return message_id

    def receive(self, *, tx: Optional["Tx"] = None) -> Optional[Message]:
        """
        Take the oldest visible message, or None if there is nothing to do.

        The message is hidden for ``timeout`` seconds; delete it once processed.
        Given a transaction, the claim is part of it and is undone on rollback.
        """
        conn = self._conn(tx)

        def claim() -> Optional[Message]:
            row = conn.execute(
                """
                SELECT id, body, received FROM queue_messages
                WHERE queue = ? AND ? >= timeout AND received < ?
                ORDER BY created, rowid
                LIMIT 1
                """,
                (self.name, utc_now_iso(), self.max_receive),
            ).fetchone()
            if row is None:
                return None

            conn.execute(
                """
                UPDATE queue_messages
                SET timeout = ?, received = received + 1
                WHERE id = ?
                """,
                (utc_now_iso(self.timeout), row[0]),
            ).close()
            return Message(id=row[0], body=bytes(row[1]), received=row[2] + 1)

        if tx is not None:
            return claim()
        return run_in_transaction(conn, claim, log=logger)

    def extend(self, message_id: str, delay: float, *, tx: Optional["Tx"] = None) -> None:
        """
        Keep a received message hidden for ``delay`` more seconds from now.

        Raises:
            NoRowsError: If the message does not exist in this queue.
        """
        if delay < 0:
            raise ValueError("delay must not be negative")
        cursor = self._conn(tx).execute(
            "UPDATE queue_messages SET timeout = ? WHERE queue = ? AND id = ?",
            (utc_now_iso(delay), self.name, message_id),
        )
        updated = cursor.rowcount
        cursor.close()
        if updated == 0:
            raise NoRowsError(f"no message {message_id} in queue {self.name}")

    def delete(self, message_id: str, *, tx: Optional["Tx"] = None) -> None:
        """Remove a processed message. Deleting an unknown message is a no-op."""
        self._conn(tx).execute(
            "DELETE FROM queue_messages WHERE queue = ? AND id = ?",
            (self.name, message_id),
        ).close()
        logger.debug("queue_message_deleted", queue=self.name, message_id=message_id)

    def count(self, *, tx: Optional["Tx"] = None) -> int:
        """Number of messages in this queue, visible or not."""
        row = self._conn(tx).execute(
            "SELECT count(*) FROM queue_messages WHERE queue = ?", (self.name,)
        ).fetchone()
        return int(row[0])

    def __repr__(self) -> str:
        return f"JobQueue(name={self.name!r}, max_receive={self.max_receive}, timeout={self.timeout})"


def attach_jobs_queue(helper: "Helper", **kwargs: Any) -> JobQueue:
    """Create the jobs queue over the helper and attach it as ``helper.jobs_queue``."""
    queue = JobQueue(helper, **kwargs)
    helper.jobs_queue = queue
    return queue
