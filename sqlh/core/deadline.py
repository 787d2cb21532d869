"""
Deadlines and cancellation for database operations.

A Deadline combines an optional monotonic expiry time with a cancellation
flag. Every query and transaction operation accepts one; running statements
are interrupted through SQLite's progress handler once it fires.
"""

from __future__ import annotations

import sqlite3
import threading
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlh.core.errors import DeadlineExceededError, OperationCancelledError

# Number of SQLite VM instructions between deadline checks.
PROGRESS_HANDLER_STEPS = 1000


class Deadline:
    """Expiry time and cancellation signal shared by a unit of work."""

    def __init__(self, expires_at: Optional[float] = None) -> None:
        self.expires_at = expires_at
        self._cancelled = threading.Event()

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        """Return a deadline that expires ``seconds`` from now."""
        return cls(time.monotonic() + seconds)

    @classmethod
    def none(cls) -> "Deadline":
        """Return a deadline that never expires (it can still be cancelled)."""
        return cls(None)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() >= self.expires_at

    def done(self) -> bool:
        return self.cancelled or self.expired

    def remaining(self) -> Optional[float]:
        """Seconds left before expiry, or None when there is no expiry."""
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    def check(self) -> None:
        """
        Raise if the deadline is no longer usable.

        Raises:
            OperationCancelledError: If cancel() was called.
            DeadlineExceededError: If the expiry time has passed.
        """
        if self.cancelled:
            raise OperationCancelledError()
        if self.expired:
            raise DeadlineExceededError()

    def __repr__(self) -> str:
        return f"Deadline(remaining={self.remaining()!r}, cancelled={self.cancelled})"


@contextmanager
def enforce_deadline(
    conn: sqlite3.Connection, deadline: Optional[Deadline]
) -> Iterator[None]:
    """
    Run a block of statements on ``conn`` bounded by ``deadline``.

    Fails before touching the connection when the deadline is already done,
    and converts SQLite's "interrupted" error into the matching deadline
    error when the progress handler aborted a statement.
    """
    if deadline is None:
        yield
        return

    deadline.check()
    conn.set_progress_handler(lambda: 1 if deadline.done() else 0, PROGRESS_HANDLER_STEPS)
    try:
        yield
    except sqlite3.OperationalError as exc:
        if deadline.cancelled:
            raise OperationCancelledError() from exc
        if deadline.expired:
            raise DeadlineExceededError() from exc
        raise
    finally:
        conn.set_progress_handler(None, 0)
