"""
Exception hierarchy for the sqlh transactional access layer.

Every error raised by sqlh derives from SqlhError. Driver errors are kept as
the ``__cause__`` of the wrapping exception so the root cause is never lost.
"""

from __future__ import annotations

from typing import Optional


class SqlhError(Exception):
    """Base class for all sqlh errors."""

    pass


class DatabaseConnectionError(SqlhError):
    """Raised when the database cannot be opened, configured or reached."""

    pass


class TransactionError(SqlhError):
    """Base class for transaction lifecycle failures."""

    pass


class BeginError(TransactionError):
    """Raised when a transaction cannot be started."""

    pass


class CommitError(TransactionError):
    """Raised when a successful unit of work cannot be committed."""

    pass


class TransactionClosedError(TransactionError):
    """Raised when a Tx is used after its transaction has finished."""

    pass


class TransactionInProgressError(TransactionError):
    """Raised when an autocommit operation is attempted on a connection with an open transaction."""

    pass


class RollbackError(TransactionError):
    """
    Raised when rolling back after a failed unit of work also fails.

    Carries both failures: ``original`` is what the unit of work raised and
    ``rollback_error`` is what the rollback raised.
    """

    def __init__(self, original: BaseException, rollback_error: BaseException) -> None:
        self.original = original
        self.rollback_error = rollback_error
        super().__init__(
            "error rolling back transaction after error "
            f"(transaction error: {rollback_error}), original error: {original}"
        )


class AbnormalTerminationError(SqlhError):
    """Raised in place of a fault that escaped a unit of work outside the Exception channel."""

    def __init__(self, fault: BaseException) -> None:
        self.fault = fault
        super().__init__(f"panic: {fault!r}")


class NoRowsError(SqlhError, LookupError):
    """Raised by fetch_one when the query matched no rows."""

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or "no rows in result set")


ErrNoRows = NoRowsError


class DeadlineError(SqlhError):
    """Base class for deadline expiry and cancellation."""

    pass


class DeadlineExceededError(DeadlineError, TimeoutError):
    """Raised when an operation runs past its deadline."""

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or "deadline exceeded")


class OperationCancelledError(DeadlineError):
    """Raised when an operation's deadline was cancelled."""

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or "operation cancelled")


class ScanError(SqlhError):
    """Raised when a row cannot be shaped into the requested result type."""

    pass


class MigrationError(SqlhError):
    """Raised when migrations cannot be discovered or applied."""

    pass
