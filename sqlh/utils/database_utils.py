"""
Database utility helpers.

Provides consistent transaction handling for SQLite connections. A unit of
work runs between an explicit BEGIN and exactly one COMMIT or ROLLBACK, on
every exit path: normal return, a raised exception, or a fault that escapes
the Exception hierarchy altogether.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Callable, Optional, TypeVar

from sqlh.core.deadline import Deadline, enforce_deadline
from sqlh.core.errors import (
    AbnormalTerminationError,
    BeginError,
    CommitError,
    DeadlineError,
    RollbackError,
    TransactionInProgressError,
)
from sqlh.utils.logging_config import get_logger


logger = get_logger(__name__)

T = TypeVar("T")

# SQLite transactions are always serializable. IMMEDIATE takes the write lock
# when the transaction starts, so a contending writer waits out the busy
# timeout here instead of failing later on lock upgrade.
BEGIN_STATEMENT = "BEGIN IMMEDIATE"


def begin_transaction(
    conn: sqlite3.Connection, deadline: Optional[Deadline] = None
) -> None:
    """
    Start a serializable transaction on ``conn``.

    Raises:
        BeginError: If the transaction cannot be started.
    """
    try:
        with enforce_deadline(conn, deadline):
            conn.execute(BEGIN_STATEMENT)
    except (sqlite3.Error, DeadlineError) as exc:
        raise BeginError(f"error beginning transaction: {exc}") from exc


def ensure_autocommit(conn: sqlite3.Connection) -> sqlite3.Connection:
    """
    Return ``conn`` if it has no open transaction.

    Statements run through it outside a Tx must commit on their own; joining
    an open unit of work would tie them to its commit or rollback.

    Raises:
        TransactionInProgressError: If a transaction is open on ``conn``.
    """
    if conn.in_transaction:
        raise TransactionInProgressError(
            "a transaction is open on this thread's connection; run the statement through its Tx"
        )
    return conn


def rollback_after(conn: sqlite3.Connection, error: BaseException, log: Any = None) -> None:
    """
    Roll back the open transaction after ``error`` ended the unit of work.

    Returns normally when the rollback succeeded (or SQLite already rolled the
    transaction back on its own), so the caller can re-raise ``error``.

    Raises:
        RollbackError: If the rollback fails; carries both failures.
    """
    log = log if log is not None else logger
    if not conn.in_transaction:
        return
    try:
        conn.execute("ROLLBACK")
    except sqlite3.Error as rollback_exc:
        log.error(
            "transaction_rollback_failed",
            error=str(error),
            rollback_error=str(rollback_exc),
        )
        raise RollbackError(error, rollback_exc) from error
    log.warning("transaction_rollback", error=str(error))


def commit_transaction(conn: sqlite3.Connection, log: Any = None) -> None:
    """
    Commit the open transaction.

    A failed COMMIT (busy, serialization conflict, constraint) leaves SQLite
    inside the transaction, so it is rolled back before raising.

    Raises:
        CommitError: If the commit fails.
    """
    log = log if log is not None else logger
    try:
        conn.execute("COMMIT")
    except sqlite3.Error as exc:
        if conn.in_transaction:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error as rollback_exc:
                log.error(
                    "rollback_after_commit_failed",
                    error=str(exc),
                    rollback_error=str(rollback_exc),
                )
        raise CommitError(f"error committing transaction: {exc}") from exc


def run_in_transaction(
    conn: sqlite3.Connection,
    callback: Callable[[], T],
    *,
    deadline: Optional[Deadline] = None,
    log: Any = None,
) -> T:
    """
    Run ``callback`` inside a transaction and commit or roll back.

    Args:
        conn: Connection in autocommit mode (isolation_level=None).
        callback: Unit of work. Raising any exception marks it as failed.
        deadline: Optional deadline; if it is done when the callback returns,
            the transaction is rolled back instead of committed.
        log: Optional structlog logger.

    Returns:
        Whatever ``callback`` returned, once the transaction is committed.

    Raises:
        BeginError: The transaction could not be started.
        CommitError: The commit failed.
        RollbackError: The unit of work failed and so did the rollback.
        AbnormalTerminationError: The callback was ended by a BaseException
            that is not an Exception (KeyboardInterrupt, SystemExit, ...).
        Exception: Whatever the callback raised, after a clean rollback.
    """
    begin_transaction(conn, deadline)

    try:
        result = callback()
    except Exception as exc:
        rollback_after(conn, exc, log)
        raise
    except BaseException as fault:
        error = AbnormalTerminationError(fault)
        rollback_after(conn, error, log)
        raise error from fault

    if deadline is not None and deadline.done():
        try:
            deadline.check()
        except DeadlineError as exc:
            rollback_after(conn, exc, log)
            raise

    commit_transaction(conn, log)
    return result
