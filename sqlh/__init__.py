"""Transactional access layer over SQLite."""

from sqlh.core.database import Helper, QueryExecutor, Tx, initialize_database
from sqlh.core.deadline import Deadline
from sqlh.core.errors import (
    AbnormalTerminationError,
    BeginError,
    CommitError,
    DatabaseConnectionError,
    DeadlineError,
    DeadlineExceededError,
    ErrNoRows,
    MigrationError,
    NoRowsError,
    OperationCancelledError,
    RollbackError,
    ScanError,
    SqlhError,
    TransactionClosedError,
    TransactionError,
    TransactionInProgressError,
)
from sqlh.services.job_queue import JobQueue, Message

__all__ = [
    "AbnormalTerminationError",
    "BeginError",
    "CommitError",
    "DatabaseConnectionError",
    "Deadline",
    "DeadlineError",
    "DeadlineExceededError",
    "ErrNoRows",
    "Helper",
    "JobQueue",
    "Message",
    "MigrationError",
    "NoRowsError",
    "OperationCancelledError",
    "QueryExecutor",
    "RollbackError",
    "ScanError",
    "SqlhError",
    "TransactionClosedError",
    "TransactionError",
    "TransactionInProgressError",
    "Tx",
    "initialize_database",
]
