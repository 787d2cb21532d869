"""
Test support: connected, migrated helpers over disposable database files.
"""

from __future__ import annotations

import glob
import os
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from sqlh.core.database import Helper
from sqlh.services.job_queue import attach_jobs_queue
from sqlh.utils.logging_config import get_logger


def cleanup(path: str) -> None:
    """Remove the database file and its -wal/-shm companions."""
    for file in glob.glob(glob.escape(str(path)) + "*"):
        os.remove(file)


def new_test_helper(path: str = "test.db", log: Optional[Any] = None) -> Helper:
    """
    Create a helper for tests.

    Removes leftovers at ``path``, connects, migrates up and attaches the
    jobs queue. Pair with close_test_helper, or use temporary_helper().
    """
    cleanup(path)

    helper = Helper(str(path), log=log if log is not None else get_logger("sqlh.test"))
    helper.connect()
    try:
        helper.migrate_up()
        attach_jobs_queue(helper, name="jobs")
    except Exception:
        helper.close()
        cleanup(path)
        raise
    return helper


def close_test_helper(helper: Helper) -> None:
    helper.close()
    cleanup(helper.target.path)


@contextmanager
def temporary_helper(path: str = "test.db", log: Optional[Any] = None) -> Iterator[Helper]:
    helper = new_test_helper(path, log=log)
    try:
        yield helper
    finally:
        close_test_helper(helper)
