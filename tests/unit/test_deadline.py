"""
Unit tests for Deadline.
"""

import threading
import time

import pytest

from sqlh.core.deadline import Deadline
from sqlh.core.errors import DeadlineExceededError, OperationCancelledError


def test_deadline_without_expiry_never_expires() -> None:
    deadline = Deadline.none()

    assert not deadline.expired
    assert not deadline.done()
    assert deadline.remaining() is None
    deadline.check()


def test_deadline_expires_after_duration() -> None:
    deadline = Deadline.after(0.05)
    assert deadline.remaining() > 0

    time.sleep(0.1)

    assert deadline.expired
    assert deadline.remaining() == 0.0
    with pytest.raises(DeadlineExceededError):
        deadline.check()


def test_cancel_from_another_thread() -> None:
    deadline = Deadline.after(60)

    thread = threading.Thread(target=deadline.cancel)
    thread.start()
    thread.join()

    assert deadline.cancelled
    assert deadline.done()
    with pytest.raises(OperationCancelledError):
        deadline.check()


def test_deadline_errors_are_timeouts() -> None:
    with pytest.raises(TimeoutError):
        Deadline.after(0).check()
