"""Shared fixtures: a connected, migrated helper over a disposable database."""

from __future__ import annotations

from typing import Iterator

import pytest

from sqlh.core.database import Helper
from sqlh.testing import temporary_helper


@pytest.fixture()
def helper(tmp_path) -> Iterator[Helper]:
    """Helper on a fresh database file, migrated up, with the jobs queue attached."""
    with temporary_helper(str(tmp_path / "test.db")) as h:
        yield h
