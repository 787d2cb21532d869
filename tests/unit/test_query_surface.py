"""
Unit tests for fetch_many / fetch_one / execute on the helper and on transactions.
"""

from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass
from typing import NamedTuple, Optional

import pytest

from sqlh.core.database import Helper, QueryExecutor, Tx
from sqlh.core.deadline import Deadline
from sqlh.core.errors import (
    DeadlineExceededError,
    ErrNoRows,
    NoRowsError,
    OperationCancelledError,
    ScanError,
    TransactionInProgressError,
)
from sqlh.core.rows import scan_row

LONG_QUERY = """
    WITH RECURSIVE counter(x) AS (
        SELECT 1 UNION ALL SELECT x + 1 FROM counter WHERE x < 1000000000
    )
    SELECT count(*) FROM counter
"""


@dataclass
class Item:
    id: int
    name: str
    price: Optional[float] = None


class ItemRow(NamedTuple):
    id: int
    name: str


@pytest.fixture()
def items(helper: Helper) -> Helper:
    helper.execute("CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT NOT NULL, price REAL)")
    helper.execute("INSERT INTO items (id, name, price) VALUES (?, ?, ?)", 1, "apple", 0.5)
    helper.execute("INSERT INTO items (id, name, price) VALUES (?, ?, ?)", 2, "pear", None)
    return helper


def count_items(db: QueryExecutor) -> int:
    return db.fetch_one("SELECT count(*) FROM items", into=int)


def test_helper_and_tx_are_query_executors(items: Helper) -> None:
    assert isinstance(items, QueryExecutor)
    assert items.in_transaction(lambda tx: isinstance(tx, QueryExecutor))


def test_same_code_runs_on_helper_and_tx(items: Helper) -> None:
    assert count_items(items) == 2

    def work(tx: Tx) -> int:
        tx.execute("INSERT INTO items (id, name) VALUES (?, ?)", 3, "plum")
        return count_items(tx)

    assert items.in_transaction(work) == 3
    assert count_items(items) == 3


def test_fetch_one_without_rows_raises_no_rows(items: Helper) -> None:
    with pytest.raises(NoRowsError):
        items.fetch_one("SELECT name FROM items WHERE id = ?", 99, into=str)

    with pytest.raises(ErrNoRows):
        items.in_transaction(
            lambda tx: tx.fetch_one("SELECT name FROM items WHERE id = ?", 99, into=str)
        )


def test_no_rows_is_distinguishable_from_query_failure(items: Helper) -> None:
    with pytest.raises(sqlite3.OperationalError) as exc_info:
        items.fetch_one("SELECT name FROM no_such_table")

    assert not isinstance(exc_info.value, NoRowsError)


def test_fetch_many_without_rows_returns_empty_list(items: Helper) -> None:
    assert items.fetch_many("SELECT * FROM items WHERE id > ?", 100) == []


def test_fetch_many_into_dataclass(items: Helper) -> None:
    rows = items.fetch_many("SELECT id, name, price FROM items ORDER BY id", into=Item)

    assert rows == [Item(1, "apple", 0.5), Item(2, "pear", None)]


def test_fetch_one_into_named_tuple(items: Helper) -> None:
    row = items.fetch_one("SELECT id, name FROM items WHERE id = ?", 2, into=ItemRow)

    assert row == ItemRow(2, "pear")


def test_fetch_one_default_returns_row(items: Helper) -> None:
    row = items.fetch_one("SELECT id, name FROM items WHERE id = ?", 1)

    assert isinstance(row, sqlite3.Row)
    assert row["name"] == "apple"


def test_fetch_many_into_dict_and_callable(items: Helper) -> None:
    assert items.fetch_many("SELECT id, name FROM items ORDER BY id", into=dict) == [
        {"id": 1, "name": "apple"},
        {"id": 2, "name": "pear"},
    ]
    assert items.fetch_many(
        "SELECT name FROM items ORDER BY id", into=lambda row: row["name"].upper()
    ) == ["APPLE", "PEAR"]


def test_scalar_null_stays_none(items: Helper) -> None:
    assert items.fetch_one("SELECT price FROM items WHERE id = ?", 2, into=float) is None


def test_execute_binds_arguments_without_interpolation(items: Helper) -> None:
    hostile = "x'); DROP TABLE items; --"
    items.execute("INSERT INTO items (id, name) VALUES (?, ?)", 3, hostile)

    assert items.fetch_one("SELECT name FROM items WHERE id = ?", 3, into=str) == hostile
    assert count_items(items) == 3


def test_execute_outside_transaction_is_autocommitted(items: Helper) -> None:
    items.execute("DELETE FROM items WHERE id = ?", 1)
    seen = []

    thread = threading.Thread(target=lambda: seen.append(count_items(items)))
    thread.start()
    thread.join()

    assert seen == [1]
    assert not items.db.in_transaction


def test_expired_deadline_fails_query(items: Helper) -> None:
    with pytest.raises(DeadlineExceededError):
        items.fetch_many("SELECT * FROM items", deadline=Deadline.after(0))


def test_long_query_is_interrupted_at_deadline(items: Helper) -> None:
    with pytest.raises(DeadlineExceededError):
        items.fetch_one(LONG_QUERY, deadline=Deadline.after(0.2))

    # The progress handler is removed again.
    assert count_items(items) == 2


def test_long_query_is_interrupted_on_cancel(items: Helper) -> None:
    deadline = Deadline.none()
    timer = threading.Timer(0.2, deadline.cancel)
    timer.start()
    try:
        with pytest.raises(OperationCancelledError):
            items.fetch_one(LONG_QUERY, deadline=deadline)
    finally:
        timer.cancel()


def test_scan_row_rejects_extra_columns() -> None:
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    try:
        row = conn.execute("SELECT 1 AS id, 'a' AS name, 'b' AS colour").fetchone()

        with pytest.raises(ScanError):
            scan_row(row, ItemRow)
        with pytest.raises(ScanError):
            scan_row(row, int)
        assert scan_row(row, dict) == {"id": 1, "name": "a", "colour": "b"}
    finally:
        conn.close()


def test_helper_queries_do_not_join_an_open_transaction(items: Helper) -> None:
    def work(tx: Tx) -> None:
        tx.execute("INSERT INTO items (id, name) VALUES (?, ?)", 3, "plum")
        items.execute("INSERT INTO items (id, name) VALUES (?, ?)", 4, "fig")

    with pytest.raises(TransactionInProgressError):
        items.in_transaction(work)

    assert items.fetch_many("SELECT id FROM items WHERE id > 2", into=int) == []


def test_helper_reads_inside_a_transaction_are_refused(items: Helper) -> None:
    def work(tx: Tx) -> None:
        tx.execute("DELETE FROM items")
        items.fetch_one("SELECT count(*) FROM items", into=int)

    with pytest.raises(TransactionInProgressError):
        items.in_transaction(work)

    assert count_items(items) == 2


def test_unconvertible_scalar_is_scan_error(items: Helper) -> None:
    with pytest.raises(ScanError):
        items.fetch_one("SELECT name FROM items WHERE id = ?", 1, into=int)


def test_missing_required_field_is_scan_error(items: Helper) -> None:
    with pytest.raises(ScanError):
        items.fetch_one("SELECT id FROM items WHERE id = ?", 1, into=Item)
