"""
Row shaping for the query surface.

fetch_one and fetch_many take an ``into`` argument describing the shape each
row should be returned as; scan_row does the conversion.
"""

from __future__ import annotations

import dataclasses
import sqlite3
from typing import Any, Callable, Optional, Sequence, Tuple

from sqlh.core.errors import ScanError

SCALAR_TYPES: Tuple[type, ...] = (str, int, float, bytes, bool)


def _field_names(into: Any) -> Optional[Sequence[str]]:
    if dataclasses.is_dataclass(into) and isinstance(into, type):
        return [field.name for field in dataclasses.fields(into) if field.init]
    fields = getattr(into, "_fields", None)
    if isinstance(into, type) and issubclass(into, tuple) and fields is not None:
        return list(fields)
    return None


def scan_row(row: sqlite3.Row, into: Optional[Callable[..., Any]] = None) -> Any:
    """
    Convert a row into the requested shape.

    Args:
        row: Row produced by a connection using sqlite3.Row as row factory.
        into: None for the raw row, ``dict``, a scalar type, a dataclass or
            NamedTuple class, or any callable taking the row.

    Returns:
        The shaped row.

    Raises:
        ScanError: If the row's columns do not fit the requested shape.
    """
    if into is None:
        return row

    columns = row.keys()

    if into is dict:
        return dict(zip(columns, row))

    if into in SCALAR_TYPES:
        if len(columns) != 1:
            raise ScanError(
                f"scannable dest type {into.__name__} with >1 columns ({len(columns)}) in result"
            )
        value = row[0]
        if value is None:
            return None
        try:
            return into(value)
        except (TypeError, ValueError) as exc:
            raise ScanError(f"cannot scan {value!r} into {into.__name__}: {exc}") from exc

    field_names = _field_names(into)
    if field_names is not None:
        missing = [column for column in columns if column not in field_names]
        if missing:
            raise ScanError(
                f"missing destination name {missing[0]!r} in {into.__name__}"
            )
        try:
            return into(**{column: row[column] for column in columns})
        except TypeError as exc:
            raise ScanError(f"cannot scan row into {into.__name__}: {exc}") from exc

    return into(row)
