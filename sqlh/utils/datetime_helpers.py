"""
Date and time utilities for sqlh.

Timestamps are stored as fixed-width ISO8601 text with a 'Z' suffix, so
string comparison in SQL matches chronological order.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def format_utc_iso(dt: datetime) -> str:
    """
    Format datetime object as fixed-width ISO8601 with Z suffix.

    Args:
        dt: Datetime object (will be converted to UTC if not already).

    Returns:
        ISO8601 string with microseconds and 'Z' suffix.
        Example: "2025-10-29T14:30:00.000000Z"
    """
    # Convert to UTC if not already
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)

    return dt.strftime(TIMESTAMP_FORMAT)


def utc_now_iso(offset_seconds: Optional[float] = None) -> str:
    """
    Return current UTC time as ISO8601 with Z suffix.

    Args:
        offset_seconds: Optional number of seconds to add to the current time.
    """
    now = datetime.now(timezone.utc)
    if offset_seconds:
        now += timedelta(seconds=offset_seconds)
    return format_utc_iso(now)
