"""
Datetime utility functions.
Provides timezone-aware helpers used throughout the application.
"""

from datetime import datetime
from typing import Optional
import pytz


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to an aware UTC datetime.

    Naive values are treated as already being in UTC. Some database backends
    (SQLite) hand back naive datetimes for timezone-aware columns, so every
    comparison against ``utcnow()`` should go through this helper.

    Examples:
        >>> as_utc(datetime(2026, 1, 21, 9, 0))
        datetime.datetime(2026, 1, 21, 9, 0, tzinfo=<UTC>)
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)


def isoformat_utc(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as an ISO 8601 UTC string, or None."""
    normalized = as_utc(value)
    return normalized.isoformat() if normalized else None
