# -*- coding: utf-8 -*-
"""
DateTime Utilities - أدوات التاريخ والوقت

Centralized datetime handling for the import pipeline.

All timestamps are stored as naive UTC ISO strings with a fixed width
(microsecond precision), so SQL comparisons on TEXT columns order correctly
on both SQLite and PostgreSQL.
"""

from datetime import datetime, date, timezone
from typing import Union, Optional


def utc_now() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_isoformat(value: Union[datetime, date, str, None]) -> Optional[str]:
    """
    Convert a datetime-like value to the stored ISO format.

    Args:
        value: datetime, date, ISO string, or None

    Returns:
        ISO string (YYYY-MM-DDTHH:MM:SS.ffffff) or None

    Examples:
        >>> to_isoformat(datetime(2024, 1, 15, 10, 30))
        '2024-01-15T10:30:00.000000'
        >>> to_isoformat(None) is None
        True
    """
    if value is None:
        return None

    if isinstance(value, str):
        parsed = from_isoformat(value)
        return to_isoformat(parsed) if parsed else None

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value.isoformat(timespec="microseconds")

    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time()).isoformat(timespec="microseconds")

    return str(value)


def from_isoformat(value: Union[str, datetime, date, None]) -> Optional[datetime]:
    """
    Convert ISO format string to datetime object.

    Reverse of to_isoformat() for deserialization. Trailing "Z" suffixes
    written by field devices are accepted.

    Examples:
        >>> from_isoformat('2024-01-15T10:30:00')
        datetime.datetime(2024, 1, 15, 10, 30)
        >>> from_isoformat('2024-01-15')
        datetime.datetime(2024, 1, 15, 0, 0)
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return value

    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            if 'T' in text or ' ' in text:
                parsed = datetime.fromisoformat(text)
                if parsed.tzinfo is not None:
                    parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
                return parsed
            parsed_date = date.fromisoformat(text)
            return datetime.combine(parsed_date, datetime.min.time())
        except (ValueError, AttributeError):
            return None

    return None


def now_isoformat() -> str:
    """
    Get current UTC datetime in the stored ISO format.
    """
    return to_isoformat(utc_now())
