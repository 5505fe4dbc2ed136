"""Shared utility functions.

parse_date:      returns None on bad input (query params, optional fields)
parse_datetime:  ISO timestamps, naive values are treated as UTC
as_utc:          normalises naive datetimes read back from SQLite
"""
import logging
from datetime import date, datetime, timezone

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value):
    """Attach UTC to a naive datetime; pass aware datetimes and None through.

    SQLite drops tzinfo on ``DateTime(timezone=True)`` columns, so values read
    back are naive even though they were written as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_date(value):
    """Parse a date string (ISO or DD/MM/YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD/MM/YYYY (French format used by the UI)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d/%m/%Y").date()
    except (ValueError, TypeError):
        return None


def parse_datetime(value):
    """Parse an ISO timestamp; naive input is interpreted as UTC.

    Returns None for empty/invalid input.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except (ValueError, TypeError):
        return None


def parse_int(value):
    """Coerce an id-like value to int; None for empty/invalid input."""
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
