"""
Timezone utilities for consistent datetime handling.

Reminder timestamps are stored as ISO-8601 strings written by different
clients (browser ``toISOString()`` with a ``Z`` suffix, Python
``isoformat()`` with ``+00:00``, or no offset at all). These helpers keep
every comparison in timezone-aware UTC:

- utc_now() returns the current time, aware, in UTC
- ensure_utc() converts any datetime to aware UTC (naive is assumed UTC)
- parse_timestamp() turns a stored string into an aware datetime or None
- to_iso() renders the canonical stored form
"""

import logging
from datetime import date, datetime, timezone as tz
from typing import Optional, Union

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Current UTC time with tzinfo."""
    return datetime.now(tz.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is timezone-aware in UTC.

    Args:
        dt: A datetime that may or may not have timezone info

    Returns:
        Timezone-aware datetime in UTC, or None if input was None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        # Assume naive datetimes are already UTC
        return dt.replace(tzinfo=tz.utc)

    return dt.astimezone(tz.utc)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse a stored timestamp into an aware UTC datetime.

    Returns None for empty values and for strings that are not valid
    ISO-8601; the caller decides what "no timestamp" means.

    Examples:
        >>> parse_timestamp("2024-01-15T14:30:00.000Z")
        datetime.datetime(2024, 1, 15, 14, 30, tzinfo=datetime.timezone.utc)
        >>> parse_timestamp("not a date") is None
        True
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return ensure_utc(value)

    value = str(value).strip()
    if not value:
        return None

    try:
        return ensure_utc(date_parser.isoparse(value))
    except (ValueError, OverflowError):
        logger.warning(f"Failed to parse timestamp: {value!r}")
        return None


def to_iso(dt: datetime) -> str:
    """Render a datetime the way browsers write ``toISOString()``."""
    return ensure_utc(dt).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def whole_hours_between(earlier: datetime, later: datetime) -> int:
    """Whole hours elapsed from ``earlier`` to ``later`` (truncated toward zero)."""
    seconds = (ensure_utc(later) - ensure_utc(earlier)).total_seconds()
    return int(seconds / 3600)


def calendar_days_until(due: date, now: Union[date, datetime]) -> int:
    """Calendar days from ``now`` to ``due``; negative once ``due`` has passed."""
    if isinstance(now, datetime):
        now = ensure_utc(now).date()
    if isinstance(due, datetime):
        due = ensure_utc(due).date()
    return (due - now).days
