"""Utility modules for the MotorLog notifier."""

from .timezone import (
    utc_now,
    ensure_utc,
    parse_timestamp,
    to_iso,
    whole_hours_between,
    calendar_days_until,
)
from .ttl_cache import TTLCache

__all__ = [
    'utc_now',
    'ensure_utc',
    'parse_timestamp',
    'to_iso',
    'whole_hours_between',
    'calendar_days_until',
    'TTLCache',
]
