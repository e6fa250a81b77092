"""
Urgency Classification Service

Maps a service reminder plus the vehicle's current odometer and the current
date to a tagged classification: NONE, URGENT or OVERDUE.

Both axes are evaluated independently when the reminder carries the
corresponding due field:

    km_remaining   = due_odometer - current_odometer_km
    days_remaining = due_date - today (calendar days)

OVERDUE if either axis is negative. URGENT if nothing is negative and either
axis is within its threshold. A reminder with no due fields is always NONE.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from config import Config
from utils.timezone import calendar_days_until


class UrgencyKind(str, Enum):
    """Tri-state outcome of comparing a reminder with current values."""

    NONE = "none"
    URGENT = "urgent"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class UrgencyThresholds:
    """Distance and time windows that make a reminder urgent."""

    km: int = 1000
    days: int = 15

    @classmethod
    def from_config(cls, config=Config):
        return cls(km=config.URGENCY_THRESHOLD_KM, days=config.URGENCY_THRESHOLD_DAYS)


@dataclass(frozen=True)
class Classification:
    """Result of classify(); remaining values are None when not applicable."""

    kind: UrgencyKind
    km_remaining: Optional[int] = None
    days_remaining: Optional[int] = None

    @property
    def needs_attention(self) -> bool:
        return self.kind in (UrgencyKind.URGENT, UrgencyKind.OVERDUE)

    @property
    def is_overdue(self) -> bool:
        return self.kind is UrgencyKind.OVERDUE

    def to_dict(self):
        return {
            "kind": self.kind.value,
            "km_remaining": self.km_remaining,
            "days_remaining": self.days_remaining,
        }


def classify(
    reminder,
    current_odometer_km: int,
    now: datetime,
    thresholds: Optional[UrgencyThresholds] = None,
) -> Classification:
    """
    Classify a reminder.

    Args:
        reminder: Object with ``due_odometer`` and ``due_date`` attributes
        current_odometer_km: Latest known odometer for the reminder's vehicle
        now: Current time; only its calendar date is used
        thresholds: Urgency windows (defaults to configured values)

    Returns:
        Classification with kind and remaining distance/time
    """
    thresholds = thresholds or UrgencyThresholds.from_config()

    km_remaining = None
    if reminder.due_odometer is not None:
        km_remaining = int(reminder.due_odometer) - int(current_odometer_km)

    days_remaining = None
    if reminder.due_date is not None:
        days_remaining = calendar_days_until(reminder.due_date, now)

    overdue = (km_remaining is not None and km_remaining < 0) or (
        days_remaining is not None and days_remaining < 0
    )
    if overdue:
        return Classification(UrgencyKind.OVERDUE, km_remaining, days_remaining)

    urgent = (km_remaining is not None and km_remaining <= thresholds.km) or (
        days_remaining is not None and days_remaining <= thresholds.days
    )
    if urgent:
        return Classification(UrgencyKind.URGENT, km_remaining, days_remaining)

    return Classification(UrgencyKind.NONE, km_remaining, days_remaining)
