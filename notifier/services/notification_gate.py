"""
Notification gate: decides whether a classified reminder should (re)notify.

The gate is stateless; the only state is the reminder's persisted
``last_notification_sent``. A notification fires when the reminder is urgent
or overdue and either it was never notified or at least
NOTIFICATION_COOLDOWN_HOURS whole hours have elapsed since the last one.
"""

import logging
from datetime import datetime
from typing import Optional

from config import Config
from services.urgency_service import Classification
from utils.timezone import parse_timestamp, whole_hours_between

logger = logging.getLogger(__name__)


def hours_since_last_notification(reminder, now: datetime) -> Optional[int]:
    """Whole hours since the reminder was last notified, None if never (or unparseable)."""
    last_sent = parse_timestamp(reminder.last_notification_sent)
    if last_sent is None:
        return None
    return whole_hours_between(last_sent, now)


def should_send(
    reminder,
    classification: Classification,
    now: datetime,
    cooldown_hours: Optional[int] = None,
) -> bool:
    """
    Return True when a notification must be sent for this reminder now.

    Args:
        reminder: Object with ``id``, ``service_type`` and ``last_notification_sent``
        classification: Output of ``classify`` for the same reminder
        now: Current time
        cooldown_hours: Minimum hours between two notifications (defaults to config)
    """
    if not classification.needs_attention:
        return False

    if cooldown_hours is None:
        cooldown_hours = Config.NOTIFICATION_COOLDOWN_HOURS

    hours_since = hours_since_last_notification(reminder, now)
    if hours_since is not None and hours_since < cooldown_hours:
        logger.info(
            f"Skipping notification for '{reminder.service_type}' ({reminder.id}): "
            f"cooldown active, last sent {hours_since}h ago, threshold {cooldown_hours}h"
        )
        return False

    return True
