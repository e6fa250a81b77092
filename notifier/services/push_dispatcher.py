"""
Push Dispatcher

Renders one notification payload per reminder and fans it out to every
subscription concurrently on a bounded thread pool. Each delivery yields a
``DeliveryOutcome``; all deliveries are joined before anything is written:

- GONE endpoints are pruned from the subscription registry
- if at least one delivery succeeded, ``last_notification_sent`` is written
  back to the reminder; with zero successes it is left untouched so the next
  run retries

Worker threads only perform HTTP. Every database access happens on the
calling thread after the join.
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Dict, List, Optional

from config import Config
from models import ServiceReminder
from services.push_transport import DeliveryOutcome, DeliveryStatus, PushTransport
from services.subscription_registry import Subscription, SubscriptionRegistry
from services.urgency_service import Classification
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from utils.error_codes import ErrorCode, StructuredError
from utils.timezone import to_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationPayload:
    """Ephemeral message sent to the browser service worker. Never persisted."""

    title: str
    body: str
    icon: str
    tag: str

    def to_json(self) -> str:
        return json.dumps(asdict(self))


@dataclass(frozen=True)
class DispatchResult:
    """What happened to one reminder's fan-out."""

    delivered: int = 0
    pruned: int = 0
    failed: int = 0
    timestamp_updated: bool = False

    @property
    def any_delivered(self) -> bool:
        return self.delivered > 0


def build_payload(
    reminder,
    vehicle,
    classification: Classification,
    default_icon: Optional[str] = None,
) -> NotificationPayload:
    """
    Build the notification for a reminder.

    Title names the vehicle, body names the service and whether it is overdue
    or coming up, with whatever remaining distance/time is known.
    """
    title = f"Service alert: {vehicle.make} {vehicle.model}"

    if classification.is_overdue:
        body = f"{reminder.service_type} - Service overdue!"
    else:
        body = f"{reminder.service_type} - Service due soon!"

    details = []
    if classification.km_remaining is not None:
        km = classification.km_remaining
        details.append(f"{abs(km):,} km {'over' if km < 0 else 'left'}")
    if classification.days_remaining is not None:
        days = classification.days_remaining
        unit = "day" if abs(days) == 1 else "days"
        details.append(f"{abs(days)} {unit} {'late' if days < 0 else 'left'}")
    if details:
        body = f"{body} ({', '.join(details)})"

    icon = vehicle.image_url or default_icon or Config.DEFAULT_NOTIFICATION_ICON
    return NotificationPayload(title=title, body=body, icon=icon, tag=str(reminder.id))


def mark_notified(db: Session, reminder_id: str, now: datetime) -> str:
    """
    Write ``last_notification_sent`` for one reminder.

    Column-level UPDATE so a concurrent completion write to the same row is
    not overwritten. Returns the stored ISO string.
    """
    timestamp = to_iso(now)
    db.query(ServiceReminder).filter(ServiceReminder.id == reminder_id).update(
        {ServiceReminder.last_notification_sent: timestamp},
        synchronize_session=False,
    )
    db.commit()
    return timestamp


class PushDispatcher:
    """Fans a reminder's notification out to every subscription."""

    def __init__(
        self,
        db: Session,
        registry: SubscriptionRegistry,
        transport: PushTransport,
        max_workers: Optional[int] = None,
        default_icon: Optional[str] = None,
    ):
        self.db = db
        self.registry = registry
        self.transport = transport
        self.max_workers = max_workers or Config.PUSH_MAX_WORKERS
        self.default_icon = default_icon
        self.deliveries_sent = 0
        self.subscriptions_pruned = 0

    def deliver_all(self, subscriptions: List[Subscription], payload_json: str) -> List[DeliveryOutcome]:
        """Deliver to every subscription and wait for all of them to settle."""
        if not subscriptions:
            return []

        workers = max(1, min(self.max_workers, len(subscriptions)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="push") as executor:
            # transport.send never raises, so map() cannot abort the batch
            return list(executor.map(lambda sub: self.transport.send(sub, payload_json), subscriptions))

    def send(
        self,
        reminder,
        vehicle,
        classification: Classification,
        subscriptions: List[Subscription],
        now: datetime,
    ) -> DispatchResult:
        """
        Notify every subscription about one reminder.

        Returns:
            DispatchResult with delivered/pruned/failed counts and whether the
            reminder's timestamp was written back
        """
        payload = build_payload(reminder, vehicle, classification, self.default_icon)
        logger.info(f"Sending notification for reminder {reminder.id} to {len(subscriptions)} endpoints")

        outcomes = self.deliver_all(subscriptions, payload.to_json())

        counts: Dict[DeliveryStatus, int] = {status: 0 for status in DeliveryStatus}
        for outcome in outcomes:
            counts[outcome.status] += 1
            if outcome.status is DeliveryStatus.TRANSIENT:
                logger.error(
                    f"Failed to send notification for reminder {reminder.id} "
                    f"to {outcome.endpoint[:60]}: {outcome.error}"
                )

        pruned = 0
        for outcome in outcomes:
            if outcome.gone and self.registry.remove(outcome.endpoint):
                pruned += 1

        delivered = counts[DeliveryStatus.DELIVERED]
        timestamp_updated = False
        if delivered:
            try:
                mark_notified(self.db, reminder.id, now)
                timestamp_updated = True
            except SQLAlchemyError as e:
                # Pushes already went out; the reminder stays ungated and is retried next run
                self.db.rollback()
                error = StructuredError(
                    ErrorCode.E201_DB_WRITE_FAILED,
                    f"Failed to record notification time for reminder {reminder.id}",
                    exception=e,
                    reminder_id=reminder.id,
                )
                logger.error(str(error))
            else:
                logger.info(
                    f"Notification sent for '{reminder.service_type}' on {vehicle.make} {vehicle.model} "
                    f"({delivered}/{len(subscriptions)} endpoints)"
                )
        else:
            logger.warning(f"No endpoint accepted the notification for reminder {reminder.id}; will retry next run")

        self.deliveries_sent += delivered
        self.subscriptions_pruned += pruned
        return DispatchResult(
            delivered=delivered,
            pruned=pruned,
            failed=counts[DeliveryStatus.TRANSIENT],
            timestamp_updated=timestamp_updated,
        )
