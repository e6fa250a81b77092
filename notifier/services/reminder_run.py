"""
Reminder Run

One pass of the reminder engine over every vehicle:

    IDLE -> CONFIGURING_TRANSPORT -> ENUMERATING_VEHICLES
         -> (per vehicle) RESOLVING_ODOMETER -> LOADING_REMINDERS -> DISPATCHING
         -> AGGREGATING -> DONE

A missing VAPID key pair fails the run in CONFIGURING_TRANSPORT before the
store is touched. Everything that goes wrong for a single vehicle is
recorded on that vehicle's result and the run moves on.

The odometer and subscription caches belong to the run: they are created
when the run is built and cleared when it finishes.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from config import Config
from database import SessionLocal
from exceptions import ConfigurationError
from models import ServiceReminder, Vehicle
from services.notification_gate import should_send
from services.odometer_service import OdometerResolver
from services.push_dispatcher import PushDispatcher
from services.push_transport import PushTransport
from services.subscription_registry import SubscriptionRegistry
from services.urgency_service import UrgencyThresholds, classify
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from utils.error_codes import ErrorCode, StructuredError
from utils.timezone import utc_now
from utils.wide_events import track_operation

logger = logging.getLogger(__name__)

SKIP_NO_ODOMETER = "no_odometer"
SKIP_NO_REMINDERS = "no_pending_reminders"
SKIP_NO_SUBSCRIPTIONS = "no_subscriptions"

SKIP_MESSAGES = {
    SKIP_NO_ODOMETER: "No fuel logs or completed trips found, skipping check.",
    SKIP_NO_REMINDERS: "No pending reminders.",
    SKIP_NO_SUBSCRIPTIONS: "No active push subscriptions found.",
}


class RunState(str, Enum):
    IDLE = "idle"
    CONFIGURING_TRANSPORT = "configuring_transport"
    ENUMERATING_VEHICLES = "enumerating_vehicles"
    RESOLVING_ODOMETER = "resolving_odometer"
    LOADING_REMINDERS = "loading_reminders"
    DISPATCHING = "dispatching"
    AGGREGATING = "aggregating"
    DONE = "done"
    FAILED = "failed"


@dataclass
class VehicleResult:
    """What happened to one vehicle during a run."""

    vehicle_id: str
    odometer: int = 0
    reminders_evaluated: int = 0
    notifications_sent: int = 0
    deliveries_sent: int = 0
    subscriptions_pruned: int = 0
    skipped_reason: Optional[str] = None
    error: Optional[str] = None
    reminders: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def message(self) -> str:
        if self.failed:
            return f"Check failed: {self.error}"
        if self.skipped:
            return SKIP_MESSAGES.get(self.skipped_reason, self.skipped_reason)
        if not self.notifications_sent:
            return "No urgent reminders to notify."
        return f"Sent {self.deliveries_sent} notifications."

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vehicle_id": self.vehicle_id,
            "odometer": self.odometer,
            "reminders_evaluated": self.reminders_evaluated,
            "notifications_sent": self.notifications_sent,
            "deliveries_sent": self.deliveries_sent,
            "subscriptions_pruned": self.subscriptions_pruned,
            "skipped_reason": self.skipped_reason,
            "error": self.error,
            "reminders": self.reminders,
        }


@dataclass
class RunSummary:
    """Totals reported when a run reaches a terminal state."""

    vehicles_considered: int = 0
    vehicles_skipped: int = 0
    vehicles_failed: int = 0
    reminders_evaluated: int = 0
    notifications_sent: int = 0
    deliveries_sent: int = 0
    subscriptions_pruned: int = 0
    results: List[VehicleResult] = field(default_factory=list)

    def record(self, result: VehicleResult):
        self.results.append(result)
        self.vehicles_considered += 1
        if result.failed:
            self.vehicles_failed += 1
        elif result.skipped:
            self.vehicles_skipped += 1
        self.reminders_evaluated += result.reminders_evaluated
        self.notifications_sent += result.notifications_sent
        self.deliveries_sent += result.deliveries_sent
        self.subscriptions_pruned += result.subscriptions_pruned

    def message(self) -> str:
        return (
            f"Cron job completed. Processed {self.notifications_sent} notification events "
            f"({self.deliveries_sent} deliveries) across {self.vehicles_considered} vehicles; "
            f"{self.reminders_evaluated} reminders evaluated, {self.subscriptions_pruned} subscriptions pruned, "
            f"{self.vehicles_failed} vehicles failed."
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vehicles_considered": self.vehicles_considered,
            "vehicles_skipped": self.vehicles_skipped,
            "vehicles_failed": self.vehicles_failed,
            "reminders_evaluated": self.reminders_evaluated,
            "notifications_sent": self.notifications_sent,
            "deliveries_sent": self.deliveries_sent,
            "subscriptions_pruned": self.subscriptions_pruned,
        }


class ReminderRun:
    """
    A single invocation of the reminder engine.

    Args:
        db: Database session, used only from the calling thread
        config: Configuration object (defaults to ``Config``)
        transport: Push transport; built from the VAPID config when omitted
        registry: Subscription registry; a fresh one is built when omitted
        clock: Returns the current aware UTC datetime
    """

    def __init__(
        self,
        db: Session,
        config=Config,
        transport: Optional[PushTransport] = None,
        registry: Optional[SubscriptionRegistry] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.config = config
        self.transport = transport
        self.registry = registry or SubscriptionRegistry(db, ttl_seconds=config.SUBSCRIPTION_CACHE_TTL_SECONDS)
        self.odometers = OdometerResolver(db)
        self.thresholds = UrgencyThresholds.from_config(config)
        self.clock = clock
        self.state = RunState.IDLE
        self.dispatcher: Optional[PushDispatcher] = None

    def _configure_transport(self):
        self.state = RunState.CONFIGURING_TRANSPORT
        if self.transport is None:
            try:
                self.transport = PushTransport.from_config(self.config)
            except ConfigurationError:
                self.state = RunState.FAILED
                raise
        self.dispatcher = PushDispatcher(
            self.db,
            self.registry,
            self.transport,
            max_workers=self.config.PUSH_MAX_WORKERS,
            default_icon=self.config.DEFAULT_NOTIFICATION_ICON,
        )

    def _pending_reminders(self, vehicle_id: str) -> List[ServiceReminder]:
        return (
            self.db.query(ServiceReminder)
            .filter(ServiceReminder.vehicle_id == vehicle_id, ServiceReminder.is_completed.is_(False))
            .all()
        )

    def _process_vehicle(self, vehicle: Vehicle, result: VehicleResult) -> VehicleResult:
        self.state = RunState.RESOLVING_ODOMETER
        result.odometer = self.odometers.resolve(vehicle.id)
        if result.odometer == 0:
            result.skipped_reason = SKIP_NO_ODOMETER
            return result

        self.state = RunState.LOADING_REMINDERS
        reminders = self._pending_reminders(vehicle.id)
        if not reminders:
            result.skipped_reason = SKIP_NO_REMINDERS
            return result

        subscriptions = self.registry.get_all()
        if not subscriptions:
            result.skipped_reason = SKIP_NO_SUBSCRIPTIONS
            return result

        self.state = RunState.DISPATCHING
        for reminder in reminders:
            now = self.clock()
            classification = classify(reminder, result.odometer, now, self.thresholds)
            result.reminders_evaluated += 1

            entry = {"reminder_id": reminder.id, "service_type": reminder.service_type}
            entry.update(classification.to_dict())

            if not should_send(reminder, classification, now, self.config.NOTIFICATION_COOLDOWN_HOURS):
                entry["notified"] = False
                result.reminders.append(entry)
                continue

            # Re-read so endpoints pruned for an earlier reminder are not retried
            subscriptions = self.registry.get_all()
            if not subscriptions:
                entry["notified"] = False
                result.reminders.append(entry)
                continue

            dispatch = self.dispatcher.send(reminder, vehicle, classification, subscriptions, now)
            entry.update(notified=dispatch.any_delivered, delivered=dispatch.delivered, pruned=dispatch.pruned)
            if dispatch.any_delivered and not dispatch.timestamp_updated:
                entry["write_back_failed"] = True
            result.reminders.append(entry)

            result.deliveries_sent += dispatch.delivered
            result.subscriptions_pruned += dispatch.pruned
            if dispatch.any_delivered:
                result.notifications_sent += 1

        return result

    def _check_one(self, vehicle: Vehicle) -> VehicleResult:
        # Counts gathered before a failure stay on the result
        result = VehicleResult(vehicle_id=vehicle.id)
        try:
            return self._process_vehicle(vehicle, result)
        except SQLAlchemyError as e:
            self.db.rollback()
            error = StructuredError(
                ErrorCode.E401_VEHICLE_FAILED,
                f"Store failure while checking vehicle {vehicle.id}",
                exception=e,
                vehicle_id=vehicle.id,
            )
            logger.error(str(error), exc_info=True)
            result.error = str(e)
            return result

    def _finish(self):
        self.odometers.clear()
        self.registry.clear()

    def execute(self) -> RunSummary:
        """
        Run the engine over every vehicle.

        Raises:
            ConfigurationError: if the VAPID key pair is not configured
        """
        summary = RunSummary()
        try:
            self._configure_transport()

            self.state = RunState.ENUMERATING_VEHICLES
            vehicles = self.db.query(Vehicle).all()
            logger.info(f"Checking reminders for {len(vehicles)} vehicles")

            for vehicle in vehicles:
                result = self._check_one(vehicle)
                if result.skipped:
                    logger.info(f"Vehicle {vehicle.id} skipped: {result.skipped_reason}")
                summary.record(result)

            self.state = RunState.AGGREGATING
            logger.info(summary.message())
            self.state = RunState.DONE
            return summary
        except Exception:
            self.state = RunState.FAILED
            raise
        finally:
            self._finish()

    def check_vehicle(self, vehicle_id: str) -> Optional[VehicleResult]:
        """
        Run the engine for a single vehicle.

        Returns:
            The vehicle's result, or None if the vehicle does not exist

        Raises:
            ConfigurationError: if the VAPID key pair is not configured
        """
        try:
            self._configure_transport()

            self.state = RunState.ENUMERATING_VEHICLES
            vehicle = self.db.query(Vehicle).filter(Vehicle.id == vehicle_id).first()
            if vehicle is None:
                self.state = RunState.DONE
                return None

            result = self._check_one(vehicle)
            self.state = RunState.DONE
            return result
        except Exception:
            self.state = RunState.FAILED
            raise
        finally:
            self._finish()


def run_reminder_check(db: Optional[Session] = None, trigger: str = "manual", **run_kwargs) -> RunSummary:
    """
    Build a run, execute it and emit one wide event describing it.

    Raises:
        ConfigurationError: if the VAPID key pair is not configured
    """
    if db is None:
        db = SessionLocal()

    with track_operation("reminder_run", trigger=trigger) as event:
        run = ReminderRun(db, **run_kwargs)
        try:
            with event.timer("execute"):
                summary = run.execute()
        finally:
            event.add_context(final_state=run.state.value)

        for key, value in summary.to_dict().items():
            event.add_business_metric(key, value)
        event.add_technical_metric("subscription_fetches", run.registry.fetch_count)
        return summary
