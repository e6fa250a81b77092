"""
Tests for a full reminder run over the store.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from config import Config
from exceptions import ConfigurationError
from models import PushSubscription, ServiceReminder
from services.push_dispatcher import mark_notified as real_mark_notified
from services.reminder_run import (
    SKIP_NO_ODOMETER,
    SKIP_NO_REMINDERS,
    SKIP_NO_SUBSCRIPTIONS,
    ReminderRun,
    RunState,
    RunSummary,
    VehicleResult,
    run_reminder_check,
)
from services.subscription_registry import SubscriptionRegistry
from sqlalchemy.exc import OperationalError
from tests.factories import (
    FuelRecordFactory,
    PushSubscriptionFactory,
    ServiceReminderFactory,
    TripFactory,
    VehicleFactory,
    days_from,
)
from tests.test_helpers import FIXED_NOW, FakeTransport, FreezeTime, make_subscription
from utils.timezone import to_iso


def clock():
    return FIXED_NOW


def subscribe(db_session, *numbers):
    subs = [make_subscription(n) for n in numbers]
    for sub in subs:
        PushSubscriptionFactory.for_endpoint(db_session, sub.endpoint)
    return subs


def vehicle_at(db_session, odometer, **kwargs):
    vehicle = VehicleFactory.create(db_session, **kwargs)
    FuelRecordFactory.create(db_session, vehicle_id=vehicle.id, odometer=odometer)
    return vehicle


def reminder_state(db_session, reminder_id):
    db_session.expire_all()
    return db_session.get(ServiceReminder, reminder_id)


class TestExecute:
    def test_urgent_reminder_is_notified(self, db_session):
        vehicle = vehicle_at(db_session, 49500)
        reminder = ServiceReminderFactory.create(db_session, vehicle_id=vehicle.id, due_odometer=50000)
        subscribe(db_session, 1)
        transport = FakeTransport()

        run = ReminderRun(db_session, transport=transport, clock=clock)
        summary = run.execute()

        assert run.state is RunState.DONE
        assert summary.vehicles_considered == 1
        assert summary.reminders_evaluated == 1
        assert summary.notifications_sent == 1
        assert summary.deliveries_sent == 1
        assert reminder_state(db_session, reminder.id).last_notification_sent == to_iso(FIXED_NOW)

    def test_recently_notified_reminder_is_gated(self, db_session):
        vehicle = vehicle_at(db_session, 49500)
        ServiceReminderFactory.create(
            db_session,
            vehicle_id=vehicle.id,
            due_odometer=50000,
            last_notification_sent=to_iso(FIXED_NOW - timedelta(hours=10)),
        )
        subscribe(db_session, 1)
        transport = FakeTransport()

        summary = ReminderRun(db_session, transport=transport, clock=clock).execute()

        assert summary.reminders_evaluated == 1
        assert summary.notifications_sent == 0
        assert transport.calls == []

    def test_overdue_by_date_sends_regardless_of_odometer(self, db_session):
        vehicle = vehicle_at(db_session, 10)
        reminder = ServiceReminderFactory.create(
            db_session, vehicle_id=vehicle.id, due_odometer=None, due_date=days_from(FIXED_NOW, -1)
        )
        subscribe(db_session, 1)
        transport = FakeTransport()

        summary = ReminderRun(db_session, transport=transport, clock=clock).execute()

        assert summary.notifications_sent == 1
        assert "overdue" in transport.calls[0][1]
        assert reminder_state(db_session, reminder.id).last_notification_sent is not None

    def test_gone_subscription_pruned_and_not_retried(self, db_session):
        """The pruned endpoint is not used for later reminders in the same run."""
        vehicle = vehicle_at(db_session, 49500)
        ServiceReminderFactory.create(db_session, vehicle_id=vehicle.id, due_odometer=50000)
        ServiceReminderFactory.create(db_session, vehicle_id=vehicle.id, due_odometer=49900, service_type="Tires")
        subs = subscribe(db_session, 1, 2, 3)
        transport = FakeTransport(gone={subs[1].endpoint})

        summary = ReminderRun(db_session, transport=transport, clock=clock).execute()

        assert summary.notifications_sent == 2
        assert summary.deliveries_sent == 4
        assert summary.subscriptions_pruned == 1
        gone_calls = [endpoint for endpoint, _ in transport.calls if endpoint == subs[1].endpoint]
        assert len(gone_calls) == 1
        assert db_session.query(PushSubscription).count() == 2

    def test_completed_reminders_are_ignored(self, db_session):
        vehicle = vehicle_at(db_session, 49500)
        ServiceReminderFactory.create(db_session, vehicle_id=vehicle.id, due_odometer=50000, is_completed=True)
        subscribe(db_session, 1)

        summary = ReminderRun(db_session, transport=FakeTransport(), clock=clock).execute()

        assert summary.vehicles_skipped == 1
        assert summary.results[0].skipped_reason == SKIP_NO_REMINDERS

    def test_vehicle_without_odometer_is_skipped(self, db_session):
        vehicle = VehicleFactory.create(db_session)
        ServiceReminderFactory.create(db_session, vehicle_id=vehicle.id)
        subscribe(db_session, 1)

        summary = ReminderRun(db_session, transport=FakeTransport(), clock=clock).execute()

        assert summary.vehicles_skipped == 1
        assert summary.results[0].skipped_reason == SKIP_NO_ODOMETER
        assert summary.reminders_evaluated == 0

    def test_trip_odometer_counts(self, db_session):
        vehicle = VehicleFactory.create(db_session)
        TripFactory.create(db_session, vehicle_id=vehicle.id, end_odometer=49600)
        ServiceReminderFactory.create(db_session, vehicle_id=vehicle.id, due_odometer=50000)
        subscribe(db_session, 1)

        summary = ReminderRun(db_session, transport=FakeTransport(), clock=clock).execute()

        assert summary.results[0].odometer == 49600
        assert summary.notifications_sent == 1

    def test_no_subscriptions_skips(self, db_session):
        vehicle = vehicle_at(db_session, 49500)
        ServiceReminderFactory.create(db_session, vehicle_id=vehicle.id)

        summary = ReminderRun(db_session, transport=FakeTransport(), clock=clock).execute()

        assert summary.results[0].skipped_reason == SKIP_NO_SUBSCRIPTIONS

    def test_vehicle_store_failure_does_not_abort_run(self, db_session):
        broken = vehicle_at(db_session, 49500, make="Broken")
        healthy = vehicle_at(db_session, 49500, make="Healthy")
        ServiceReminderFactory.create(db_session, vehicle_id=broken.id)
        ServiceReminderFactory.create(db_session, vehicle_id=healthy.id)
        subscribe(db_session, 1)
        broken_id = broken.id

        run = ReminderRun(db_session, transport=FakeTransport(), clock=clock)
        original = run._pending_reminders

        def flaky(vehicle_id):
            if vehicle_id == broken_id:
                raise OperationalError("SELECT", {}, Exception("database is locked"))
            return original(vehicle_id)

        with patch.object(run, "_pending_reminders", side_effect=flaky):
            summary = run.execute()

        assert run.state is RunState.DONE
        assert summary.vehicles_considered == 2
        assert summary.vehicles_failed == 1
        assert summary.notifications_sent == 1
        failed = [r for r in summary.results if r.failed]
        assert failed[0].vehicle_id == broken_id

    def test_caches_cleared_after_run(self, db_session):
        vehicle = vehicle_at(db_session, 49500)
        ServiceReminderFactory.create(db_session, vehicle_id=vehicle.id)
        subscribe(db_session, 1)
        registry = SubscriptionRegistry(db_session)

        run = ReminderRun(db_session, transport=FakeTransport(), registry=registry, clock=clock)
        run.execute()

        assert len(run.odometers) == 0
        registry.get_all()
        assert registry.fetch_count == 2

    def test_subscriptions_fetched_once_per_run(self, db_session):
        for _ in range(3):
            vehicle = vehicle_at(db_session, 49500)
            ServiceReminderFactory.create(db_session, vehicle_id=vehicle.id)
        subscribe(db_session, 1)

        run = ReminderRun(db_session, transport=FakeTransport(), clock=clock)
        run.execute()

        assert run.registry.fetch_count == 1

    def test_thresholds_follow_config(self, db_session, monkeypatch):
        monkeypatch.setattr('config.Config.URGENCY_THRESHOLD_KM', 100)
        vehicle = vehicle_at(db_session, 49500)
        ServiceReminderFactory.create(db_session, vehicle_id=vehicle.id, due_odometer=50000)
        subscribe(db_session, 1)

        summary = ReminderRun(db_session, Config, transport=FakeTransport(), clock=clock).execute()

        assert summary.notifications_sent == 0


class TestConfiguration:
    def test_missing_vapid_keys_fails_before_store_access(self, db_session, no_vapid_keys):
        run = ReminderRun(db_session, clock=clock)

        with patch.object(db_session, "query") as query:
            with pytest.raises(ConfigurationError):
                run.execute()
            query.assert_not_called()

        assert run.state is RunState.FAILED

    def test_transport_built_from_config(self, db_session, vapid_keys):
        run = ReminderRun(db_session, clock=clock)
        run.execute()

        assert run.transport.vapid_private_key == Config.VAPID_PRIVATE_KEY
        assert run.state is RunState.DONE


class TestCheckVehicle:
    def test_single_vehicle(self, db_session):
        vehicle = vehicle_at(db_session, 49500)
        other = vehicle_at(db_session, 49500)
        ServiceReminderFactory.create(db_session, vehicle_id=vehicle.id)
        ServiceReminderFactory.create(db_session, vehicle_id=other.id)
        subscribe(db_session, 1)
        transport = FakeTransport()

        result = ReminderRun(db_session, transport=transport, clock=clock).check_vehicle(vehicle.id)

        assert result.notifications_sent == 1
        assert len(transport.calls) == 1
        assert result.message() == "Sent 1 notifications."

    def test_unknown_vehicle(self, db_session):
        assert ReminderRun(db_session, transport=FakeTransport(), clock=clock).check_vehicle("missing") is None


class TestSummary:
    def test_record_and_message(self):
        summary = RunSummary()
        summary.record(VehicleResult("a", odometer=1, reminders_evaluated=2, notifications_sent=1, deliveries_sent=3))
        summary.record(VehicleResult("b", skipped_reason=SKIP_NO_ODOMETER))
        summary.record(VehicleResult("c", error="boom"))

        assert summary.to_dict() == {
            "vehicles_considered": 3,
            "vehicles_skipped": 1,
            "vehicles_failed": 1,
            "reminders_evaluated": 2,
            "notifications_sent": 1,
            "deliveries_sent": 3,
            "subscriptions_pruned": 0,
        }
        assert summary.message().startswith("Cron job completed. Processed 1 notification events")

    @pytest.mark.parametrize(
        "result,expected",
        [
            (VehicleResult("a", skipped_reason=SKIP_NO_REMINDERS), "No pending reminders."),
            (VehicleResult("a", reminders_evaluated=1), "No urgent reminders to notify."),
            (VehicleResult("a", error="boom"), "Check failed: boom"),
        ],
    )
    def test_vehicle_messages(self, result, expected):
        assert result.message() == expected


class TestRunReminderCheck:
    def test_emits_wide_event(self, db_session):
        vehicle = vehicle_at(db_session, 49500)
        ServiceReminderFactory.create(db_session, vehicle_id=vehicle.id)
        subscribe(db_session, 1)

        with patch("utils.wide_events.WideEvent.emit") as emit:
            summary = run_reminder_check(db_session, trigger="test", transport=FakeTransport(), clock=clock)

        assert summary.notifications_sent == 1
        emit.assert_called_once()

    def test_configuration_error_propagates(self, db_session, no_vapid_keys):
        with patch("utils.wide_events.WideEvent.emit"):
            with pytest.raises(ConfigurationError):
                run_reminder_check(db_session)


class TestCooldownAcrossRuns:
    def test_second_run_inside_cooldown_is_silent(self, db_session, fake_transport):
        vehicle = vehicle_at(db_session, 49500)
        ServiceReminderFactory.create(db_session, vehicle_id=vehicle.id, due_odometer=50000)
        subscribe(db_session, 1)

        with FreezeTime.freeze(FIXED_NOW) as frozen:
            first = ReminderRun(db_session, transport=fake_transport).execute()
            frozen.tick(timedelta(hours=47, minutes=59))
            second = ReminderRun(db_session, transport=fake_transport).execute()
            frozen.tick(timedelta(minutes=1))
            third = ReminderRun(db_session, transport=fake_transport).execute()

        assert [s.notifications_sent for s in (first, second, third)] == [1, 0, 1]
        assert len(fake_transport.calls) == 2


class TestPartialVehicleFailures:
    def _two_urgent_reminders(self, db_session):
        vehicle = vehicle_at(db_session, 49500)
        first = ServiceReminderFactory.create(db_session, vehicle_id=vehicle.id, due_odometer=50000)
        second = ServiceReminderFactory.create(
            db_session, vehicle_id=vehicle.id, due_odometer=49900, service_type="Tires"
        )
        subscribe(db_session, 1)
        return first.id, second.id

    def test_failed_write_back_keeps_counts_and_continues(self, db_session):
        reminder_ids = self._two_urgent_reminders(db_session)
        calls = []

        def flaky_mark_notified(db, reminder_id, now):
            calls.append(reminder_id)
            if len(calls) == 2:
                raise OperationalError("UPDATE", {}, Exception("database is locked"))
            return real_mark_notified(db, reminder_id, now)

        with patch("services.push_dispatcher.mark_notified", side_effect=flaky_mark_notified):
            summary = ReminderRun(db_session, transport=FakeTransport(), clock=clock).execute()

        assert summary.vehicles_failed == 0
        assert summary.reminders_evaluated == 2
        assert summary.deliveries_sent == 2
        assert summary.notifications_sent == 2
        assert [e.get("write_back_failed", False) for e in summary.results[0].reminders] == [False, True]

        stamped = {rid: reminder_state(db_session, rid).last_notification_sent for rid in reminder_ids}
        assert stamped[calls[0]] == to_iso(FIXED_NOW)
        assert stamped[calls[1]] is None

    def test_store_failure_mid_vehicle_keeps_earlier_counts(self, db_session):
        self._two_urgent_reminders(db_session)
        run = ReminderRun(db_session, transport=FakeTransport(), clock=clock)
        original = run.registry.get_all
        reads = []

        def failing_third_read():
            reads.append(1)
            if len(reads) == 3:
                raise OperationalError("SELECT", {}, Exception("connection reset"))
            return original()

        with patch.object(run.registry, "get_all", side_effect=failing_third_read):
            summary = run.execute()

        result = summary.results[0]
        assert result.failed
        assert result.deliveries_sent == 1
        assert result.notifications_sent == 1
        assert summary.vehicles_failed == 1
        assert summary.deliveries_sent == 1
        assert summary.notifications_sent == 1
