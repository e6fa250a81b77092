"""
Tests for the notification cooldown gate.
"""

from datetime import timedelta
from types import SimpleNamespace

import pytest
from freezegun import freeze_time
from hypothesis import given
from hypothesis import strategies as st
from services.notification_gate import hours_since_last_notification, should_send
from services.urgency_service import Classification, UrgencyKind
from tests.test_helpers import FIXED_NOW
from utils.timezone import to_iso, utc_now

URGENT = Classification(UrgencyKind.URGENT, 500, None)
OVERDUE = Classification(UrgencyKind.OVERDUE, None, -1)
NOT_DUE = Classification(UrgencyKind.NONE, 5000, None)


def reminder(last_sent=None):
    return SimpleNamespace(id="r1", service_type="Oil Change", last_notification_sent=last_sent)


class TestShouldSend:
    def test_never_notified_urgent_sends(self):
        assert should_send(reminder(), URGENT, FIXED_NOW, 48) is True

    def test_never_notified_overdue_sends(self):
        assert should_send(reminder(), OVERDUE, FIXED_NOW, 48) is True

    def test_not_due_never_sends(self):
        assert should_send(reminder(), NOT_DUE, FIXED_NOW, 48) is False

    def test_notified_ten_hours_ago_is_gated(self):
        last = to_iso(FIXED_NOW - timedelta(hours=10))
        assert should_send(reminder(last), URGENT, FIXED_NOW, 48) is False

    def test_notified_exactly_cooldown_ago_sends(self):
        last = to_iso(FIXED_NOW - timedelta(hours=48))
        assert should_send(reminder(last), URGENT, FIXED_NOW, 48) is True

    def test_partial_hours_are_truncated(self):
        """47h59m is still 47 whole hours, so the gate stays closed."""
        last = to_iso(FIXED_NOW - timedelta(hours=47, minutes=59))
        assert should_send(reminder(last), URGENT, FIXED_NOW, 48) is False

    def test_unparseable_timestamp_counts_as_never(self):
        assert should_send(reminder("not-a-timestamp"), URGENT, FIXED_NOW, 48) is True

    @pytest.mark.parametrize(
        "stored",
        ["2024-06-14T12:00:00.000Z", "2024-06-14T12:00:00+00:00", "2024-06-14T14:00:00+02:00", "2024-06-14T12:00:00"],
    )
    def test_accepts_stored_timestamp_variants(self, stored):
        assert hours_since_last_notification(reminder(stored), FIXED_NOW) == 24

    def test_cooldown_defaults_to_config(self, monkeypatch):
        monkeypatch.setattr('config.Config.NOTIFICATION_COOLDOWN_HOURS', 5)
        last = to_iso(FIXED_NOW - timedelta(hours=6))
        assert should_send(reminder(last), URGENT, FIXED_NOW) is True


class TestCooldownOverTime:
    """The gate reopens once the cooldown has fully elapsed."""

    def test_reopens_after_cooldown(self):
        with freeze_time(FIXED_NOW) as frozen:
            r = reminder()
            assert should_send(r, URGENT, utc_now(), 48) is True
            r.last_notification_sent = to_iso(utc_now())

            frozen.tick(timedelta(hours=1))
            assert should_send(r, URGENT, utc_now(), 48) is False

            frozen.tick(timedelta(hours=46, minutes=59))
            assert should_send(r, URGENT, utc_now(), 48) is False

            frozen.tick(timedelta(minutes=1))
            assert should_send(r, URGENT, utc_now(), 48) is True

    @given(st.integers(min_value=0, max_value=24 * 365))
    def test_gated_iff_within_cooldown(self, hours_later):
        r = reminder(to_iso(FIXED_NOW))
        now = FIXED_NOW + timedelta(hours=hours_later)
        assert should_send(r, URGENT, now, 48) is (hours_later >= 48)
