"""
Services module for the MotorLog notifier.

This module contains the reminder engine's building blocks, kept separate
from the Flask route handlers.
"""

from services.notification_gate import should_send
from services.odometer_service import OdometerResolver
from services.push_dispatcher import NotificationPayload, PushDispatcher, build_payload
from services.push_transport import DeliveryOutcome, DeliveryStatus, PushTransport
from services.reminder_run import ReminderRun, RunState, RunSummary, VehicleResult, run_reminder_check
from services.subscription_registry import Subscription, SubscriptionRegistry
from services.urgency_service import Classification, UrgencyKind, UrgencyThresholds, classify

__all__ = [
    # Odometer
    'OdometerResolver',
    # Subscriptions
    'Subscription',
    'SubscriptionRegistry',
    # Urgency and gating
    'Classification',
    'UrgencyKind',
    'UrgencyThresholds',
    'classify',
    'should_send',
    # Delivery
    'DeliveryOutcome',
    'DeliveryStatus',
    'PushTransport',
    'NotificationPayload',
    'PushDispatcher',
    'build_payload',
    # Run
    'ReminderRun',
    'RunState',
    'RunSummary',
    'VehicleResult',
    'run_reminder_check',
]
