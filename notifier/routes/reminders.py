"""
Reminder routes for the MotorLog notifier.

Handles the scheduled trigger that runs the reminder engine over every
vehicle, plus an on-demand check for a single vehicle.
"""

import logging

from config import Config
from database import get_db
from exceptions import ConfigurationError
from extensions import RateLimits, limiter
from flask import Blueprint, Response, jsonify, request
from services.reminder_run import ReminderRun, run_reminder_check
from utils.auth_utils import verify_cron_secret
from utils.error_codes import ErrorCode, StructuredError
from utils.wide_events import WideEvent

logger = logging.getLogger(__name__)

reminders_bp = Blueprint("reminders", __name__)


def _text(body: str, status: int = 200) -> Response:
    return Response(body, status=status, mimetype="text/plain")


@reminders_bp.route("/cron/check-reminders", methods=["GET", "POST"])
@limiter.limit(RateLimits.EXPENSIVE)
def check_reminders():
    """
    Run the reminder engine over every vehicle.

    Called by an external scheduler. Responds with a plain-text summary.
    When CRON_SECRET is set the caller must send it as a bearer token.
    """
    if not verify_cron_secret(request.headers.get("Authorization"), Config.CRON_SECRET):
        logger.warning(f"Rejected cron trigger from {request.remote_addr}")
        return _text("Unauthorized", 401)

    db = get_db()
    try:
        summary = run_reminder_check(db, trigger="cron")
    except ConfigurationError as e:
        error = StructuredError(ErrorCode.E501_MISSING_VAPID_KEYS, "VAPID keys are not set on the server.")
        logger.error(f"{error}: {e}")
        return _text("VAPID keys are not set on the server.", 500)
    except Exception as e:
        logger.exception(f"Reminder check failed: {e}")
        db.rollback()
        return _text(f"Internal server error: {e}", 500)

    return _text(summary.message())


@reminders_bp.route("/reminders/check", methods=["POST"])
@limiter.limit(RateLimits.WRITE_MODERATE)
def check_vehicle_reminders():
    """
    Check one vehicle's reminders and notify if needed.

    Request body:
        vehicleId: ID of the vehicle to check
    """
    data = request.get_json(silent=True) or {}
    vehicle_id = data.get("vehicleId")
    if not vehicle_id:
        return jsonify({"success": False, "error": "Vehicle ID is required"}), 400

    event = WideEvent("vehicle_reminder_check")
    event.add_context(vehicle_id=vehicle_id, remote_addr=request.remote_addr)

    db = get_db()
    try:
        run = ReminderRun(db)
        result = run.check_vehicle(vehicle_id)
    except ConfigurationError as e:
        event.add_error(StructuredError(ErrorCode.E501_MISSING_VAPID_KEYS, str(e)))
        event.emit(level="error")
        return jsonify({"success": False, "error": "Server is not configured to send push notifications."}), 500
    except Exception as e:
        logger.exception(f"Reminder check for vehicle {vehicle_id} failed: {e}")
        db.rollback()
        event.add_error(e)
        event.emit(level="error")
        return jsonify({"success": False, "error": "Internal server error", "details": str(e)}), 500

    if result is None:
        event.mark_failure("vehicle_not_found")
        event.emit(level="warning")
        return jsonify({"success": False, "error": "Vehicle not found"}), 404

    event.add_business_metric("reminders_evaluated", result.reminders_evaluated)
    event.add_business_metric("notifications_sent", result.notifications_sent)
    event.add_business_metric("subscriptions_pruned", result.subscriptions_pruned)

    if result.failed:
        event.mark_failure(result.error)
        event.emit(level="error")
        return jsonify({"success": False, "error": result.message(), "result": result.to_dict()}), 500

    event.mark_success()
    event.emit()
    return jsonify({"success": True, "message": result.message(), "result": result.to_dict()})
