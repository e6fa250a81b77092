"""
Push routes for the MotorLog notifier.

Handles browser subscription registration and one-off pushes.
"""

import json
import logging
from urllib.parse import urlparse

from config import Config
from database import get_db
from exceptions import ConfigurationError, PushDeliveryError, SubscriptionGoneError
from extensions import RateLimits, limiter
from flask import Blueprint, jsonify, request
from services.push_transport import PushTransport
from services.subscription_registry import Subscription, SubscriptionRegistry
from sqlalchemy.exc import SQLAlchemyError
from utils.auth_utils import extract_bearer_token, verify_user_token
from utils.error_codes import ErrorCode, StructuredError
from utils.wide_events import WideEvent

logger = logging.getLogger(__name__)

push_bp = Blueprint("push", __name__)


def _authenticated_user():
    """
    Resolve the user from the Authorization header.

    Returns (user_id, error_response) tuple; exactly one is None.
    """
    token = extract_bearer_token(request.headers.get("Authorization"))
    if not token:
        return None, (jsonify({"error": "Unauthorized: No token provided"}), 401)

    user_id = verify_user_token(token)
    if not user_id:
        error = StructuredError(ErrorCode.E001_INVALID_TOKEN, "Invalid user token", remote_addr=request.remote_addr)
        logger.warning(str(error))
        return None, (jsonify({"error": "Unauthorized: Invalid token"}), 401)

    return user_id, None


@push_bp.route("/subscribe", methods=["POST"])
@limiter.limit(RateLimits.WRITE_MODERATE)
def subscribe():
    """
    Register (or refresh) the caller's push subscription.

    Request body: a browser PushSubscription object
        endpoint: Push service URL
        keys.p256dh: Client public key
        keys.auth: Client auth secret
    """
    user_id, error_response = _authenticated_user()
    if error_response:
        return error_response

    try:
        subscription = Subscription.from_json(request.get_json(silent=True), user_id=user_id)
    except ValueError as e:
        return jsonify({"error": "Invalid subscription object", "details": str(e)}), 400

    db = get_db()
    try:
        SubscriptionRegistry(db).register(subscription)
    except SQLAlchemyError as e:
        db.rollback()
        error = StructuredError(ErrorCode.E201_DB_WRITE_FAILED, "Failed to save subscription", exception=e)
        logger.error(str(error))
        return jsonify({"error": "Failed to save subscription", "details": str(e)}), 500

    return jsonify({"success": True})


@push_bp.route("/subscribe", methods=["DELETE"])
@limiter.limit(RateLimits.WRITE_MODERATE)
def unsubscribe():
    """
    Remove a push subscription.

    Request body:
        endpoint: Push service URL of the subscription to remove
    """
    user_id, error_response = _authenticated_user()
    if error_response:
        return error_response

    data = request.get_json(silent=True) or {}
    endpoint = data.get("endpoint")
    if not endpoint:
        return jsonify({"error": "endpoint is required"}), 400

    # Only the owner may drop a registration; anything else looks like a missing row
    removed = SubscriptionRegistry(get_db()).remove(endpoint, user_id=user_id, reason="unsubscribed")
    if not removed:
        return jsonify({"error": "Subscription not found"}), 404

    logger.info(f"User {user_id} unsubscribed {endpoint[:60]}")
    return jsonify({"success": True, "removed": True})


@push_bp.route("/send-push", methods=["POST"])
@limiter.limit(RateLimits.AUTH_STRICT)
def send_push():
    """
    Send one notification directly to the given subscription.

    Request body:
        subscription: Browser PushSubscription object
        payload: Notification payload (object or pre-encoded string)
    """
    try:
        transport = PushTransport.from_config(Config)
    except ConfigurationError as e:
        logger.error(str(StructuredError(ErrorCode.E501_MISSING_VAPID_KEYS, str(e))))
        return jsonify({"error": "Server is not configured to send push notifications."}), 500

    data = request.get_json(silent=True) or {}
    try:
        subscription = Subscription.from_json(data.get("subscription"))
    except ValueError:
        return jsonify({"error": "Invalid request body: subscription object is required."}), 400

    payload = data.get("payload")
    if not payload:
        return jsonify({"error": "Invalid request body: payload is required."}), 400
    payload_json = payload if isinstance(payload, str) else json.dumps(payload)

    event = WideEvent("direct_push")
    event.add_context(endpoint_host=urlparse(subscription.endpoint).netloc, payload_bytes=len(payload_json))
    try:
        with event.timer("deliver"):
            outcome = transport.send(subscription, payload_json)
        event.add_context(delivery_status=outcome.status.value, status_code=outcome.status_code)
        outcome.raise_for_status()
    except SubscriptionGoneError as e:
        event.add_error(e)
        event.emit(level="warning")
        return jsonify({"error": "Subscription has expired or is no longer valid.", "details": str(e)}), 410
    except PushDeliveryError as e:
        event.add_error(e)
        event.emit(level="error")
        return jsonify({"error": "Failed to send notification", "details": str(e)}), 500

    event.add_business_metric("notifications_sent", 1)
    event.mark_success().emit()
    return jsonify({"success": True, "message": "Notification sent successfully to the provided subscription."})


@push_bp.route("/health", methods=["GET"])
@limiter.limit(RateLimits.PUBLIC)
def health():
    """Liveness check."""
    return jsonify(
        {
            "status": "ok",
            "vapid_configured": Config.vapid_configured(),
            "scheduler_enabled": Config.SCHEDULER_ENABLED,
        }
    )
