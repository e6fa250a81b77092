"""
Web Push transport.

Wraps ``pywebpush.webpush`` and turns every delivery attempt into a typed
``DeliveryOutcome`` instead of an exception, so callers fanning out to many
endpoints can join on results:

- DELIVERED: the push service accepted the message
- GONE: the push service answered 404/410, the endpoint no longer exists
- TRANSIENT: anything else (other HTTP errors, network errors, bugs)
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import requests
from config import Config
from exceptions import ConfigurationError, PushDeliveryError, SubscriptionGoneError
from pywebpush import WebPushException, webpush
from utils.error_codes import ErrorCode, StructuredError

logger = logging.getLogger(__name__)

# Status codes the push service uses to say "this subscription is dead"
GONE_STATUS_CODES = (404, 410)


class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    GONE = "gone"
    TRANSIENT = "transient"


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of one delivery attempt to one endpoint."""

    status: DeliveryStatus
    endpoint: str
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.status is DeliveryStatus.DELIVERED

    @property
    def gone(self) -> bool:
        return self.status is DeliveryStatus.GONE

    def raise_for_status(self):
        """Raise SubscriptionGoneError or PushDeliveryError unless delivered."""
        if self.gone:
            raise SubscriptionGoneError(self.endpoint, self.status_code)
        if not self.delivered:
            raise PushDeliveryError(self.error or "Push delivery failed", self.endpoint, self.status_code)


def _response_status(exc: WebPushException) -> Optional[int]:
    response = getattr(exc, "response", None)
    if response is None:
        return None
    return getattr(response, "status_code", None)


class PushTransport:
    """Sends encrypted Web Push messages signed with the VAPID key pair."""

    def __init__(
        self,
        vapid_private_key: str,
        vapid_subject: str,
        ttl: int = 86400,
        timeout: Optional[float] = 10,
        send_func: Optional[Callable] = None,
    ):
        if not vapid_private_key:
            raise ConfigurationError("VAPID private key is not set", config_key="VAPID_PRIVATE_KEY")
        self.vapid_private_key = vapid_private_key
        self.vapid_subject = vapid_subject
        self.ttl = ttl
        self.timeout = timeout
        self._send = send_func

    @classmethod
    def from_config(cls, config=Config, send_func: Optional[Callable] = None) -> "PushTransport":
        """
        Build a transport from configuration.

        Raises:
            ConfigurationError: if either VAPID key is missing
        """
        if not config.VAPID_PUBLIC_KEY:
            raise ConfigurationError("VAPID public key is not set", config_key="VAPID_PUBLIC_KEY")
        if not config.VAPID_PRIVATE_KEY:
            raise ConfigurationError("VAPID private key is not set", config_key="VAPID_PRIVATE_KEY")
        return cls(
            vapid_private_key=config.VAPID_PRIVATE_KEY,
            vapid_subject=config.VAPID_SUBJECT,
            ttl=config.PUSH_TTL_SECONDS,
            timeout=config.PUSH_TIMEOUT_SECONDS,
            send_func=send_func,
        )

    def send(self, subscription, payload_json: str) -> DeliveryOutcome:
        """
        Deliver one payload to one subscription. Never raises.

        Args:
            subscription: Object exposing ``endpoint`` and ``subscription_info()``
            payload_json: JSON-encoded notification payload
        """
        endpoint = subscription.endpoint
        try:
            send = self._send or webpush
            # pywebpush fills in "aud" from the endpoint, so claims must not be shared
            response = send(
                subscription_info=subscription.subscription_info(),
                data=payload_json,
                vapid_private_key=self.vapid_private_key,
                vapid_claims={"sub": self.vapid_subject},
                ttl=self.ttl,
                timeout=self.timeout,
            )
        except WebPushException as e:
            status_code = _response_status(e)
            if status_code in GONE_STATUS_CODES:
                logger.info(f"Push endpoint gone ({status_code}): {endpoint[:60]}")
                return DeliveryOutcome(DeliveryStatus.GONE, endpoint, status_code, str(e))

            error = StructuredError(
                ErrorCode.E102_PUSH_REJECTED,
                f"Push service rejected message: HTTP {status_code}",
                exception=e,
                endpoint=endpoint[:60],
            )
            logger.warning(str(error))
            return DeliveryOutcome(DeliveryStatus.TRANSIENT, endpoint, status_code, str(e))
        except requests.exceptions.RequestException as e:
            error = StructuredError(ErrorCode.E101_PUSH_CONNECTION, "Push service unreachable", exception=e)
            logger.warning(f"{error}: {endpoint[:60]}: {e}")
            return DeliveryOutcome(DeliveryStatus.TRANSIENT, endpoint, None, str(e))
        except Exception as e:
            logger.exception(f"Unexpected error sending push to {endpoint[:60]}: {e}")
            return DeliveryOutcome(DeliveryStatus.TRANSIENT, endpoint, None, str(e))

        return DeliveryOutcome(DeliveryStatus.DELIVERED, endpoint, getattr(response, "status_code", None))
