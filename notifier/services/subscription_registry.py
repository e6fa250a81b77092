"""
Subscription Registry

Loads, registers and prunes Web Push subscriptions. The full subscription
set is cached with a wall-clock TTL so repeated reads during a run (one per
vehicle) cost a single collection read.

Subscriptions leave the registry as immutable ``Subscription`` values, not
ORM instances, so they can be handed to delivery worker threads without
touching the database session.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from config import Config
from models import PushSubscription, encode_endpoint
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from utils.ttl_cache import TTLCache

logger = logging.getLogger(__name__)

ALL_SUBSCRIPTIONS_KEY = "subscriptions:all"


@dataclass(frozen=True)
class Subscription:
    """A push endpoint plus its encryption keys."""

    endpoint: str
    p256dh: Optional[str]
    auth: Optional[str]
    user_id: Optional[str] = None

    @property
    def key(self) -> str:
        return encode_endpoint(self.endpoint)

    def subscription_info(self) -> Dict:
        """Shape expected by pywebpush."""
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh, "auth": self.auth}}

    @classmethod
    def from_model(cls, model: PushSubscription) -> "Subscription":
        keys = model.keys or {}
        return cls(model.endpoint, keys.get("p256dh"), keys.get("auth"), model.user_id)

    @classmethod
    def from_json(cls, data: Dict, user_id: Optional[str] = None) -> "Subscription":
        """Build from a browser PushSubscription JSON object. Raises ValueError if malformed."""
        if not isinstance(data, dict) or not data.get("endpoint"):
            raise ValueError("subscription.endpoint is required")
        keys = data.get("keys") or {}
        if not isinstance(keys, dict) or not keys.get("p256dh") or not keys.get("auth"):
            raise ValueError("subscription.keys.p256dh and subscription.keys.auth are required")
        return cls(str(data["endpoint"]), keys["p256dh"], keys["auth"], user_id)


class SubscriptionRegistry:
    """
    Registry of push subscriptions backed by the ``push_subscriptions`` table.

    A cached read is served iff ``now - fetch_timestamp < ttl``. Removal
    evicts the endpoint from the cached list without resetting its fetch
    timestamp.
    """

    def __init__(
        self,
        db: Session,
        ttl_seconds: Optional[float] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.db = db
        self.ttl_seconds = Config.SUBSCRIPTION_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        cache_kwargs = {"max_size": 1, "default_ttl": self.ttl_seconds}
        if clock is not None:
            cache_kwargs["clock"] = clock
        self._cache = TTLCache(**cache_kwargs)
        self.fetch_count = 0

    def get_all(self) -> List[Subscription]:
        """Return every registered subscription, from cache when fresh."""
        cached = self._cache.get(ALL_SUBSCRIPTIONS_KEY)
        if cached is not None:
            return list(cached)

        rows = self.db.query(PushSubscription).all()
        subscriptions = [Subscription.from_model(row) for row in rows]
        self.fetch_count += 1
        self._cache.set(ALL_SUBSCRIPTIONS_KEY, subscriptions)
        logger.info(f"Loaded {len(subscriptions)} push subscriptions")
        return list(subscriptions)

    def _evict(self, endpoint: str):
        cached = self._cache.get(ALL_SUBSCRIPTIONS_KEY)
        if cached is not None:
            cached[:] = [s for s in cached if s.endpoint != endpoint]

    def remove(self, endpoint: str, user_id: Optional[str] = None, reason: str = "expired") -> bool:
        """
        Delete the subscription for ``endpoint``.

        With ``user_id`` only a row owned by that user is deleted; the engine's
        pruning of gone endpoints passes no owner.

        Never raises: a failed delete is logged and the endpoint will fail
        again (and be retried for deletion) on the next run.

        Returns:
            True if a row was deleted
        """
        query = self.db.query(PushSubscription).filter(PushSubscription.id == encode_endpoint(endpoint))
        if user_id is None:
            # A gone endpoint leaves the cache even if the delete below fails
            self._evict(endpoint)
        else:
            query = query.filter(PushSubscription.user_id == user_id)

        try:
            deleted = query.delete(synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to delete {reason} subscription {endpoint[:60]}: {e}")
            return False

        if deleted:
            self._evict(endpoint)
            logger.info(f"Deleted {reason} subscription {endpoint[:60]}")
        return bool(deleted)

    def register(self, subscription: Subscription, now: Optional[datetime] = None) -> PushSubscription:
        """
        Create or overwrite the registration for ``subscription.endpoint``.

        The URL-encoded endpoint is the primary key, so registering the same
        endpoint twice updates the existing row instead of duplicating it.
        An endpoint belongs to whichever user last registered it from that
        browser; ``created_at`` keeps the first registration time.
        """
        row = self.db.get(PushSubscription, subscription.key)
        if row is None:
            row = PushSubscription(id=subscription.key, endpoint=subscription.endpoint)
            if now is not None:
                row.created_at = now
            self.db.add(row)
        elif row.user_id != subscription.user_id:
            logger.info(
                f"Push endpoint {subscription.endpoint[:60]} moved from user {row.user_id} "
                f"to user {subscription.user_id}"
            )

        row.keys = {"p256dh": subscription.p256dh, "auth": subscription.auth}
        row.user_id = subscription.user_id
        if now is not None:
            row.updated_at = now

        self.db.commit()
        self.clear()
        logger.info(f"Registered push subscription for user {subscription.user_id}")
        return row

    def clear(self):
        """Drop the cached subscription list."""
        self._cache.clear()
