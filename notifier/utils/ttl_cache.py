"""
Time-to-live caches for a single reminder run.

Uses simple in-memory TTL storage with LRU eviction. Instances are created
per run and handed to the components that own them; nothing here is a
module-level singleton.
"""

import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

# Cache configuration
DEFAULT_TTL_SECONDS = 600  # 10 minutes default
MAX_CACHE_SIZE = 1000  # Maximum cached entries


class TTLCache:
    """
    Time-to-Live cache with LRU eviction.

    An entry is served iff ``clock() - stored_at < ttl``. The clock is
    injectable so tests can move time without sleeping.
    """

    def __init__(
        self,
        max_size: int = MAX_CACHE_SIZE,
        default_ttl: Optional[float] = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize cache.

        Args:
            max_size: Maximum number of entries to cache
            default_ttl: Default time-to-live in seconds, None for no expiry
            clock: Callable returning the current time in seconds
        """
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.clock = clock
        self._cache = OrderedDict()
        self._timestamps = {}
        self._ttls = {}
        self.hits = 0
        self.misses = 0

    def __contains__(self, key) -> bool:
        return self._fresh(key)

    def __len__(self) -> int:
        return len(self._cache)

    def _fresh(self, key) -> bool:
        if key not in self._cache:
            return False

        ttl = self._ttls.get(key)
        if ttl is not None and self.clock() - self._timestamps[key] >= ttl:
            self._evict(key)
            return False
        return True

    def _evict(self, key):
        del self._cache[key]
        del self._timestamps[key]
        self._ttls.pop(key, None)

    def get(self, key, default: Any = None) -> Any:
        """
        Get value from cache if not expired.

        Args:
            key: Cache key
            default: Returned when the key is missing or expired

        Returns:
            Cached value or default
        """
        if not self._fresh(key):
            self.misses += 1
            return default

        self.hits += 1
        self._cache.move_to_end(key)
        return self._cache[key]

    def set(self, key, value: Any, ttl: Optional[float] = None):
        """
        Set value in cache.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Optional TTL override in seconds
        """
        if len(self._cache) >= self.max_size and key not in self._cache:
            oldest_key = next(iter(self._cache))
            self._evict(oldest_key)

        self._cache[key] = value
        self._cache.move_to_end(key)
        self._timestamps[key] = self.clock()
        self._ttls[key] = ttl if ttl is not None else self.default_ttl

    def age(self, key) -> Optional[float]:
        """Seconds since the entry was stored, or None when absent."""
        if key not in self._timestamps:
            return None
        return self.clock() - self._timestamps[key]

    def delete(self, key) -> bool:
        """Remove a single entry. Returns True if it existed."""
        if key not in self._cache:
            return False
        self._evict(key)
        return True

    def clear(self):
        """Clear all cached entries."""
        self._cache.clear()
        self._timestamps.clear()
        self._ttls.clear()

    def stats(self):
        """Get cache statistics."""
        return {
            "size": len(self._cache),
            "max_size": self.max_size,
            "default_ttl": self.default_ttl,
            "hits": self.hits,
            "misses": self.misses,
        }
