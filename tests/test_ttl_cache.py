"""
Tests for the per-run TTL cache.
"""

from utils.ttl_cache import TTLCache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestTTLCache:
    def test_set_and_get(self):
        cache = TTLCache(clock=FakeClock())
        cache.set("a", 1)

        assert cache.get("a") == 1
        assert "a" in cache
        assert cache.hits == 1

    def test_missing_returns_default(self):
        cache = TTLCache()
        assert cache.get("nope", "fallback") == "fallback"
        assert cache.misses == 1

    def test_entry_expires_at_ttl(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=60, clock=clock)
        cache.set("a", 1)

        clock.advance(59.9)
        assert cache.get("a") == 1
        clock.advance(0.1)
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_per_entry_ttl_override(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=60, clock=clock)
        cache.set("short", 1, ttl=5)
        cache.set("long", 2)

        clock.advance(10)
        assert "short" not in cache
        assert cache.get("long") == 2

    def test_no_expiry(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=None, clock=clock)
        cache.set("a", 1)

        clock.advance(10 ** 9)
        assert cache.get("a") == 1

    def test_lru_eviction(self):
        cache = TTLCache(max_size=2, clock=FakeClock())
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)

        assert "b" not in cache
        assert cache.get("a") == 1
        assert cache.get("c") == 3

    def test_age(self):
        clock = FakeClock()
        cache = TTLCache(clock=clock)
        cache.set("a", 1)
        clock.advance(42)

        assert cache.age("a") == 42
        assert cache.age("missing") is None

    def test_delete_and_clear(self):
        cache = TTLCache(clock=FakeClock())
        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.delete("a") is True
        assert cache.delete("a") is False
        cache.clear()
        assert len(cache) == 0

    def test_stats(self):
        cache = TTLCache(max_size=5, default_ttl=30, clock=FakeClock())
        cache.set("a", 1)
        cache.get("a")
        cache.get("b")

        assert cache.stats() == {"size": 1, "max_size": 5, "default_ttl": 30, "hits": 1, "misses": 1}
