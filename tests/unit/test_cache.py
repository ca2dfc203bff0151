"""Tests for the TTL cache."""
from ledgersync.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestTTLCache:
    def test_get_before_expiry(self):
        clock = FakeClock()
        cache = TTLCache(clock=clock)
        cache.set("k", {"v": 1}, ttl=30)
        clock.now += 29
        assert cache.get("k") == {"v": 1}

    def test_expired_entry_dropped_on_read(self):
        clock = FakeClock()
        cache = TTLCache(clock=clock)
        cache.set("k", "value", ttl=30)
        clock.now += 30
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_entry_age(self):
        clock = FakeClock()
        cache = TTLCache(clock=clock)
        cache.set("k", "value", ttl=60)
        clock.now += 12
        assert cache.get_entry("k") == ("value", 12.0)

    def test_evict_expired(self):
        clock = FakeClock()
        cache = TTLCache(clock=clock)
        cache.set("short", 1, ttl=10)
        cache.set("long", 2, ttl=100)
        clock.now += 50
        assert cache.evict_expired() == 1
        assert len(cache) == 1
        assert cache.get("long") == 2

    def test_clear(self):
        cache = TTLCache()
        cache.set(("a", 1), 1, ttl=60)
        cache.clear()
        assert cache.get(("a", 1)) is None

    def test_missing_key(self):
        assert TTLCache().get("nope") is None
