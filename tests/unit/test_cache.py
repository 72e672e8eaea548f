"""
Unit tests for the order read cache.
"""

from ordercore.cache import Cache, NullCache, TTLCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestTTLCache:
    """Tests for TTLCache."""

    def test_get_returns_value_before_expiry(self):
        clock = FakeClock()
        cache = TTLCache(ttl=10.0, clock=clock)
        cache.set("a", 1)

        clock.now = 9.9
        assert cache.get("a") == 1

    def test_entry_expires(self):
        clock = FakeClock()
        cache = TTLCache(ttl=10.0, clock=clock)
        cache.set("a", 1)

        clock.now = 10.0
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_zero_ttl_disables_caching(self):
        cache = TTLCache(ttl=0)
        cache.set("a", 1)
        assert cache.get("a") is None

    def test_oldest_entry_evicted(self):
        cache = TTLCache(ttl=10.0, max_entries=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)

        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_invalidate_and_clear(self):
        cache = TTLCache()
        cache.set("a", 1)
        cache.set("b", 2)

        cache.invalidate("a")
        cache.invalidate("missing")
        assert cache.get("a") is None
        assert cache.get("b") == 2

        cache.clear()
        assert len(cache) == 0

    def test_implements_protocol(self):
        assert isinstance(TTLCache(), Cache)
        assert isinstance(NullCache(), Cache)


class TestNullCache:
    def test_never_stores(self):
        cache = NullCache()
        cache.set("a", 1)
        assert cache.get("a") is None
