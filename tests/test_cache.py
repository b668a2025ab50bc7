"""Tests for the whole-view TTL cache."""

from continuity_conductor.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestTTLCache:
    """Test freshness of the whole view."""

    def test_never_loaded_is_stale(self):
        cache = TTLCache(ttl=10)
        assert cache.is_stale()

    def test_replace_all_restarts_ttl(self):
        clock = FakeClock()
        cache = TTLCache(ttl=10, clock=clock)

        loaded = cache.replace_all(["a", "bb"], key=len)
        assert loaded == 2
        assert not cache.is_stale()

        clock.advance(10.5)
        assert cache.is_stale()

        cache.replace_all(["ccc"], key=len)
        assert not cache.is_stale()
        assert cache.get(1) is None
        assert cache.get(3) == "ccc"

    def test_put_does_not_refresh_view(self):
        clock = FakeClock()
        cache = TTLCache(ttl=5, clock=clock)
        cache.replace_all([], key=len)
        clock.advance(6)

        cache.put("k", "v")
        assert cache.is_stale()
        assert "k" in cache

    def test_mark_fresh_keeps_contents(self):
        clock = FakeClock()
        cache = TTLCache(ttl=5, clock=clock)
        cache.put("k", "v")
        cache.mark_fresh()
        assert not cache.is_stale()
        assert cache.values() == ["v"]

    def test_invalidate(self):
        cache = TTLCache()
        cache.put("a", 1)
        assert cache.invalidate("a") is True
        assert cache.invalidate("a") is False


class TestCacheStats:
    """Test hit/miss accounting."""

    def test_hit_rate(self):
        cache = TTLCache(ttl=100)
        cache.put("a", 1)
        cache.get("a")
        cache.get("a")
        cache.get("missing")

        stats = cache.stats
        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert abs(stats["hit_rate"] - 2 / 3) < 1e-9
        assert stats["size"] == 1

    def test_empty_stats(self):
        stats = TTLCache().stats
        assert stats["hit_rate"] == 0.0
        assert stats["age_seconds"] is None
        assert stats["stale"] is True
