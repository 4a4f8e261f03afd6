"""
Tests for the TTL cache.
"""

from conftest import FakeClock
from leadscan.cache import REVIEWS_TTL, SEARCH_RESULTS_TTL, TTLCache, reviews_key, search_key


class TestTTLCache:
    def test_set_and_get(self):
        cache = TTLCache(clock=FakeClock())
        cache.set("k", "v", 10)
        assert cache.get("k") == "v"

    def test_missing_key(self):
        assert TTLCache().get("nope") is None

    def test_expiry(self):
        clock = FakeClock()
        cache = TTLCache(clock=clock)
        cache.set("k", "v", 10)

        clock.advance(10)
        assert cache.get("k") == "v"
        clock.advance(1)
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_entries_expire_independently(self):
        clock = FakeClock()
        cache = TTLCache(clock=clock)
        cache.set("short", 1, 5)
        cache.set("long", 2, 50)

        clock.advance(6)

        assert cache.get("short") is None
        assert cache.get("long") == 2

    def test_ttls(self):
        assert SEARCH_RESULTS_TTL == 3600
        assert REVIEWS_TTL == 1800


class TestKeys:
    def test_search_key_normalized(self):
        assert search_key("Plumber", " Austin,  TX ", 20) == search_key("plumber", "austin, tx", 20)
        assert search_key("plumber", "austin", 20) != search_key("plumber", "austin", 10)

    def test_reviews_key(self):
        assert reviews_key("place-1", 20).startswith("reviews:")
        assert reviews_key("place-1", 20) != search_key("place-1", "", 20)
