"""Tests for the response caches."""

from relay.core.cache import InMemoryCache, StoreCache


class TestInMemoryCache:
    def test_set_get(self, clock):
        cache = InMemoryCache(clock=clock)
        cache.set("k", {"status": "in_transit"})
        assert cache.get("k") == {"status": "in_transit"}

    def test_ttl_expiry(self, clock):
        cache = InMemoryCache(default_ttl_seconds=300, clock=clock)
        cache.set("k", 1)
        clock.advance(301)
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_lru_eviction(self, clock):
        cache = InMemoryCache(max_size=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)
        assert cache.get("b") is None
        assert cache.get("a") == 1
        assert cache.get("c") == 3

    def test_delete_and_clear(self, clock):
        cache = InMemoryCache(clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.delete("a")
        assert cache.get("a") is None
        cache.clear()
        assert len(cache) == 0


class TestStoreCache:
    def test_prefixed_keys_with_ttl(self, store, clock):
        cache = StoreCache(store, default_ttl_seconds=60)
        cache.set("k", {"v": 1})
        assert store.get("relay:cache:k") == {"v": 1}
        clock.advance(61)
        assert cache.get("k") is None

    def test_clear_only_touches_cache_keys(self, store):
        cache = StoreCache(store)
        cache.set("a", 1)
        store.set("relay:circuit:acs", {"open_until": 1})
        cache.clear()
        assert cache.get("a") is None
        assert store.get("relay:circuit:acs") is not None
