from listing_search.cache import CacheKey, QueryCache


def test_cache_eviction(monkeypatch):
    monkeypatch.setenv("CACHE_MAX_ENTRIES", "2")
    cache = QueryCache(enabled=True)
    for i in range(3):
        cache.set(CacheKey.build("map", filters={"key": i}), {"value": i}, ttl=60)
    stats = cache.stats()
    assert stats["evictions"] >= 1
    assert stats["entries"] == 2


def test_clear_resets_stats():
    cache = QueryCache(enabled=True)
    key = CacheKey.build("autocomplete", filters={"term": "bos"})
    cache.set(key, ["Boston"], ttl=60)
    assert cache.get(key) == ["Boston"]
    cache.clear()
    assert cache.get(key) is None
    assert cache.stats() == {"hits": 0, "misses": 1, "evictions": 0, "entries": 0}


def test_zero_capacity_stores_nothing(monkeypatch):
    key = CacheKey.build("map", filters={"key": 1})
    cache = QueryCache(max_entries=0, enabled=True)
    cache.set(key, {"value": 1}, ttl=60)
    assert cache.get(key) is None
    monkeypatch.setenv("CACHE_MAX_ENTRIES", "-3")
    cache = QueryCache(enabled=True)
    cache.set(key, {"value": 1}, ttl=60)
    assert cache.stats()["entries"] == 0
