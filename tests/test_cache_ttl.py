import json

import pytest

from conftest import VIEWPORT

from listing_search.cache import TTL_MAP_INITIAL, TTL_MAP_OPTIMIZED, TTL_MAP_PAN, CacheKey, QueryCache
from listing_search.feature_flags import FeatureFlags
from listing_search.search.engine import MapSearchRequest, SearchEngine
from listing_search.storage.db import connect


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _engine(path, cache, schools, optimized=True):
    return SearchEngine(
        connect(path),
        cache=cache,
        flags=FeatureFlags(optimized_store=optimized, school_enrichment=False, event_enrichment=False),
        schools=schools,
    )


def _count_queries(engine):
    calls = {"n": 0}
    original = engine.summary.query

    def counting(*args, **kwargs):
        calls["n"] += 1
        return original(*args, **kwargs)

    engine.summary.query = counting
    return calls


def test_identical_requests_hit_cache_until_ttl(listings_db, fake_schools):
    clock = Clock()
    engine = _engine(listings_db, QueryCache(clock=clock, enabled=True), fake_schools)
    calls = _count_queries(engine)
    req = MapSearchRequest(filters={"status": ["Active"]}, bounds=VIEWPORT, initial_load=True)

    first = engine.search_map(req)
    second = engine.search_map(MapSearchRequest(filters={"status": ["Active"]}, bounds=dict(VIEWPORT), initial_load=True))
    assert calls["n"] == 1
    assert json.dumps(first.to_dict(), sort_keys=True) == json.dumps(second.to_dict(), sort_keys=True)

    clock.now += TTL_MAP_OPTIMIZED + 1
    engine.search_map(req)
    assert calls["n"] == 2
    engine.close()


@pytest.mark.parametrize("optimized, initial_ttl", [(True, TTL_MAP_OPTIMIZED), (False, TTL_MAP_INITIAL)])
def test_pan_expires_before_initial_load(listings_db, fake_schools, optimized, initial_ttl):
    clock = Clock()
    engine = _engine(listings_db, QueryCache(clock=clock, enabled=True), fake_schools, optimized=optimized)
    store = engine.summary if optimized else engine.normalized
    calls = {"n": 0}
    original = store.query

    def counting(*args, **kwargs):
        calls["n"] += 1
        return original(*args, **kwargs)

    store.query = counting
    initial = MapSearchRequest(filters={"status": ["Active"]}, bounds=VIEWPORT, initial_load=True)
    pan = MapSearchRequest(filters={"status": ["Active"]}, bounds=VIEWPORT)
    engine.search_map(initial)
    engine.search_map(pan)
    base = calls["n"]

    assert TTL_MAP_PAN < initial_ttl
    clock.now += TTL_MAP_PAN + 1
    engine.search_map(initial)
    assert calls["n"] == base
    engine.search_map(pan)
    assert calls["n"] > base
    engine.close()


def test_force_fresh_bypasses_cache(listings_db, fake_schools):
    engine = _engine(listings_db, QueryCache(clock=Clock(), enabled=True), fake_schools)
    calls = _count_queries(engine)
    req = MapSearchRequest(filters={"status": ["Active"]}, bounds=VIEWPORT)
    engine.search_map(req)
    engine.search_map(MapSearchRequest(filters={"status": ["Active"]}, bounds=VIEWPORT, force_fresh=True))
    assert calls["n"] == 2
    engine.close()


def test_cache_env_switch(monkeypatch):
    monkeypatch.setenv("CACHE", "0")
    cache = QueryCache()
    key = CacheKey.build("map", filters={"a": 1})
    cache.set(key, {"x": 1}, ttl=60)
    assert cache.get(key) is None
    assert cache.stats()["hits"] == 0


def test_key_is_canonical():
    a = CacheKey.build("map", filters={"b": [1, 2], "a": {"min": 1}}, bounds=VIEWPORT, modes={"x": True, "y": False})
    b = CacheKey.build("map", filters={"a": {"min": 1}, "b": [1, 2]}, bounds=dict(VIEWPORT), modes={"x": True})
    assert a == b
    assert hash(a) == hash(b)
    assert a != CacheKey.build("map", filters={"a": {"min": 1}, "b": [1, 2]}, bounds=VIEWPORT, offset=200)


def test_eviction_drops_soonest_expiring():
    clock = Clock()
    cache = QueryCache(max_entries=2, clock=clock, enabled=True)
    short = CacheKey.build("map", filters={"k": "short"})
    long_ = CacheKey.build("map", filters={"k": "long"})
    cache.set(short, 1, ttl=10)
    cache.set(long_, 2, ttl=1000)
    cache.set(CacheKey.build("map", filters={"k": "new"}), 3, ttl=100)
    assert cache.get(short) is None
    assert cache.get(long_) == 2
    assert cache.stats()["evictions"] == 1
