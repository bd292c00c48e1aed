from __future__ import annotations

from conftest import VIEWPORT


def _reset_flags(monkeypatch, **env):
    from listing_search.feature_flags import reset_flags_cache

    for k, v in env.items():
        if v is None:
            monkeypatch.delenv(k, raising=False)
        else:
            monkeypatch.setenv(k, str(v))
    reset_flags_cache()


def test_defaults_keep_every_path_enabled(monkeypatch):
    from listing_search.feature_flags import get_flags

    _reset_flags(monkeypatch, LSE_FEATURE_OPTIMIZED_STORE=None)
    flags = get_flags()
    assert flags.optimized_store is True
    assert flags.school_enrichment is True
    assert flags.event_enrichment is True


def test_env_values_are_parsed(monkeypatch):
    from listing_search.feature_flags import env_int, get_flags

    _reset_flags(monkeypatch, LSE_FEATURE_OPTIMIZED_STORE="off", LSE_FEATURE_EVENT_ENRICHMENT="maybe")
    flags = get_flags()
    assert flags.optimized_store is False
    # unrecognised values fall back to the default
    assert flags.event_enrichment is True

    monkeypatch.setenv("CACHE_MAX_ENTRIES", "12.0")
    assert env_int("CACHE_MAX_ENTRIES", 5) == 12
    monkeypatch.setenv("CACHE_MAX_ENTRIES", "lots")
    assert env_int("CACHE_MAX_ENTRIES", 5) == 5


def test_optimized_flag_routes_search(monkeypatch, listings_db, fake_schools):
    from listing_search.cache import QueryCache
    from listing_search.search.engine import MapSearchRequest, SearchEngine
    from listing_search.search.router import router_stats
    from listing_search.storage.db import connect

    _reset_flags(monkeypatch, LSE_FEATURE_OPTIMIZED_STORE="0")
    engine = SearchEngine(connect(listings_db), cache=QueryCache(enabled=False), schools=fake_schools)
    total = engine.search_map(MapSearchRequest(bounds=VIEWPORT, count_only=True))
    assert total == 6
    assert router_stats()["optimized_unavailable"] == 1
    assert router_stats()["optimized"] == 0
    engine.close()


def test_enrichment_flags_gate_final_page(monkeypatch, listings_db, fake_schools):
    from listing_search.cache import QueryCache
    from listing_search.search.engine import MapSearchRequest, SearchEngine
    from listing_search.storage.db import connect

    _reset_flags(monkeypatch, LSE_FEATURE_SCHOOL_ENRICHMENT="0", LSE_FEATURE_EVENT_ENRICHMENT="0")
    engine = SearchEngine(connect(listings_db), cache=QueryCache(enabled=False), schools=fake_schools)
    result = engine.search_map(MapSearchRequest(filters={"MLS Number": "2000001"}))
    listing = result.listings[0]
    assert listing.open_house_data == []
    assert listing.best_school_grade is None
    assert fake_schools.calls == 0
    engine.close()
