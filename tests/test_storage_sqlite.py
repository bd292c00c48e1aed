import sqlite3

import pytest

from listing_search.errors import OptimizedStoreError
from listing_search.search.query import compile_filters
from listing_search.storage.base import clamp_limit, clamp_offset
from listing_search.storage.db import connect, get_db_path
from listing_search.storage.normalized import NormalizedRepository, from_clause
from listing_search.storage.optimized import SummaryRepository
from listing_search.storage.schema import ensure_schema, get_columns, table_exists


def test_ensure_schema_is_idempotent(tmp_path):
    db_path = tmp_path / "sub" / "listings.sqlite"
    conn = connect(str(db_path))
    ensure_schema(conn)
    ensure_schema(conn)
    for table in ("listing_summary", "listings", "listings_archive", "media_archive", "open_houses", "agents"):
        assert table_exists(conn, table)
    assert "coordinates" in get_columns(conn, "listing_location_archive")
    conn.close()

    raw = sqlite3.connect(str(db_path))
    assert raw.execute("SELECT COUNT(*) FROM listings").fetchone()[0] == 0
    raw.close()


def test_db_path_from_env(monkeypatch):
    assert get_db_path() == "./listings.sqlite"
    monkeypatch.setenv("LISTINGS_SQLITE_PATH", "/tmp/x.sqlite")
    assert get_db_path() == "/tmp/x.sqlite"


def test_clamps():
    assert clamp_limit(None) == 200
    assert clamp_limit(10_000) == 250
    assert clamp_limit(0) == 1
    assert clamp_limit("abc") == 200
    assert clamp_offset(-5) == 0
    assert clamp_offset("7") == 7
    assert clamp_offset(10**12) == 10_000
    assert clamp_offset(600, cap=500) == 500
    assert clamp_offset(float("inf")) == 0


def test_count_joins_only_predicate_tables():
    assert "listing_location" not in from_clause("live", set())
    clause = from_clause("archive", {"features", "details"})
    assert clause.index("listing_details_archive") < clause.index("listing_features_archive")
    with pytest.raises(ValueError):
        from_clause("live", {"garage"})


def test_repositories_check_compiled_store(listings_db):
    conn = connect(listings_db)
    repo = NormalizedRepository(conn)
    with pytest.raises(ValueError):
        repo.query("archive", compile_filters({}, "live"), limit=5)
    summary = SummaryRepository(conn)
    with pytest.raises(ValueError):
        summary.count("archive", compile_filters({}, "optimized"))
    conn.close()


def test_normalized_rows_carry_partition(listings_db):
    conn = connect(listings_db)
    repo = NormalizedRepository(conn)
    rows = repo.query("archive", compile_filters({"status": ["Closed"]}, "archive"), limit=5)
    assert [(x.listing_id, x.source, x.price) for x in rows] == [(1500001, "archive", 780000)]
    assert rows[0].photo_url.endswith("/0.jpg")
    assert repo.count("live", compile_filters({}, "live")) == 7
    conn.close()


def test_summary_availability_is_cached(tmp_path):
    conn = connect(str(tmp_path / "s.sqlite"))
    ensure_schema(conn)
    summary = SummaryRepository(conn)
    assert summary.is_available() is False
    conn.execute("INSERT INTO listing_summary (listing_id, standard_status) VALUES (2000001, 'Active')")
    assert summary.is_available() is False
    summary.refresh()
    assert summary.is_available() is True
    conn.close()


def test_summary_query_error_is_wrapped(tmp_path):
    conn = connect(str(tmp_path / "s.sqlite"))
    conn.execute("CREATE TABLE listing_summary (listing_id INTEGER PRIMARY KEY)")
    conn.execute("INSERT INTO listing_summary VALUES (1)")
    summary = SummaryRepository(conn)
    with pytest.raises(OptimizedStoreError):
        summary.query("live", compile_filters({}, "optimized"), limit=5)
    conn.close()
