import json
import os
import socket
import sys
import urllib.request
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
SRC = REPO_ROOT / "src"

# Prefer repo sources over any installed package.
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture(autouse=True)
def block_network(monkeypatch):
    if os.getenv("LIVE") == "1":
        return

    real_connect = socket.socket.connect

    def guarded_connect(sock, address):
        host = address[0] if isinstance(address, tuple) else address
        if host not in ("127.0.0.1", "localhost"):
            raise RuntimeError("Network access blocked in tests")
        return real_connect(sock, address)

    monkeypatch.setattr(socket.socket, "connect", guarded_connect)
    monkeypatch.setattr(
        urllib.request,
        "urlopen",
        lambda *args, **kwargs: (_ for _ in ()).throw(
            RuntimeError("Network access blocked in tests")
        ),
    )


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    for name in (
        "CACHE",
        "CACHE_MAX_ENTRIES",
        "SCHOOLS_API_URL",
        "LSE_FEATURE_OPTIMIZED_STORE",
        "LSE_FEATURE_SCHOOL_ENRICHMENT",
        "LSE_FEATURE_EVENT_ENRICHMENT",
    ):
        monkeypatch.delenv(name, raising=False)
    from listing_search.feature_flags import reset_flags_cache
    from listing_search.search.router import reset_router_stats

    reset_flags_cache()
    reset_router_stats()
    yield
    reset_flags_cache()


# Viewport around the downtown fixture listings.
VIEWPORT = {"north": 42.40, "south": 42.30, "east": -71.00, "west": -71.10}

LIVE_LISTINGS = [
    dict(listing_id=2000001, status="Active", price=700000, beds=3, baths=2, sqft=1800, city="Boston",
         lat=42.35, lng=-71.05, number="12", street="Main Street", postal="02108", lot=0.25,
         sub_type="Single Family Residence", structure='["Detached"]', style='["Colonial"]',
         fireplace=1, waterfront=0, address="12 Main Street, Boston, MA 02108",
         subdivision="Beacon Hill", modified="2026-10-01 10:00:00"),
    dict(listing_id=2000002, status="Active", price=550000, beds=3, baths=1.5, sqft=1200, city="Boston",
         lat=42.36, lng=-71.04, number="40", street="Main St.", postal="02108", lot=1.0,
         sub_type="Condominium", structure='["Attached"]', style='["Colonial", "Victorian"]',
         fireplace=0, waterfront=1, address="40 Main St., Boston, MA 02108", building="Harbor Towers",
         subdivision="Waterfront", modified="2026-10-02 10:00:00"),
    dict(listing_id=2000003, status="Active", price=900000, beds=3, baths=2, sqft=2100, city="Boston",
         lat=42.34, lng=-71.06, number="5", street="Elm Street", postal="02116", lot=0.5,
         sub_type="Single Family Residence", structure='["Detached"]', style='["Victorian"]',
         modified="2026-10-03 10:00:00"),
    dict(listing_id=2000004, status="Active", price=600000, beds=4, baths=3, sqft=2400, city="Boston",
         lat=42.33, lng=-71.07, number="7", street="Oak Avenue", postal="02116", lot=2.0,
         sub_type="Single Family Residence", structure='["Detached"]', style='["Cape"]',
         modified="2026-10-04 10:00:00"),
    dict(listing_id=2000005, status="Pending", price=650000, beds=3, baths=2, sqft=1500, city="Boston",
         lat=42.37, lng=-71.03, number="9", street="Beacon Street", postal="02108", lot=0.1,
         sub_type="Condominium", structure='["Attached"]', style='["Federal"]',
         modified="2026-10-05 10:00:00"),
    dict(listing_id=2000006, status="Active", price=600000, beds=3, baths=2, sqft=1600, city="Cambridge",
         lat=42.50, lng=-71.30, number="3", street="Harvard Road", postal="02138", lot=0.3,
         sub_type="Single Family Residence", structure='["Detached"]', style='["Colonial"]',
         modified="2026-10-06 10:00:00"),
    dict(listing_id=500, status="Active", price=300000, beds=2, baths=1, sqft=900, city="Somerville",
         lat=42.39, lng=-71.09, number="77", street="Broadway", postal="02145", lot=0.05,
         sub_type="Condominium", structure='["Attached"]', style='["Contemporary"]',
         modified="2026-10-07 10:00:00"),
]

ARCHIVE_LISTINGS = [
    dict(listing_id=1500001, status="Closed", price=800000, close_price=780000, beds=3, baths=2, sqft=1700,
         city="Boston", lat=42.355, lng=-71.055, number="20", street="Main Street", postal="02108", lot=0.2,
         sub_type="Single Family Residence", structure='["Detached"]', style='["Colonial"]',
         modified="2025-05-01 10:00:00"),
    dict(listing_id=1500002, status="Expired", price=450000, beds=2, baths=1, sqft=1000, city="Cambridge",
         lat=42.37, lng=-71.11, number="8", street="Brattle Street", postal="02138", lot=0.1,
         sub_type="Condominium", structure='["Attached"]', style='["Victorian"]',
         modified="2025-06-01 10:00:00"),
]

AGENTS = [
    ("CN1001", "Jane Realtor", "u-1"),
    ("CN1002", "John Broker", "u-2"),
]


def _insert_normalized(conn, row, partition):
    from listing_search.search.spatial import point_wkt

    sfx = "" if partition == "live" else "_archive"
    lid = row["listing_id"]
    conn.execute(
        f"""
        INSERT INTO listings{sfx} (
            listing_id, standard_status, property_type, property_sub_type, list_price,
            original_list_price, close_price, list_agent_mls_id, listing_contract_date,
            days_on_market, modification_timestamp
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            lid, row["status"], "Residential", row["sub_type"], row["price"],
            row.get("original_price"), row.get("close_price"), row.get("agent", "CN1001"),
            "2026-09-01", 10, row["modified"],
        ),
    )
    conn.execute(
        f"""
        INSERT INTO listing_details{sfx} (
            listing_id, bedrooms_total, bathrooms_total, living_area, year_built, lot_size_acres,
            garage_spaces, structure_type, architectural_style, fireplace_yn
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            lid, row["beds"], row["baths"], row["sqft"], 1990, row["lot"], 1,
            row["structure"], row["style"], row.get("fireplace", 0),
        ),
    )
    conn.execute(
        f"""
        INSERT INTO listing_location{sfx} (
            listing_id, street_number, street_name, city, state_or_province, postal_code,
            unparsed_address, building_name, subdivision_name, latitude, longitude, coordinates
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            lid, row["number"], row["street"], row["city"], "MA", row["postal"],
            row.get("address") or f"{row['number']} {row['street']}, {row['city']}, MA",
            row.get("building"), row.get("subdivision"), row["lat"], row["lng"],
            point_wkt(row["lat"], row["lng"]),
        ),
    )
    conn.execute(
        f"INSERT INTO listing_features{sfx} (listing_id, waterfront_yn) VALUES (?, ?)",
        (lid, row.get("waterfront", 0)),
    )
    conn.execute(f"INSERT INTO listing_financial{sfx} (listing_id) VALUES (?)", (lid,))
    conn.execute(
        f"INSERT INTO media{sfx} (listing_id, media_url, order_index) VALUES (?, ?, ?)",
        (lid, f"https://photos.example/{lid}/1.jpg", 1),
    )
    conn.execute(
        f"INSERT INTO media{sfx} (listing_id, media_url, order_index) VALUES (?, ?, ?)",
        (lid, f"https://photos.example/{lid}/0.jpg", 0),
    )


def _insert_summary(conn, row):
    conn.execute(
        """
        INSERT INTO listing_summary (
            listing_id, standard_status, property_type, property_sub_type, list_price,
            street_number, street_name, city, state_or_province, postal_code, latitude, longitude,
            bedrooms_total, bathrooms_total, living_area, year_built, lot_size_acres, garage_spaces,
            days_on_market, listing_contract_date, has_fireplace, main_photo_url, modification_timestamp
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            row["listing_id"], row["status"], "Residential", row["sub_type"], row["price"],
            row["number"], row["street"], row["city"], "MA", row["postal"], row["lat"], row["lng"],
            row["beds"], row["baths"], row["sqft"], 1990, row["lot"], 1,
            10, "2026-09-01", row.get("fireplace", 0),
            f"https://photos.example/{row['listing_id']}/0.jpg", row["modified"],
        ),
    )


def populate(conn, *, with_summary=True):
    from listing_search.storage.schema import ensure_schema

    ensure_schema(conn)
    for row in LIVE_LISTINGS:
        _insert_normalized(conn, row, "live")
        if with_summary:
            _insert_summary(conn, row)
    for row in ARCHIVE_LISTINGS:
        _insert_normalized(conn, row, "archive")
    conn.execute(
        "INSERT INTO open_houses (listing_id, open_house_data, expires_at) VALUES (?, ?, ?)",
        (2000001, json.dumps({"start": "2999-01-01 13:00", "end": "2999-01-01 15:00"}), "2999-01-01 15:00:00"),
    )
    conn.execute(
        "INSERT INTO open_houses (listing_id, open_house_data, expires_at) VALUES (?, ?, ?)",
        (2000002, json.dumps({"start": "2000-01-01 13:00", "end": "2000-01-01 15:00"}), "2000-01-01 15:00:00"),
    )
    conn.executemany(
        "INSERT INTO agents (agent_mls_id, agent_full_name, user_id) VALUES (?, ?, ?)", AGENTS
    )
    conn.commit()


@pytest.fixture
def listings_db(tmp_path):
    """Path to a SQLite file with both stores populated."""

    from listing_search.storage.db import open_conn

    path = tmp_path / "listings.sqlite"
    with open_conn(str(path)) as conn:
        populate(conn)
    return str(path)


class FakeSchools:
    """School source keyed on latitude: north of 42.355 is an A, else a C."""

    def __init__(self):
        self.calls = 0
        self.fail_lats = set()

    def best_grade_near(self, lat, lng, radius_miles, level=None):
        self.calls += 1
        if lat in self.fail_lats:
            import httpx

            raise httpx.ConnectError("schools service down")
        return "A" if lat > 42.355 else "C"

    def district_grade_for(self, city):
        return {"grade": "B+", "percentile": 71.0} if city == "Boston" else None

    def district_for_point(self, lat, lng):
        return {"id": 7} if lat < 42.45 else {"id": 9}


@pytest.fixture
def fake_schools():
    return FakeSchools()


@pytest.fixture
def engine(listings_db, fake_schools):
    from listing_search.cache import QueryCache
    from listing_search.feature_flags import FeatureFlags
    from listing_search.search.engine import SearchEngine
    from listing_search.storage.db import connect

    eng = SearchEngine(
        connect(listings_db),
        cache=QueryCache(enabled=False),
        flags=FeatureFlags(optimized_store=True, school_enrichment=True, event_enrichment=True),
        schools=fake_schools,
    )
    yield eng
    eng.close()
