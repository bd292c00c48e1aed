from __future__ import annotations

import sqlite3
from typing import Dict, Iterable


SUMMARY_TABLE = "listing_summary"

# Base name -> alias used by compiled predicates.
NORMALIZED_TABLES: Dict[str, str] = {
    "listings": "l",
    "listing_details": "ld",
    "listing_location": "ll",
    "listing_financial": "lfn",
    "listing_features": "lft",
}

# Sub-table name as reported by the compiler -> physical base name.
SUB_TABLE_NAMES: Dict[str, str] = {
    "details": "listing_details",
    "location": "listing_location",
    "financial": "listing_financial",
    "features": "listing_features",
}

PARTITION_SUFFIX = {"live": "", "archive": "_archive"}


def table_name(base: str, partition: str) -> str:
    return base + PARTITION_SUFFIX[partition]


SUMMARY_DDL = f"""
CREATE TABLE IF NOT EXISTS {SUMMARY_TABLE} (
    listing_id INTEGER PRIMARY KEY,
    listing_key TEXT,
    standard_status TEXT NOT NULL,
    property_type TEXT,
    property_sub_type TEXT,
    list_price REAL,
    original_list_price REAL,
    street_number TEXT,
    street_name TEXT,
    unit_number TEXT,
    city TEXT,
    state_or_province TEXT,
    postal_code TEXT,
    latitude REAL,
    longitude REAL,
    bedrooms_total INTEGER,
    bathrooms_total REAL,
    living_area REAL,
    year_built INTEGER,
    lot_size_acres REAL,
    garage_spaces INTEGER,
    days_on_market INTEGER,
    listing_contract_date TEXT,
    has_pool INTEGER DEFAULT 0,
    has_fireplace INTEGER DEFAULT 0,
    has_basement INTEGER DEFAULT 0,
    pet_friendly INTEGER DEFAULT 0,
    virtual_tour_url TEXT,
    main_photo_url TEXT,
    modification_timestamp TEXT
)
"""

SUMMARY_INDEXES = (
    f"CREATE INDEX IF NOT EXISTS idx_summary_status ON {SUMMARY_TABLE}(standard_status)",
    f"CREATE INDEX IF NOT EXISTS idx_summary_latlng ON {SUMMARY_TABLE}(latitude, longitude)",
    f"CREATE INDEX IF NOT EXISTS idx_summary_city ON {SUMMARY_TABLE}(city)",
)


def _normalized_ddl(suffix: str) -> Iterable[str]:
    yield f"""
    CREATE TABLE IF NOT EXISTS listings{suffix} (
        listing_id INTEGER PRIMARY KEY,
        listing_key TEXT,
        standard_status TEXT NOT NULL,
        property_type TEXT,
        property_sub_type TEXT,
        list_price REAL,
        original_list_price REAL,
        close_price REAL,
        list_agent_mls_id TEXT,
        buyer_agent_mls_id TEXT,
        team_member_mls_id TEXT,
        listing_contract_date TEXT,
        close_date TEXT,
        days_on_market INTEGER,
        modification_timestamp TEXT
    )
    """
    yield f"""
    CREATE TABLE IF NOT EXISTS listing_details{suffix} (
        listing_id INTEGER PRIMARY KEY,
        bedrooms_total INTEGER,
        bathrooms_total REAL,
        living_area REAL,
        year_built INTEGER,
        lot_size_acres REAL,
        garage_spaces INTEGER,
        parking_total INTEGER,
        covered_spaces INTEGER,
        structure_type TEXT,
        architectural_style TEXT,
        laundry_features TEXT,
        virtual_tour_url TEXT,
        basement_yn INTEGER DEFAULT 0,
        fireplace_yn INTEGER DEFAULT 0,
        property_attached_yn INTEGER DEFAULT 0,
        cooling_yn INTEGER DEFAULT 0,
        garage_yn INTEGER DEFAULT 0,
        home_warranty_yn INTEGER DEFAULT 0,
        attached_garage_yn INTEGER DEFAULT 0,
        electric_on_property_yn INTEGER DEFAULT 0,
        carport_yn INTEGER DEFAULT 0
    )
    """
    yield f"""
    CREATE TABLE IF NOT EXISTS listing_location{suffix} (
        listing_id INTEGER PRIMARY KEY,
        street_number TEXT,
        street_name TEXT,
        unit_number TEXT,
        city TEXT,
        state_or_province TEXT,
        postal_code TEXT,
        unparsed_address TEXT,
        building_name TEXT,
        entry_level TEXT,
        mls_area_major TEXT,
        mls_area_minor TEXT,
        subdivision_name TEXT,
        latitude REAL,
        longitude REAL,
        coordinates TEXT
    )
    """
    yield f"""
    CREATE TABLE IF NOT EXISTS listing_financial{suffix} (
        listing_id INTEGER PRIMARY KEY,
        lease_term TEXT,
        availability_date TEXT,
        association_fee REAL,
        association_yn INTEGER DEFAULT 0,
        lender_owned INTEGER DEFAULT 0,
        dpr_flag INTEGER DEFAULT 0
    )
    """
    yield f"""
    CREATE TABLE IF NOT EXISTS listing_features{suffix} (
        listing_id INTEGER PRIMARY KEY,
        spa_yn INTEGER DEFAULT 0,
        waterfront_yn INTEGER DEFAULT 0,
        view_yn INTEGER DEFAULT 0,
        waterview_flag INTEGER DEFAULT 0,
        senior_community_yn INTEGER DEFAULT 0,
        outdoor_space_available INTEGER DEFAULT 0,
        pool_private_yn INTEGER DEFAULT 0,
        horse_yn INTEGER DEFAULT 0,
        pets_allowed INTEGER DEFAULT 0,
        pets_dogs_allowed INTEGER DEFAULT 0,
        pets_cats_allowed INTEGER DEFAULT 0,
        pets_no_pets INTEGER DEFAULT 0,
        pets_negotiable INTEGER DEFAULT 0
    )
    """
    yield f"""
    CREATE TABLE IF NOT EXISTS media{suffix} (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        listing_id INTEGER NOT NULL,
        media_url TEXT NOT NULL,
        order_index INTEGER DEFAULT 0
    )
    """
    yield f"CREATE INDEX IF NOT EXISTS idx_listings{suffix}_status ON listings{suffix}(standard_status)"
    yield f"CREATE INDEX IF NOT EXISTS idx_location{suffix}_city ON listing_location{suffix}(city)"
    yield f"CREATE INDEX IF NOT EXISTS idx_media{suffix}_listing ON media{suffix}(listing_id, order_index)"


SHARED_DDL = (
    """
    CREATE TABLE IF NOT EXISTS open_houses (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        listing_id INTEGER NOT NULL,
        open_house_data TEXT NOT NULL,
        expires_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_open_houses_listing ON open_houses(listing_id, expires_at)",
    """
    CREATE TABLE IF NOT EXISTS agents (
        agent_mls_id TEXT PRIMARY KEY,
        agent_full_name TEXT,
        user_id TEXT
    )
    """,
)


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
        (table,),
    ).fetchone()
    return row is not None


def get_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    if not table_exists(conn, table):
        return set()
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return {str(r[1]) for r in rows}


def ensure_schema(conn: sqlite3.Connection, *, with_summary: bool = True) -> None:
    """Create every table family. Existing tables are left untouched."""

    if with_summary:
        conn.execute(SUMMARY_DDL)
        for stmt in SUMMARY_INDEXES:
            conn.execute(stmt)
    for suffix in PARTITION_SUFFIX.values():
        for stmt in _normalized_ddl(suffix):
            conn.execute(stmt)
    for stmt in SHARED_DDL:
        conn.execute(stmt)
    conn.commit()
