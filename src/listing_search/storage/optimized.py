from __future__ import annotations

import logging
import sqlite3
from typing import List, Optional

from ..errors import OptimizedStoreError
from ..models import Listing
from ..search.query import CompiledFilters
from ..search.ranking import order_by_sql
from .base import row_to_listing
from .schema import SUMMARY_TABLE, table_exists


_log = logging.getLogger("lse.storage")

_SELECT = f"""
SELECT
    s.listing_id, s.standard_status, s.list_price AS price,
    s.property_type, s.property_sub_type, s.original_list_price,
    s.latitude, s.longitude,
    s.street_number, s.street_name, s.unit_number,
    s.city, s.state_or_province, s.postal_code,
    s.bedrooms_total, s.bathrooms_total, s.living_area, s.year_built,
    s.lot_size_acres, s.garage_spaces,
    s.main_photo_url AS photo_url, s.modification_timestamp
FROM {SUMMARY_TABLE} s
"""

_ORDER_BY = order_by_sql("s.listing_id", "s.standard_status", "s.list_price", "s.modification_timestamp")


class SummaryRepository:
    """Optimized Store: one denormalized row per live listing."""

    store = "optimized"

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._available: Optional[bool] = None

    def is_available(self) -> bool:
        """Table exists and holds rows. Cached until ``refresh()``."""

        if self._available is None:
            try:
                self._available = table_exists(self.conn, SUMMARY_TABLE) and (
                    self.conn.execute(f"SELECT 1 FROM {SUMMARY_TABLE} LIMIT 1").fetchone() is not None
                )
            except sqlite3.Error:
                _log.warning("summary table check failed; treating optimized store as unavailable")
                self._available = False
        return self._available

    def refresh(self) -> None:
        self._available = None

    def _check(self, partition: str, compiled: CompiledFilters) -> None:
        if partition != "live":
            raise ValueError(f"summary table only holds live listings, got partition={partition}")
        if compiled.store != self.store:
            raise ValueError(f"filters compiled for store={compiled.store}")

    def query(self, partition: str, compiled: CompiledFilters, *, limit: int, offset: int = 0) -> List[Listing]:
        self._check(partition, compiled)
        where = compiled.where()
        sql = f"{_SELECT} WHERE {where.where_sql} ORDER BY {_ORDER_BY} LIMIT ? OFFSET ?"
        try:
            rows = self.conn.execute(sql, [*where.params, int(limit), int(offset)]).fetchall()
        except sqlite3.OperationalError as exc:
            raise OptimizedStoreError(f"summary query failed: {exc}") from exc
        return [row_to_listing(row, source="optimized") for row in rows]

    def count(self, partition: str, compiled: CompiledFilters) -> int:
        self._check(partition, compiled)
        where = compiled.where()
        sql = f"SELECT COUNT(*) FROM {SUMMARY_TABLE} s WHERE {where.where_sql}"
        try:
            row = self.conn.execute(sql, where.params).fetchone()
        except sqlite3.OperationalError as exc:
            raise OptimizedStoreError(f"summary count failed: {exc}") from exc
        return int(row[0] or 0)
