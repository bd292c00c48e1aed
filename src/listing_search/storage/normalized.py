from __future__ import annotations

import json
import logging
import sqlite3
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..errors import StorageUnavailableError
from ..models import PARTITION_ORDER, Listing
from ..search.filters import ARCHIVE_PRICE_EXPR, LIST_PRICE_COLUMN, SUB_TABLES
from ..search.query import CompiledFilters
from ..search.ranking import order_by_sql
from .base import row_to_listing
from .schema import SUB_TABLE_NAMES, table_name


_log = logging.getLogger("lse.storage")

# Row queries always need these for display; counts only join what predicates use.
DISPLAY_JOINS = ("location", "details")

_JOIN_ORDER = ("details", "location", "financial", "features")


def price_expr(partition: str) -> str:
    return ARCHIVE_PRICE_EXPR if partition == "archive" else LIST_PRICE_COLUMN


def _check_partition(partition: str) -> None:
    if partition not in PARTITION_ORDER:
        raise ValueError(f"Unknown partition: {partition}")


def from_clause(partition: str, joins: Iterable[str]) -> str:
    _check_partition(partition)
    wanted = set(joins)
    unknown = wanted - set(SUB_TABLES)
    if unknown:
        raise ValueError(f"Unknown sub-tables: {sorted(unknown)}")
    parts = [f"FROM {table_name('listings', partition)} l"]
    for sub in _JOIN_ORDER:
        if sub not in wanted:
            continue
        alias = SUB_TABLES[sub]
        parts.append(
            f"LEFT JOIN {table_name(SUB_TABLE_NAMES[sub], partition)} {alias} ON {alias}.listing_id = l.listing_id"
        )
    return " ".join(parts)


def _select_columns(partition: str) -> str:
    media = table_name("media", partition)
    return f"""
    SELECT
        l.listing_id, l.standard_status, {price_expr(partition)} AS price,
        l.property_type, l.property_sub_type, l.original_list_price, l.close_price,
        l.modification_timestamp,
        ll.latitude, ll.longitude,
        ll.street_number, ll.street_name, ll.unit_number,
        ll.city, ll.state_or_province, ll.postal_code,
        ld.bedrooms_total, ld.bathrooms_total, ld.living_area, ld.year_built,
        ld.lot_size_acres, ld.garage_spaces,
        (SELECT m.media_url FROM {media} m WHERE m.listing_id = l.listing_id
            ORDER BY m.order_index LIMIT 1) AS photo_url
    """


class NormalizedRepository:
    """Normalized Store: ``listings`` plus sub-tables, live and archive twins."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def _execute(self, sql: str, params: Sequence[Any]) -> List[sqlite3.Row]:
        try:
            return self.conn.execute(sql, list(params)).fetchall()
        except sqlite3.Error as exc:
            _log.error("normalized store query failed: %s", exc)
            raise StorageUnavailableError(f"listing store unavailable: {exc}") from exc

    @staticmethod
    def _check(partition: str, compiled: CompiledFilters) -> None:
        _check_partition(partition)
        if compiled.store != partition:
            raise ValueError(f"filters compiled for store={compiled.store}, queried partition={partition}")

    def query(self, partition: str, compiled: CompiledFilters, *, limit: int, offset: int = 0) -> List[Listing]:
        self._check(partition, compiled)
        where = compiled.where()
        order = order_by_sql("l.listing_id", "l.standard_status", price_expr(partition), "l.modification_timestamp")
        sql = (
            f"{_select_columns(partition)} {from_clause(partition, set(compiled.joins) | set(DISPLAY_JOINS))} "
            f"WHERE {where.where_sql} ORDER BY {order} LIMIT ? OFFSET ?"
        )
        rows = self._execute(sql, [*where.params, int(limit), int(offset)])
        return [row_to_listing(row, source=partition) for row in rows]

    def count(self, partition: str, compiled: CompiledFilters) -> int:
        self._check(partition, compiled)
        where = compiled.where()
        sql = f"SELECT COUNT(*) {from_clause(partition, compiled.joins)} WHERE {where.where_sql}"
        rows = self._execute(sql, where.params)
        return int(rows[0][0] or 0) if rows else 0

    # --- facets ---------------------------------------------------------

    def value_counts(
        self, partition: str, compiled: CompiledFilters, column: str, table: Optional[str] = None
    ) -> Counter:
        self._check(partition, compiled)
        where = compiled.where()
        joins = set(compiled.joins) | ({table} if table else set())
        sql = (
            f"SELECT {column} AS v, COUNT(*) AS n {from_clause(partition, joins)} "
            f"WHERE {where.where_sql} AND {column} IS NOT NULL AND {column} != '' GROUP BY v"
        )
        return Counter({str(row["v"]): int(row["n"]) for row in self._execute(sql, where.params)})

    def json_array_counts(
        self, partition: str, compiled: CompiledFilters, column: str, table: Optional[str] = None
    ) -> Counter:
        """Explode a JSON-text array column and count each element."""

        self._check(partition, compiled)
        where = compiled.where()
        joins = set(compiled.joins) | ({table} if table else set())
        sql = (
            f"SELECT {column} AS v {from_clause(partition, joins)} "
            f"WHERE {where.where_sql} AND {column} IS NOT NULL AND {column} != ''"
        )
        counts: Counter = Counter()
        for row in self._execute(sql, where.params):
            for value in _explode(row["v"]):
                counts[value] += 1
        return counts

    def flag_count(self, partition: str, compiled: CompiledFilters, column: str, table: Optional[str] = None) -> int:
        self._check(partition, compiled)
        where = compiled.where()
        joins = set(compiled.joins) | ({table} if table else set())
        sql = f"SELECT COUNT(*) {from_clause(partition, joins)} WHERE {where.where_sql} AND {column} = 1"
        rows = self._execute(sql, where.params)
        return int(rows[0][0] or 0) if rows else 0

    # --- autocomplete ---------------------------------------------------

    def distinct_values(
        self,
        partition: str,
        columns: Sequence[str],
        where_sql: str,
        params: Sequence[Any],
        *,
        joins: Iterable[str] = (),
        limit: int = 5,
    ) -> List[Tuple[Any, ...]]:
        cols = ", ".join(columns)
        not_blank = " AND ".join(f"{c} IS NOT NULL AND {c} != ''" for c in columns)
        sql = (
            f"SELECT DISTINCT {cols} {from_clause(partition, joins)} "
            f"WHERE ({where_sql}) AND {not_blank} ORDER BY {cols} LIMIT ?"
        )
        return [tuple(row) for row in self._execute(sql, [*params, int(limit)])]


def _explode(raw: Any) -> List[str]:
    text = str(raw).strip()
    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            return [str(v).strip() for v in parsed if v is not None and str(v).strip()]
    return [text] if text and text != "[]" else []


def merge_counts(per_partition: Dict[str, Counter]) -> Counter:
    total: Counter = Counter()
    for counts in per_partition.values():
        total.update(counts)
    return total
