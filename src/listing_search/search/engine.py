from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..agents import AgentDirectory, SQLiteAgentDirectory
from ..cache import (
    TTL_FILTER_OPTIONS,
    TTL_MAP_INITIAL,
    TTL_MAP_OPTIMIZED,
    TTL_MAP_PAN,
    TTL_REFERENCE,
    TTL_SCHOOL_GRID,
    CacheKey,
    QueryCache,
)
from ..enrichment.events import EventSource, SQLiteEventSource
from ..enrichment.pipeline import apply_school_filter, enrich
from ..enrichment.schools import (
    CachedSchoolGradeSource,
    HttpSchoolGradeSource,
    NullSchoolGradeSource,
    SchoolGradeSource,
)
from ..errors import OptimizedStoreError
from ..feature_flags import FeatureFlags, get_flags
from ..log_utils import log_event, new_search_id
from ..models import PARTITION_ORDER, QueryPlan, RankedResult
from ..storage.base import clamp_limit, clamp_offset
from ..storage.db import connect
from ..storage.normalized import NormalizedRepository, merge_counts
from ..storage.optimized import SummaryRepository
from .filters import AMENITY_FLAGS
from .query import CompiledFilters, compile_filters
from .ranking import dedupe, merge_partitions, rank
from .router import select_plan
from .spatial import Rect
from .streets import (
    ALL_UNITS_MARKER,
    escape_like,
    looks_like_street_address,
    normalize_street_name,
    parse_street_address,
    street_name_sql,
)


_log = logging.getLogger("lse.search")

DEFAULT_LIMIT = 200
MAX_LIMIT = 250
MAX_OFFSET = 10_000
SCHOOL_FILTER_ROW_LIMIT = 2000
SCHOOL_COUNT_ROW_LIMIT = 10000

AUTOCOMPLETE_PER_SOURCE = 5
AUTOCOMPLETE_MAX = 20

# (type, column, sub-table, match mode)
_SUGGESTION_SOURCES: Tuple[Tuple[str, str, Optional[str], str], ...] = (
    ("City", "ll.city", "location", "prefix"),
    ("Postal Code", "ll.postal_code", "location", "prefix"),
    ("Street Name", "ll.street_name", "location", "street"),
    ("MLS Number", "CAST(l.listing_id AS TEXT)", None, "number"),
    ("Address", "ll.unparsed_address", "location", "contains"),
    ("Building", "ll.building_name", "location", "contains"),
    ("Neighborhood", "ll.mls_area_major", "location", "contains"),
    ("Neighborhood", "ll.mls_area_minor", "location", "contains"),
    ("Neighborhood", "ll.subdivision_name", "location", "contains"),
)

_FACET_MULTI = (
    ("StructureType", "structure_type", "ld.structure_type", "details"),
    ("ArchitecturalStyle", "architectural_style", "ld.architectural_style", "details"),
)


@dataclass
class MapSearchRequest:
    filters: Dict[str, Any] = field(default_factory=dict)
    bounds: Optional[Dict[str, float]] = None
    polygons: Optional[List[Any]] = None
    count_only: bool = False
    force_fresh: bool = False
    limit: Optional[int] = None
    offset: int = 0
    zoom: Optional[int] = None
    # True for the first full load of a map view; pans get the shorter TTL.
    initial_load: bool = False

    def effective_filters(self) -> Dict[str, Any]:
        filters = dict(self.filters or {})
        if self.polygons:
            filters["polygon_shapes"] = list(self.polygons)
        return filters


def _sorted_keys(counts: Mapping[str, int]) -> List[str]:
    return [k for k, _ in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))]


def _labelled(counts: Mapping[str, int]) -> List[Dict[str, Any]]:
    return [{"value": k, "label": k, "count": counts[k]} for k in _sorted_keys(counts)]


class SearchEngine:
    """Listing search over both stores.

    Collaborators are injected; anything left as None is built from ``conn``
    and the environment.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        cache: Optional[QueryCache] = None,
        flags: Optional[FeatureFlags] = None,
        events: Optional[EventSource] = None,
        schools: Optional[SchoolGradeSource] = None,
        agents: Optional[AgentDirectory] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.conn = conn
        self.flags = flags or get_flags()
        self.cache = cache if cache is not None else QueryCache()
        self.summary = SummaryRepository(conn)
        self.normalized = NormalizedRepository(conn)
        self.events = events if events is not None else SQLiteEventSource(conn)
        if schools is None:
            schools = CachedSchoolGradeSource(
                HttpSchoolGradeSource.from_env() or NullSchoolGradeSource(), ttl=TTL_SCHOOL_GRID
            )
        self.schools = schools
        self.agents = agents if agents is not None else SQLiteAgentDirectory(conn)
        self._now = now

    @classmethod
    def from_path(cls, path: Optional[str] = None, **kwargs) -> "SearchEngine":
        return cls(connect(path), **kwargs)

    def close(self) -> None:
        self.conn.close()

    # --- compilation ----------------------------------------------------

    def _compile(
        self,
        filters: Mapping[str, Any],
        store: str,
        *,
        bounds: Optional[Rect] = None,
        exclude_keys: Sequence[str] = (),
    ) -> CompiledFilters:
        return compile_filters(
            filters,
            store,
            bounds=bounds,
            exclude_keys=exclude_keys,
            agent_resolver=self.agents.resolve,
            now=self._now() if self._now else None,
        )

    def _stores(self, plan: QueryPlan) -> List[Tuple[str, str]]:
        if plan.use_optimized_store:
            return [("live", "optimized")]
        return [(p, p) for p in plan.ordered_partitions()]

    def _repo(self, plan: QueryPlan):
        return self.summary if plan.use_optimized_store else self.normalized

    # --- map search -----------------------------------------------------

    def search_map(self, request: MapSearchRequest) -> RankedResult | int:
        search_id = new_search_id()
        started = time.perf_counter()
        filters = request.effective_filters()
        limit = clamp_limit(request.limit, default=DEFAULT_LIMIT, cap=MAX_LIMIT)
        offset = clamp_offset(request.offset, cap=MAX_OFFSET)
        key = CacheKey.build(
            "map",
            bounds=request.bounds,
            filters=filters,
            offset=offset,
            limit=limit,
            zoom=request.zoom,
            modes={"count_only": request.count_only, "initial_load": request.initial_load},
        )

        if not request.force_fresh:
            cached = self.cache.get(key)
            if cached is not None:
                log_event(_log, {"event": "search_map", "cache": "hit"}, search_id=search_id, level=logging.DEBUG)
                return cached

        rect = Rect.from_mapping(request.bounds) if request.bounds else None
        optimized_available = self.flags.optimized_store and self.summary.is_available()
        plan = select_plan(filters, optimized_available=optimized_available)
        try:
            result = self._run(plan, filters, rect, limit=limit, offset=offset, count_only=request.count_only)
        except OptimizedStoreError as exc:
            _log.warning("optimized store failed, retrying on normalized store: %s", exc)
            plan = QueryPlan(use_optimized_store=False, partitions=frozenset(PARTITION_ORDER), reason="optimized_error")
            result = self._run(plan, filters, rect, limit=limit, offset=offset, count_only=request.count_only)

        if not request.initial_load:
            ttl = TTL_MAP_PAN
        elif plan.use_optimized_store:
            ttl = TTL_MAP_OPTIMIZED
        else:
            ttl = TTL_MAP_INITIAL
        self.cache.set(key, result, ttl)

        total = result if isinstance(result, int) else result.total
        log_event(
            _log,
            {
                "event": "search_map",
                "cache": "bypass" if request.force_fresh else "miss",
                "plan": plan.reason,
                "optimized": plan.use_optimized_store,
                "partitions": plan.ordered_partitions(),
                "filter_keys": sorted(filters),
                "count_only": request.count_only,
                "total": total,
                "elapsed_ms": round((time.perf_counter() - started) * 1000, 2),
            },
            search_id=search_id,
        )
        return result

    def _run(
        self,
        plan: QueryPlan,
        filters: Mapping[str, Any],
        rect: Optional[Rect],
        *,
        limit: int,
        offset: int,
        count_only: bool,
    ) -> RankedResult | int:
        repo = self._repo(plan)
        compiled = [(partition, self._compile(filters, store, bounds=rect)) for partition, store in self._stores(plan)]
        criteria = next((c.school_criteria for _, c in compiled if c.school_criteria is not None), None)
        if compiled and compiled[0][1].unknown:
            _log.debug("ignoring unknown filter keys=%s", ",".join(sorted(compiled[0][1].unknown)))

        if criteria is None and count_only:
            return sum(repo.count(partition, c) for partition, c in compiled)

        if criteria is not None:
            row_limit = SCHOOL_COUNT_ROW_LIMIT if count_only else SCHOOL_FILTER_ROW_LIMIT
        else:
            row_limit = offset + limit
        rows_by_partition = {partition: repo.query(partition, c, limit=row_limit) for partition, c in compiled}

        if criteria is not None:
            candidates = rank(dedupe(rows_by_partition))
            kept = apply_school_filter(candidates, criteria, self.schools)
            if count_only:
                return len(kept)
            page = kept[offset : offset + limit]
            result = RankedResult(listings=page, total=len(kept), total_is_exact=False)
        else:
            page = merge_partitions(rows_by_partition, limit=limit, offset=offset)
            total = sum(repo.count(partition, c) for partition, c in compiled)
            result = RankedResult(listings=page, total=total)

        enrich(
            result.listings,
            events=self.events if self.flags.event_enrichment else None,
            schools=self.schools if self.flags.school_enrichment else None,
        )
        return result

    # --- facets ---------------------------------------------------------

    def filter_options(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        bounds: Optional[Mapping[str, float]] = None,
        force_fresh: bool = False,
    ) -> Dict[str, Any]:
        """Which facet values still match, each facet ignoring its own key."""

        filters = dict(filters or {})
        key = CacheKey.build("filter_options", bounds=bounds, filters=filters)
        if not force_fresh:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        rect = Rect.from_mapping(bounds) if bounds else None
        partitions = select_plan(filters, optimized_available=False).ordered_partitions()

        def per_partition(fetch, exclude: Sequence[str]):
            return {p: fetch(p, self._compile(filters, p, bounds=rect, exclude_keys=exclude)) for p in partitions}

        sub_types = merge_counts(
            per_partition(
                lambda p, c: self.normalized.value_counts(p, c, "l.property_sub_type"),
                ("home_type", "property_sub_type"),
            )
        )
        statuses = merge_counts(
            per_partition(lambda p, c: self.normalized.value_counts(p, c, "l.standard_status"), ("status",))
        )
        options: Dict[str, Any] = {
            "PropertySubType": _sorted_keys(sub_types),
            "StandardStatus": _sorted_keys(statuses),
        }
        for name, filter_key, column, table in _FACET_MULTI:
            counts = merge_counts(
                per_partition(
                    lambda p, c, column=column, table=table: self.normalized.json_array_counts(p, c, column, table),
                    (filter_key,),
                )
            )
            options[name] = _labelled(counts)

        amenities = []
        for flag_key, (column, table, label) in AMENITY_FLAGS.items():
            counts = per_partition(
                lambda p, c, column=column, table=table: self.normalized.flag_count(p, c, column, table),
                (flag_key,),
            )
            count = sum(counts.values())
            if count > 0:
                amenities.append({"value": flag_key, "label": label, "count": count})
        options["amenities"] = amenities

        with_open_house = {**filters, "open_house_only": True}
        options["open_house_only"] = sum(
            self.normalized.count(p, self._compile(with_open_house, p, bounds=rect)) for p in partitions
        )

        self.cache.set(key, options, TTL_FILTER_OPTIONS)
        return options

    # --- autocomplete ---------------------------------------------------

    def autocomplete(self, term: str) -> List[Dict[str, str]]:
        term = (term or "").strip()
        if not term:
            return []
        key = CacheKey.build("autocomplete", filters={"term": term.lower()})
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        suggestions: List[Dict[str, str]] = []
        seen = set()

        def add(kind: str, value: Any) -> None:
            text = str(value).strip()
            if not text or (kind, text) in seen or len(suggestions) >= AUTOCOMPLETE_MAX:
                return
            seen.add((kind, text))
            suggestions.append({"value": text, "label": text, "type": kind})

        if looks_like_street_address(term):
            parsed = parse_street_address(term)
            if parsed:
                number, name = parsed
                name_sql, name_params = street_name_sql(name, "ll.street_name")
                for partition in PARTITION_ORDER:
                    rows = self.normalized.distinct_values(
                        partition,
                        ("ll.street_number", "ll.street_name"),
                        f"ll.street_number = ? AND {name_sql}",
                        [number, *name_params],
                        joins=("location",),
                        limit=AUTOCOMPLETE_PER_SOURCE,
                    )
                    for street_number, street_name in rows:
                        add("Street Address", f"{street_number} {normalize_street_name(street_name)}{ALL_UNITS_MARKER}")

        escaped = escape_like(term)
        for kind, column, table, mode in _SUGGESTION_SOURCES:
            if len(suggestions) >= AUTOCOMPLETE_MAX:
                break
            if mode == "number" and not term.isdigit():
                continue
            if mode == "street":
                where_sql, params = street_name_sql(term, column)
            elif mode == "contains":
                where_sql, params = f"{column} LIKE ? ESCAPE '\\'", [f"%{escaped}%"]
            else:
                where_sql, params = f"{column} LIKE ? ESCAPE '\\'", [f"{escaped}%"]
            for partition in PARTITION_ORDER:
                rows = self.normalized.distinct_values(
                    partition,
                    (column,),
                    where_sql,
                    params,
                    joins=(table,) if table else (),
                    limit=AUTOCOMPLETE_PER_SOURCE,
                )
                for (value,) in rows:
                    add(kind, normalize_street_name(value) if kind == "Street Name" else value)

        self.cache.set(key, suggestions, TTL_FILTER_OPTIONS)
        return suggestions

    def agent_suggestions(self, term: str) -> List[Dict[str, str]]:
        term = (term or "").strip()
        if not term:
            return []
        key = CacheKey.build("agents", filters={"term": term.lower()})
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        suggestions = self.agents.suggest(term)
        self.cache.set(key, suggestions, TTL_REFERENCE)
        return suggestions

    def property_sub_types(self) -> List[str]:
        key = CacheKey.build("property_sub_types")
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        values = set()
        for partition in PARTITION_ORDER:
            rows = self.normalized.distinct_values(partition, ("l.property_sub_type",), "1=1", [], limit=1000)
            values.update(str(v) for (v,) in rows)
        out = sorted(values)
        self.cache.set(key, out, TTL_REFERENCE)
        return out
