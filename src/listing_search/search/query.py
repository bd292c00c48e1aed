from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from ..enrichment.schools import SchoolCriteria
from ..errors import MalformedFilterError
from ..models import LIVE_STATUSES, expand_status
from .filters import (
    FILTERS,
    SQFT_PER_ACRE,
    FilterDefinition,
    FilterKind,
    filter_value,
    has_lookup,
    is_empty,
)
from .spatial import (
    NORMALIZED_COLUMNS,
    OPTIMIZED_COLUMNS,
    Rect,
    build_spatial,
    parse_polygon_shapes,
)
from .streets import escape_like, parse_street_address, street_name_sql


STORES = ("optimized", "live", "archive")

_log = logging.getLogger("lse.search")

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TRUE_STRINGS = {"1", "true", "t", "yes", "y", "on"}

# User-facing lease terms -> stored lease_term fragments.
LEASE_TERM_PATTERNS: Dict[str, tuple] = {
    "12 months": ("Rental(12)", "Rental(12+)"),
    "12months": ("Rental(12)", "Rental(12+)"),
    "6 months": ("Rental(6)", "Rental(6+)", "Rental(6-12)"),
    "6months": ("Rental(6)", "Rental(6+)", "Rental(6-12)"),
    "monthly": ("Tenant at Will", "Monthly", "Taw"),
    "month-to-month": ("Tenant at Will", "Monthly", "Taw"),
    "flexible": ("Flex", "Short Term"),
    "short term": ("Flex", "Short Term"),
}


@dataclass(frozen=True)
class BuiltQuery:
    where_sql: str
    params: List[Any]


@dataclass
class CompiledFilters:
    store: str
    predicates: List[BuiltQuery] = field(default_factory=list)
    # Normalized Store sub-tables the predicates reference.
    joins: Set[str] = field(default_factory=set)
    school_criteria: Optional[SchoolCriteria] = None
    skipped: List[str] = field(default_factory=list)
    unknown: List[str] = field(default_factory=list)
    bypass_status: bool = False

    def where(self) -> BuiltQuery:
        if not self.predicates:
            return BuiltQuery(where_sql="1=1", params=[])
        parts = [p.where_sql for p in self.predicates]
        params: List[Any] = []
        for p in self.predicates:
            params.extend(p.params)
        return BuiltQuery(where_sql=" AND ".join(parts), params=params)


@dataclass(frozen=True)
class _Context:
    store: str
    now: datetime
    agent_resolver: Optional[Callable[[List[str]], List[str]]] = None

    @property
    def today(self) -> date:
        return self.now.date()

    @property
    def now_sql(self) -> str:
        return self.now.strftime("%Y-%m-%d %H:%M:%S")


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return [v for v in value if not is_empty(v)]
    return [value]


def _number(key: str, raw: Any) -> float:
    if isinstance(raw, bool):
        raise MalformedFilterError(key, "expected a number")
    try:
        n = float(str(raw).replace(",", "").strip()) if isinstance(raw, str) else float(raw)
    except (TypeError, ValueError, OverflowError):
        raise MalformedFilterError(key, "expected a number") from None
    if not math.isfinite(n):
        raise MalformedFilterError(key, "expected a finite number")
    return n


def _truthy(raw: Any) -> bool:
    if isinstance(raw, str):
        return raw.strip().lower() in _TRUE_STRINGS
    if isinstance(raw, (int, float)):
        return raw != 0
    return bool(raw)


def _strings(key: str, value: Any) -> List[str]:
    out = []
    for v in _as_list(value):
        if isinstance(v, (dict, list, tuple)):
            raise MalformedFilterError(key, "expected a string or list of strings")
        out.append(str(v).strip())
    return [v for v in out if v]


def _in_clause(column: str, values: Sequence[Any]) -> BuiltQuery:
    if len(values) == 1:
        return BuiltQuery(f"{column} = ?", [values[0]])
    placeholders = ",".join(["?"] * len(values))
    return BuiltQuery(f"{column} IN ({placeholders})", list(values))


def _or_group(parts: Sequence[BuiltQuery]) -> Optional[BuiltQuery]:
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    params: List[Any] = []
    for p in parts:
        params.extend(p.params)
    return BuiltQuery("(" + " OR ".join(p.where_sql for p in parts) + ")", params)


def _sibling(column: str, name: str) -> str:
    alias = column.split(".", 1)[0]
    return f"{alias}.{name}"


# --- per-kind strategies -------------------------------------------------


def _compile_range(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    if not isinstance(value, Mapping):
        raise MalformedFilterError(d.key, "expected an object with min/max")
    parts: List[str] = []
    params: List[Any] = []
    lo = value.get("min")
    hi = value.get("max")
    if not is_empty(lo):
        n = _number(d.key, lo)
        if n > 0:
            parts.append(f"{col} >= ?")
            params.append(n)
    if not is_empty(hi):
        n = _number(d.key, hi)
        if n > 0:
            parts.append(f"{col} <= ?")
            params.append(n)
    if not parts:
        return None
    return BuiltQuery(" AND ".join(parts), params)


def _compile_bound(op: str) -> Callable[..., Optional[BuiltQuery]]:
    def compile_(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
        n = _number(d.key, value)
        if n <= 0:
            return None
        return BuiltQuery(f"{col} {op} ?", [n])

    return compile_


def _compile_lot_size(op: str) -> Callable[..., Optional[BuiltQuery]]:
    def compile_(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
        sqft = _number(d.key, value)
        if sqft <= 0:
            return None
        return BuiltQuery(f"{col} {op} ?", [sqft / SQFT_PER_ACRE])

    return compile_


def _compile_numeric_string(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    n = int(_number(d.key, value))
    op = ">=" if d.bound == "min" else "<="
    return BuiltQuery(f"CAST({col} AS INTEGER) {op} ?", [n])


def _compile_combined_parking(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    n = int(_number(d.key, value))
    if n <= 0:
        return None
    covered = _sibling(col, "covered_spaces")
    return BuiltQuery(f"(IFNULL({col}, 0) + IFNULL({covered}, 0)) >= ?", [n])


def _compile_categorical(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    values = _strings(d.key, value)
    if not values:
        return None
    return _in_clause(col, values)


def _compile_status(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    statuses: List[str] = []
    for v in _strings(d.key, value):
        for s in expand_status(v):
            if s not in statuses:
                statuses.append(s)
    if not statuses:
        return None
    return _in_clause(col, statuses)


def _compile_property_type(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    types: List[str] = []
    for v in _strings(d.key, value):
        expanded = ["Residential", "Residential Income"] if v == "Residential" else [v]
        types.extend(t for t in expanded if t not in types)
    if not types:
        return None
    return _in_clause(col, types)


def _compile_beds(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    exact: List[int] = []
    plus: List[int] = []
    for v in _as_list(value):
        text = str(v).strip()
        if text.endswith("+"):
            plus.append(int(_number(d.key, text[:-1])))
        else:
            exact.append(int(_number(d.key, text)))
    if not exact and not plus:
        return None
    if plus:
        # "2, 3+" means two or more; a plus entry widens the whole selection.
        return BuiltQuery(f"{col} >= ?", [min(exact + plus)])
    return _in_clause(col, sorted(set(exact)))


def _compile_multi(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    parts = []
    for v in _strings(d.key, value):
        parts.append(
            BuiltQuery(
                f"({col} = ? OR {col} LIKE ? ESCAPE '\\' OR {col} = ?)",
                [json.dumps([v]), f'%"{escape_like(v)}"%', v],
            )
        )
    return _or_group(parts)


def _compile_bool(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    if not _truthy(value):
        return None
    return BuiltQuery(f"{col} = 1", [])


def _compile_street_name(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    parts = []
    for v in _strings(d.key, value):
        sql, params = street_name_sql(v, col)
        parts.append(BuiltQuery(sql, params))
    return _or_group(parts)


def _compile_street_address(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    number_col = _sibling(col, "street_number")
    parts = []
    for v in _strings(d.key, value):
        parsed = parse_street_address(v)
        if parsed is None:
            continue
        number, name = parsed
        sql, params = street_name_sql(name, col)
        parts.append(BuiltQuery(f"({number_col} = ? AND {sql})", [number, *params]))
    if not parts:
        raise MalformedFilterError(d.key, "expected '<number> <street name>'")
    return _or_group(parts)


def _compile_address(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    parts = [
        BuiltQuery(f"{col} LIKE ? ESCAPE '\\'", [f"%{escape_like(v)}%"]) for v in _strings(d.key, value)
    ]
    return _or_group(parts)


def _compile_listing_id(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    ids = []
    for v in _as_list(value):
        n = _number(d.key, v)
        if n != int(n):
            raise MalformedFilterError(d.key, "expected an integer listing id")
        ids.append(int(n))
    if not ids:
        return None
    return _in_clause(col, ids)


def _compile_neighborhood(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    major = _sibling(col, "mls_area_major")
    minor = _sibling(col, "mls_area_minor")
    parts = [
        BuiltQuery(f"({major} = ? OR {minor} = ? OR {col} = ?)", [v, v, v]) for v in _strings(d.key, value)
    ]
    return _or_group(parts)


def _compile_agent(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    ids = _strings(d.key, value)
    if ctx.agent_resolver is not None and ids:
        ids = list(ctx.agent_resolver(ids))
    if not ids:
        return None
    parts = [
        _in_clause(col, ids),
        _in_clause(_sibling(col, "buyer_agent_mls_id"), ids),
        _in_clause(_sibling(col, "team_member_mls_id"), ids),
    ]
    return _or_group(parts)


def _compile_agent_single(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    ids = _strings(d.key, value)
    if ctx.agent_resolver is not None and ids:
        ids = list(ctx.agent_resolver(ids))
    if not ids:
        return None
    return _in_clause(col, ids)


def _compile_open_house(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    if not _truthy(value):
        return None
    return BuiltQuery(
        f"{col} IN (SELECT oh.listing_id FROM open_houses oh WHERE oh.expires_at > ?)",
        [ctx.now_sql],
    )


def _compile_price_reduced(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    if not _truthy(value):
        return None
    price = FILTERS["price"].column_for(ctx.store)
    return BuiltQuery(f"({col} IS NOT NULL AND {col} > 0 AND {price} < {col})", [])


def _compile_new_listing_days(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    days = int(_number(d.key, value))
    if days <= 0:
        return None
    return BuiltQuery(f"{col} >= ?", [(ctx.today - timedelta(days=days)).isoformat()])


def _compile_virtual_tour(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    if not _truthy(value):
        return None
    return BuiltQuery(f"({col} IS NOT NULL AND {col} != '')", [])


def _compile_laundry(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    parts = []
    for v in _strings(d.key, value):
        if v == "None":
            parts.append(BuiltQuery(f"({col} = '[]' OR {col} IS NULL OR {col} = '')", []))
        else:
            parts.append(BuiltQuery(f"{col} LIKE ? ESCAPE '\\'", [f"%{escape_like(v)}%"]))
    return _or_group(parts)


def _compile_lease_term(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    parts = []
    for v in _strings(d.key, value):
        fragments = LEASE_TERM_PATTERNS.get(v.lower(), (v,))
        likes = [BuiltQuery(f"{col} LIKE ? ESCAPE '\\'", [f"%{escape_like(f)}%"]) for f in fragments]
        parts.append(_or_group(likes))
    return _or_group([p for p in parts if p is not None])


def _compile_available_by(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    text = str(value).strip()
    if not _DATE_RE.match(text):
        raise MalformedFilterError(d.key, "expected YYYY-MM-DD")
    return BuiltQuery(f"{col} <= ?", [text])


def _compile_available_now(d: FilterDefinition, col: str, value: Any, ctx: _Context) -> Optional[BuiltQuery]:
    if not _truthy(value):
        return None
    return BuiltQuery(f"({col} IS NULL OR {col} <= ?)", [ctx.today.isoformat()])


_COMPILERS: Dict[FilterKind, Callable[..., Optional[BuiltQuery]]] = {
    FilterKind.RANGE: _compile_range,
    FilterKind.RANGE_MIN: _compile_bound(">="),
    FilterKind.RANGE_MAX: _compile_bound("<="),
    FilterKind.LOT_SIZE_MIN: _compile_lot_size(">="),
    FilterKind.LOT_SIZE_MAX: _compile_lot_size("<="),
    FilterKind.NUMERIC_STRING: _compile_numeric_string,
    FilterKind.COMBINED_PARKING: _compile_combined_parking,
    FilterKind.CATEGORICAL: _compile_categorical,
    FilterKind.STATUS: _compile_status,
    FilterKind.PROPERTY_TYPE: _compile_property_type,
    FilterKind.BEDS: _compile_beds,
    FilterKind.MULTI: _compile_multi,
    FilterKind.BOOL: _compile_bool,
    FilterKind.STREET_NAME: _compile_street_name,
    FilterKind.STREET_ADDRESS: _compile_street_address,
    FilterKind.ADDRESS: _compile_address,
    FilterKind.LISTING_ID: _compile_listing_id,
    FilterKind.CITY: _compile_categorical,
    FilterKind.NEIGHBORHOOD: _compile_neighborhood,
    FilterKind.AGENT: _compile_agent,
    FilterKind.AGENT_SINGLE: _compile_agent_single,
    FilterKind.OPEN_HOUSE: _compile_open_house,
    FilterKind.PRICE_REDUCED: _compile_price_reduced,
    FilterKind.NEW_LISTING_DAYS: _compile_new_listing_days,
    FilterKind.VIRTUAL_TOUR: _compile_virtual_tour,
    FilterKind.LAUNDRY: _compile_laundry,
    FilterKind.LEASE_TERM: _compile_lease_term,
    FilterKind.AVAILABLE_BY: _compile_available_by,
    FilterKind.AVAILABLE_NOW: _compile_available_now,
}

_MISSING = set(FilterKind) - set(_COMPILERS) - {FilterKind.POLYGON, FilterKind.SCHOOL}
if _MISSING:
    raise RuntimeError(f"filter kinds without a compiler: {sorted(k.value for k in _MISSING)}")

_SPATIAL_GROUP_KINDS = {FilterKind.CITY, FilterKind.NEIGHBORHOOD}


def compile_filters(
    filters: Optional[Mapping[str, Any]],
    store: str,
    *,
    bounds: Optional[Rect] = None,
    exclude_keys: Iterable[str] = (),
    agent_resolver: Optional[Callable[[List[str]], List[str]]] = None,
    now: Optional[datetime] = None,
) -> CompiledFilters:
    """Compile a FilterSet into predicates for one store.

    ``store`` is ``"optimized"``, ``"live"`` or ``"archive"``. A malformed
    value drops that one filter (recorded in ``skipped``); it never aborts
    the whole compilation.
    """

    if store not in STORES:
        raise ValueError(f"Unknown store: {store}")

    filters = dict(filters or {})
    excluded = set(exclude_keys)
    ctx = _Context(store=store, now=now or datetime.now(timezone.utc), agent_resolver=agent_resolver)
    out = CompiledFilters(store=store, bypass_status=has_lookup(filters))
    normalized = store != "optimized"

    regions: List[tuple] = []
    polygons = []
    school_values: Dict[str, Any] = {}
    has_status_filter = False

    for key, raw in filters.items():
        if key in excluded or is_empty(raw):
            continue
        d = FILTERS.get(key)
        if d is None:
            out.unknown.append(key)
            continue
        value = filter_value(raw)

        if d.kind == FilterKind.SCHOOL:
            school_values[key] = value
            continue
        if d.kind == FilterKind.POLYGON:
            try:
                polygons.extend(parse_polygon_shapes(value))
            except MalformedFilterError:
                out.skipped.append(key)
                _log.warning("skipping malformed filter key=%s", key)
            continue
        if d.kind == FilterKind.STATUS and out.bypass_status:
            continue

        col = d.column_for(store)
        if col is None:
            out.skipped.append(key)
            _log.warning("filter key=%s is not available on store=%s", key, store)
            continue

        try:
            built = _COMPILERS[d.kind](d, col, value, ctx)
        except MalformedFilterError:
            out.skipped.append(key)
            _log.warning("skipping malformed filter key=%s", key)
            continue
        if built is None:
            continue
        if d.kind == FilterKind.STATUS:
            has_status_filter = True

        if d.kind in _SPATIAL_GROUP_KINDS:
            regions.append((built.where_sql, built.params))
        else:
            out.predicates.append(built)
        if normalized and d.table:
            out.joins.add(d.table)

    if not has_status_filter and not out.bypass_status and "status" not in excluded:
        status_col = FILTERS["status"].column_for(store)
        out.predicates.insert(0, _in_clause(status_col, sorted(LIVE_STATUSES)))

    spatial = build_spatial(
        columns=NORMALIZED_COLUMNS if normalized else OPTIMIZED_COLUMNS,
        bounds=bounds,
        polygons=polygons,
        regions=regions,
    )
    if spatial is not None:
        out.predicates.append(BuiltQuery(spatial[0], spatial[1]))
        if normalized:
            out.joins.add("location")

    if school_values:
        try:
            out.school_criteria = SchoolCriteria.from_filters(school_values)
        except MalformedFilterError as exc:
            out.skipped.append(exc.key)
            _log.warning("skipping malformed filter key=%s", exc.key)

    return out
