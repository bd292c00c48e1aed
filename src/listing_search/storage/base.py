from __future__ import annotations

from typing import List, Protocol

from ..models import Listing
from ..search.query import CompiledFilters


class ListingRepository(Protocol):
    """One physical representation of listings.

    ``compiled`` must have been compiled for the store the repository
    answers for (``"optimized"``, ``"live"`` or ``"archive"``).
    """

    def query(self, partition: str, compiled: CompiledFilters, *, limit: int, offset: int = 0) -> List[Listing]:
        ...

    def count(self, partition: str, compiled: CompiledFilters) -> int:
        ...


def clamp_limit(limit: int | None, *, default: int = 200, cap: int = 250) -> int:
    if limit is None:
        return default
    try:
        value = int(limit)
    except (TypeError, ValueError):
        return default
    return max(1, min(value, cap))


def clamp_offset(offset: int | None, *, cap: int = 10_000) -> int:
    if offset is None:
        return 0
    try:
        value = int(offset)
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(0, min(value, cap))


def _as_float(value) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def _as_int(value) -> int:
    try:
        return int(value) if value is not None else 0
    except (TypeError, ValueError):
        return 0


def _opt_float(value):
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _opt_int(value):
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def row_to_listing(row, *, source: str) -> Listing:
    """Map a row carrying the common display column names onto ``Listing``."""

    keys = set(row.keys())

    def get(name):
        return row[name] if name in keys else None

    return Listing(
        listing_id=int(row["listing_id"]),
        status=str(row["standard_status"] or ""),
        price=_as_float(get("price")),
        property_type=get("property_type"),
        property_sub_type=get("property_sub_type"),
        original_list_price=_opt_float(get("original_list_price")),
        close_price=_opt_float(get("close_price")),
        latitude=_opt_float(get("latitude")),
        longitude=_opt_float(get("longitude")),
        street_number=get("street_number"),
        street_name=get("street_name"),
        unit_number=get("unit_number"),
        city=get("city"),
        state_or_province=get("state_or_province"),
        postal_code=get("postal_code"),
        bedrooms_total=_as_int(get("bedrooms_total")),
        bathrooms_total=_as_float(get("bathrooms_total")),
        living_area=_as_float(get("living_area")),
        year_built=_opt_int(get("year_built")),
        lot_size_acres=_opt_float(get("lot_size_acres")),
        garage_spaces=_opt_int(get("garage_spaces")),
        photo_url=get("photo_url"),
        modification_timestamp=str(get("modification_timestamp") or ""),
        source=source,
    )
