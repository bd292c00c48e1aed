from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional


class FilterKind(str, Enum):
    RANGE = "range"
    RANGE_MIN = "range_min"
    RANGE_MAX = "range_max"
    LOT_SIZE_MIN = "lot_size_min"
    LOT_SIZE_MAX = "lot_size_max"
    NUMERIC_STRING = "numeric_string"
    COMBINED_PARKING = "combined_parking"
    CATEGORICAL = "categorical"
    STATUS = "status"
    PROPERTY_TYPE = "property_type"
    BEDS = "beds"
    MULTI = "multi"
    BOOL = "bool"
    STREET_NAME = "street_name"
    STREET_ADDRESS = "street_address"
    ADDRESS = "address"
    LISTING_ID = "listing_id"
    CITY = "city"
    NEIGHBORHOOD = "neighborhood"
    POLYGON = "polygon"
    AGENT = "agent"
    AGENT_SINGLE = "agent_single"
    SCHOOL = "school"
    OPEN_HOUSE = "open_house"
    PRICE_REDUCED = "price_reduced"
    NEW_LISTING_DAYS = "new_listing_days"
    VIRTUAL_TOUR = "virtual_tour"
    LAUNDRY = "laundry"
    LEASE_TERM = "lease_term"
    AVAILABLE_BY = "available_by"
    AVAILABLE_NOW = "available_now"


# Normalized Store sub-tables, keyed by the alias used in compiled SQL.
SUB_TABLES: Dict[str, str] = {
    "details": "ld",
    "location": "ll",
    "financial": "lfn",
    "features": "lft",
}

LIST_PRICE_COLUMN = "l.list_price"
# Archive rows report the sale price once a listing has closed.
ARCHIVE_PRICE_EXPR = (
    "(CASE WHEN l.standard_status = 'Closed' AND l.close_price IS NOT NULL "
    "THEN l.close_price ELSE l.list_price END)"
)

SQFT_PER_ACRE = 43560.0


@dataclass(frozen=True)
class FilterDefinition:
    key: str
    kind: FilterKind
    # Normalized Store column expression (aliased), None for column-less kinds.
    column: Optional[str] = None
    # Sub-table the column lives in; None means the base listings table.
    table: Optional[str] = None
    # Optimized Store column; None when the summary table cannot answer it.
    optimized_column: Optional[str] = None
    bound: Optional[str] = None
    label: str = ""

    def column_for(self, store: str) -> Optional[str]:
        if store == "optimized":
            return self.optimized_column
        if store == "archive" and self.column == LIST_PRICE_COLUMN:
            return ARCHIVE_PRICE_EXPR
        return self.column


def _d(key: str, kind: FilterKind, column: Optional[str] = None, table: Optional[str] = None,
       optimized_column: Optional[str] = None, bound: Optional[str] = None, label: str = "") -> FilterDefinition:
    return FilterDefinition(
        key=key,
        kind=kind,
        column=column,
        table=table,
        optimized_column=optimized_column,
        bound=bound,
        label=label,
    )


K = FilterKind

# Amenity flags that only the features/details/financial tables carry.
AMENITY_FLAGS: Dict[str, tuple] = {
    "SpaYN": ("lft.spa_yn", "features", "Spa"),
    "WaterfrontYN": ("lft.waterfront_yn", "features", "Waterfront"),
    "ViewYN": ("lft.view_yn", "features", "View"),
    "MLSPIN_WATERVIEW_FLAG": ("lft.waterview_flag", "features", "Water View"),
    "PropertyAttachedYN": ("ld.property_attached_yn", "details", "Attached Property"),
    "MLSPIN_LENDER_OWNED": ("lfn.lender_owned", "financial", "Lender Owned"),
    "CoolingYN": ("ld.cooling_yn", "details", "Central Air"),
    "SeniorCommunityYN": ("lft.senior_community_yn", "features", "Senior Community"),
    "MLSPIN_OUTDOOR_SPACE_AVAILABLE": ("lft.outdoor_space_available", "features", "Outdoor Space"),
    "MLSPIN_DPR_Flag": ("lfn.dpr_flag", "financial", "Down Payment Resource"),
    "FireplaceYN": ("ld.fireplace_yn", "details", "Fireplace"),
    "GarageYN": ("ld.garage_yn", "details", "Garage"),
    "PoolPrivateYN": ("lft.pool_private_yn", "features", "Private Pool"),
    "HorseYN": ("lft.horse_yn", "features", "Horse Property"),
    "HomeWarrantyYN": ("ld.home_warranty_yn", "details", "Home Warranty"),
    "AttachedGarageYN": ("ld.attached_garage_yn", "details", "Attached Garage"),
    "ElectricOnPropertyYN": ("ld.electric_on_property_yn", "details", "Electric On Property"),
    "AssociationYN": ("lfn.association_yn", "financial", "Association"),
    "PetsAllowed": ("lft.pets_allowed", "features", "Pets Allowed"),
    "CarportYN": ("ld.carport_yn", "details", "Carport"),
}

SCHOOL_FILTER_KEYS: tuple = (
    "near_a_elementary",
    "near_ab_elementary",
    "near_a_middle",
    "near_ab_middle",
    "near_a_high",
    "near_ab_high",
    "school_grade",
    "school_district_id",
)

_DEFINITIONS: List[FilterDefinition] = [
    # price / size ranges
    _d("price", K.RANGE, LIST_PRICE_COLUMN, None, "s.list_price"),
    _d("price_min", K.RANGE_MIN, LIST_PRICE_COLUMN, None, "s.list_price"),
    _d("price_max", K.RANGE_MAX, LIST_PRICE_COLUMN, None, "s.list_price"),
    _d("bedrooms", K.RANGE, "ld.bedrooms_total", "details", "s.bedrooms_total"),
    _d("beds", K.BEDS, "ld.bedrooms_total", "details", "s.bedrooms_total"),
    _d("beds_min", K.RANGE_MIN, "ld.bedrooms_total", "details", "s.bedrooms_total"),
    _d("bathrooms", K.RANGE, "ld.bathrooms_total", "details", "s.bathrooms_total"),
    _d("baths_min", K.RANGE_MIN, "ld.bathrooms_total", "details", "s.bathrooms_total"),
    _d("square_feet", K.RANGE, "ld.living_area", "details", "s.living_area"),
    _d("sqft_min", K.RANGE_MIN, "ld.living_area", "details", "s.living_area"),
    _d("sqft_max", K.RANGE_MAX, "ld.living_area", "details", "s.living_area"),
    _d("year_built_min", K.RANGE_MIN, "ld.year_built", "details", "s.year_built"),
    _d("year_built_max", K.RANGE_MAX, "ld.year_built", "details", "s.year_built"),
    _d("lot_size_min", K.LOT_SIZE_MIN, "ld.lot_size_acres", "details", "s.lot_size_acres"),
    _d("lot_size_max", K.LOT_SIZE_MAX, "ld.lot_size_acres", "details", "s.lot_size_acres"),
    _d("garage_spaces_min", K.RANGE_MIN, "ld.garage_spaces", "details", "s.garage_spaces"),
    _d("max_dom", K.RANGE_MAX, "l.days_on_market", None, "s.days_on_market"),
    _d("days_on_market_max", K.RANGE_MAX, "l.days_on_market", None, "s.days_on_market"),
    _d("entry_level_min", K.NUMERIC_STRING, "ll.entry_level", "location", bound="min"),
    _d("entry_level_max", K.NUMERIC_STRING, "ll.entry_level", "location", bound="max"),
    _d("parking_total_min", K.COMBINED_PARKING, "ld.parking_total", "details"),
    # categorical
    _d("PropertyType", K.PROPERTY_TYPE, "l.property_type", None, "s.property_type"),
    _d("property_type", K.PROPERTY_TYPE, "l.property_type", None, "s.property_type"),
    _d("property_sub_type", K.CATEGORICAL, "l.property_sub_type", None, "s.property_sub_type"),
    _d("home_type", K.CATEGORICAL, "l.property_sub_type", None, "s.property_sub_type"),
    _d("status", K.STATUS, "l.standard_status", None, "s.standard_status"),
    _d("Postal Code", K.CATEGORICAL, "ll.postal_code", "location", "s.postal_code"),
    _d("PostalCode", K.CATEGORICAL, "ll.postal_code", "location", "s.postal_code"),
    _d("postal_code", K.CATEGORICAL, "ll.postal_code", "location", "s.postal_code"),
    _d("Building", K.CATEGORICAL, "ll.building_name", "location"),
    _d("structure_type", K.MULTI, "ld.structure_type", "details"),
    _d("architectural_style", K.MULTI, "ld.architectural_style", "details"),
    # address lookups
    _d("MLS Number", K.LISTING_ID, "l.listing_id"),
    _d("ListingId", K.LISTING_ID, "l.listing_id"),
    _d("listing_id", K.LISTING_ID, "l.listing_id"),
    _d("Street Name", K.STREET_NAME, "ll.street_name", "location", "s.street_name"),
    _d("StreetName", K.STREET_NAME, "ll.street_name", "location", "s.street_name"),
    _d("street_name", K.STREET_NAME, "ll.street_name", "location", "s.street_name"),
    _d("Street Address", K.STREET_ADDRESS, "ll.street_name", "location"),
    _d("Address", K.ADDRESS, "ll.unparsed_address", "location"),
    # spatial group
    _d("City", K.CITY, "ll.city", "location", "s.city"),
    _d("city", K.CITY, "ll.city", "location", "s.city"),
    _d("Neighborhood", K.NEIGHBORHOOD, "ll.subdivision_name", "location"),
    _d("neighborhood", K.NEIGHBORHOOD, "ll.subdivision_name", "location"),
    _d("polygon_shapes", K.POLYGON),
    # agents
    _d("agent_ids", K.AGENT, "l.list_agent_mls_id"),
    _d("listing_agent_id", K.AGENT_SINGLE, "l.list_agent_mls_id"),
    _d("buyer_agent_id", K.AGENT_SINGLE, "l.buyer_agent_mls_id"),
    # summary-table amenity flags
    _d("has_pool", K.BOOL, "lft.pool_private_yn", "features", "s.has_pool", label="Pool"),
    _d("has_fireplace", K.BOOL, "ld.fireplace_yn", "details", "s.has_fireplace", label="Fireplace"),
    _d("has_basement", K.BOOL, "ld.basement_yn", "details", "s.has_basement", label="Basement"),
    _d("pet_friendly", K.BOOL, "lft.pets_allowed", "features", "s.pet_friendly", label="Pet Friendly"),
    # listing activity
    _d("open_house_only", K.OPEN_HOUSE, "l.listing_id", None, "s.listing_id", label="Open House Only"),
    _d("price_reduced", K.PRICE_REDUCED, "l.original_list_price", None, "s.original_list_price"),
    _d("new_listing_days", K.NEW_LISTING_DAYS, "l.listing_contract_date", None, "s.listing_contract_date"),
    _d("has_virtual_tour", K.VIRTUAL_TOUR, "ld.virtual_tour_url", "details", "s.virtual_tour_url"),
    # rentals
    _d("laundry_features", K.LAUNDRY, "ld.laundry_features", "details"),
    _d("lease_term", K.LEASE_TERM, "lfn.lease_term", "financial"),
    _d("available_by", K.AVAILABLE_BY, "lfn.availability_date", "financial"),
    _d("available_now", K.AVAILABLE_NOW, "lfn.availability_date", "financial"),
    _d("MLSPIN_AvailableNow", K.AVAILABLE_NOW, "lfn.availability_date", "financial"),
    _d("pets_dogs", K.BOOL, "lft.pets_dogs_allowed", "features", label="Dogs Allowed"),
    _d("pets_cats", K.BOOL, "lft.pets_cats_allowed", "features", label="Cats Allowed"),
    _d("pets_none", K.BOOL, "lft.pets_no_pets", "features", label="No Pets"),
    _d("pets_negotiable", K.BOOL, "lft.pets_negotiable", "features", label="Pets Negotiable"),
]
_DEFINITIONS.extend(
    _d(key, K.BOOL, column, table, label=label) for key, (column, table, label) in AMENITY_FLAGS.items()
)
_DEFINITIONS.extend(_d(key, K.SCHOOL) for key in SCHOOL_FILTER_KEYS)

FILTERS: Dict[str, FilterDefinition] = {d.key: d for d in _DEFINITIONS}

# Filter kinds whose compilation needs no column of their own.
COLUMNLESS_KINDS: FrozenSet[FilterKind] = frozenset({K.POLYGON, K.SCHOOL})

# Lookups that must see a listing whatever its lifecycle state.
LOOKUP_KEYS: FrozenSet[str] = frozenset(
    {"MLS Number", "ListingId", "listing_id", "Street Address", "Address"}
)

# Keys the summary table cannot answer; any of them forces the Normalized Store.
OPTIMIZED_UNSUPPORTED: FrozenSet[str] = frozenset(
    {
        "structure_type",
        "architectural_style",
        "entry_level_min",
        "entry_level_max",
        "parking_total_min",
        "agent_ids",
        "listing_agent_id",
        "buyer_agent_id",
        "MLS Number",
        "ListingId",
        "listing_id",
        "Street Address",
        "Address",
        "Building",
        "Neighborhood",
        "neighborhood",
        "laundry_features",
        "lease_term",
        "available_by",
        "available_now",
        "MLSPIN_AvailableNow",
        "pets_dogs",
        "pets_cats",
        "pets_none",
        "pets_negotiable",
        *AMENITY_FLAGS.keys(),
        *SCHOOL_FILTER_KEYS,
    }
)


def _check_tables() -> None:
    unknown = OPTIMIZED_UNSUPPORTED - FILTERS.keys()
    if unknown:
        raise RuntimeError(f"unsupported-filter list names unknown keys: {sorted(unknown)}")
    for d in FILTERS.values():
        if d.kind in COLUMNLESS_KINDS:
            continue
        if d.column is None:
            raise RuntimeError(f"filter {d.key} has no Normalized Store column")
        if d.table is not None and d.table not in SUB_TABLES:
            raise RuntimeError(f"filter {d.key} names unknown table {d.table}")
        if d.optimized_column is None and d.key not in OPTIMIZED_UNSUPPORTED:
            raise RuntimeError(f"filter {d.key} has no summary column but is not marked unsupported")


_check_tables()


def get_definition(key: str) -> Optional[FilterDefinition]:
    return FILTERS.get(key)


def filter_value(raw: Any) -> Any:
    """Unwrap ``{"value": x}`` envelopes sent by some clients."""

    if isinstance(raw, dict) and "value" in raw:
        return raw["value"]
    return raw


def is_empty(value: Any) -> bool:
    """True when a filter value means "not applied"."""

    value = filter_value(value)
    if value is None or value is False:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, frozenset)):
        return all(is_empty(v) for v in value)
    if isinstance(value, dict):
        return all(is_empty(v) for v in value.values())
    return False


def active_filters(filters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {k: v for k, v in (filters or {}).items() if not is_empty(v)}


def has_lookup(filters: Optional[Dict[str, Any]]) -> bool:
    return any(key in LOOKUP_KEYS for key in active_filters(filters))


def has_school_filter(filters: Optional[Dict[str, Any]]) -> bool:
    return any(key in SCHOOL_FILTER_KEYS for key in active_filters(filters))
