from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Literal, Optional


Partition = Literal["live", "archive"]
PARTITION_ORDER: tuple[Partition, ...] = ("live", "archive")

# Identifiers below this value belong to brokerage-exclusive listings.
EXCLUSIVE_ID_THRESHOLD = 1_000_000


class ListingStatus:
    ACTIVE = "Active"
    ACTIVE_UNDER_CONTRACT = "Active Under Contract"
    PENDING = "Pending"
    CLOSED = "Closed"
    EXPIRED = "Expired"
    WITHDRAWN = "Withdrawn"
    CANCELED = "Canceled"


# User-facing aliases.
UNDER_AGREEMENT = "Under Agreement"
SOLD = "Sold"

LIVE_STATUSES: FrozenSet[str] = frozenset(
    {ListingStatus.ACTIVE, ListingStatus.ACTIVE_UNDER_CONTRACT, ListingStatus.PENDING}
)
# Status values the Optimized Store can answer, including the alias.
OPTIMIZED_STATUSES: FrozenSet[str] = LIVE_STATUSES | {UNDER_AGREEMENT}

STATUS_ALIASES: Dict[str, tuple[str, ...]] = {
    UNDER_AGREEMENT: (ListingStatus.PENDING, ListingStatus.ACTIVE_UNDER_CONTRACT),
    ListingStatus.PENDING: (ListingStatus.PENDING, ListingStatus.ACTIVE_UNDER_CONTRACT),
    SOLD: (ListingStatus.CLOSED,),
}


def expand_status(value: str) -> tuple[str, ...]:
    """Map one user-facing status to the stored statuses it matches."""

    return STATUS_ALIASES.get(value, (value,))


@dataclass
class Listing:
    """One listing as returned by either store.

    Both repositories map their rows onto this type so that ranking,
    enrichment and serialization never see which schema answered.
    """

    listing_id: int
    status: str
    price: float = 0.0
    property_type: Optional[str] = None
    property_sub_type: Optional[str] = None
    original_list_price: Optional[float] = None
    close_price: Optional[float] = None

    latitude: Optional[float] = None
    longitude: Optional[float] = None
    street_number: Optional[str] = None
    street_name: Optional[str] = None
    unit_number: Optional[str] = None
    city: Optional[str] = None
    state_or_province: Optional[str] = None
    postal_code: Optional[str] = None

    bedrooms_total: int = 0
    bathrooms_total: float = 0.0
    living_area: float = 0.0
    year_built: Optional[int] = None
    lot_size_acres: Optional[float] = None
    garage_spaces: Optional[int] = None

    photo_url: Optional[str] = None
    modification_timestamp: str = ""
    source: str = "live"

    open_house_data: List[Dict[str, Any]] = field(default_factory=list)
    best_school_grade: Optional[str] = None
    district_grade: Optional[str] = None
    district_percentile: Optional[float] = None

    @property
    def is_archive(self) -> bool:
        return self.source == "archive"

    @property
    def is_exclusive(self) -> bool:
        return int(self.listing_id) < EXCLUSIVE_ID_THRESHOLD

    def to_dict(self) -> dict:
        return {
            "listing_id": self.listing_id,
            "price": self.price,
            "original_list_price": self.original_list_price,
            "status": self.status,
            "property_type": self.property_type,
            "property_sub_type": self.property_sub_type,
            "street_number": self.street_number,
            "street_name": self.street_name,
            "unit_number": self.unit_number,
            "city": self.city,
            "state_or_province": self.state_or_province,
            "postal_code": self.postal_code,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "bedrooms_total": self.bedrooms_total,
            "bathrooms_total": self.bathrooms_total,
            "living_area": self.living_area,
            "year_built": self.year_built,
            "lot_size_acres": self.lot_size_acres,
            "garage_spaces": self.garage_spaces,
            "photo_url": self.photo_url,
            "modification_timestamp": self.modification_timestamp,
            "is_archive": self.is_archive,
            "open_house_data": list(self.open_house_data),
            "best_school_grade": self.best_school_grade,
            "district_grade": self.district_grade,
            "district_percentile": self.district_percentile,
        }


@dataclass(frozen=True)
class QueryPlan:
    use_optimized_store: bool
    partitions: FrozenSet[Partition]
    reason: str = ""

    def ordered_partitions(self) -> List[Partition]:
        return [p for p in PARTITION_ORDER if p in self.partitions]


@dataclass
class RankedResult:
    listings: List[Listing]
    total: int
    # False when a post-query filter decided the count (see school filters).
    total_is_exact: bool = True

    def to_dict(self) -> dict:
        return {
            "listings": [listing.to_dict() for listing in self.listings],
            "total": self.total,
            "total_is_exact": self.total_is_exact,
        }
