from __future__ import annotations

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class Bounds(BaseModel):
    north: float
    south: float
    east: float
    west: float


class MapSearchBody(BaseModel):
    filters: Dict[str, Any] = Field(default_factory=dict)
    bounds: Optional[Bounds] = None
    polygons: Optional[List[Any]] = None
    count_only: bool = False
    force_fresh: bool = False
    limit: Optional[int] = None
    offset: int = 0
    zoom: Optional[int] = None
    initial_load: bool = False


class ListingOut(BaseModel):
    listing_id: int
    price: float = 0.0
    original_list_price: Optional[float] = None
    status: str
    property_type: Optional[str] = None
    property_sub_type: Optional[str] = None
    street_number: Optional[str] = None
    street_name: Optional[str] = None
    unit_number: Optional[str] = None
    city: Optional[str] = None
    state_or_province: Optional[str] = None
    postal_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    bedrooms_total: int = 0
    bathrooms_total: float = 0.0
    living_area: float = 0.0
    year_built: Optional[int] = None
    lot_size_acres: Optional[float] = None
    garage_spaces: Optional[int] = None
    photo_url: Optional[str] = None
    modification_timestamp: str = ""
    is_archive: bool = False
    open_house_data: List[Dict[str, Any]] = Field(default_factory=list)
    best_school_grade: Optional[str] = None
    district_grade: Optional[str] = None
    district_percentile: Optional[float] = None


class MapSearchResponse(BaseModel):
    listings: List[ListingOut] = Field(default_factory=list)
    total: int = 0
    total_is_exact: bool = True


class CountResponse(BaseModel):
    total: int


class FilterOptionsBody(BaseModel):
    filters: Dict[str, Any] = Field(default_factory=dict)
    bounds: Optional[Bounds] = None
    force_fresh: bool = False


class Suggestion(BaseModel):
    value: str
    label: str
    type: str
