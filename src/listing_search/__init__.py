"""Package initializer for `listing_search`."""

from .models import Listing, QueryPlan, RankedResult
from .search.engine import MapSearchRequest, SearchEngine

__all__ = ["Listing", "MapSearchRequest", "QueryPlan", "RankedResult", "SearchEngine"]
