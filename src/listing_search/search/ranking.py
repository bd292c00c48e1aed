from __future__ import annotations

from functools import cmp_to_key
from typing import Dict, Iterable, List, Mapping, Sequence

from ..models import EXCLUSIVE_ID_THRESHOLD, PARTITION_ORDER, Listing, ListingStatus


# Prices within this many dollars compare equal.
PRICE_BAND = 1000.0

_STATUS_TIER = {ListingStatus.ACTIVE: 0, ListingStatus.PENDING: 1}


def exclusivity_tier(listing: Listing) -> int:
    try:
        return 0 if int(listing.listing_id) < EXCLUSIVE_ID_THRESHOLD else 1
    except (TypeError, ValueError):
        return 1


def status_tier(listing: Listing) -> int:
    return _STATUS_TIER.get(listing.status, 2)


def compare_listings(a: Listing, b: Listing) -> int:
    ea, eb = exclusivity_tier(a), exclusivity_tier(b)
    if ea != eb:
        return ea - eb
    sa, sb = status_tier(a), status_tier(b)
    if sa != sb:
        return sa - sb
    price_diff = float(b.price or 0) - float(a.price or 0)
    if abs(price_diff) > PRICE_BAND:
        return 1 if price_diff > 0 else -1
    ta, tb = a.modification_timestamp or "", b.modification_timestamp or ""
    if ta == tb:
        return 0
    return -1 if ta > tb else 1


rank_key = cmp_to_key(compare_listings)


def rank(listings: Iterable[Listing]) -> List[Listing]:
    return sorted(listings, key=rank_key)


def dedupe(rows_by_partition: Mapping[str, Sequence[Listing]]) -> List[Listing]:
    """Union partitions, keeping the first copy of each listing id (live before archive)."""

    seen: Dict[int, Listing] = {}
    ordered = [p for p in PARTITION_ORDER if p in rows_by_partition]
    ordered += [p for p in rows_by_partition if p not in ordered]
    for partition in ordered:
        for listing in rows_by_partition[partition]:
            if listing.listing_id not in seen:
                seen[listing.listing_id] = listing
    return list(seen.values())


def merge_partitions(
    rows_by_partition: Mapping[str, Sequence[Listing]], *, limit: int, offset: int = 0
) -> List[Listing]:
    merged = rank(dedupe(rows_by_partition))
    return merged[offset : offset + limit]


# SQL ordering that approximates compare_listings inside one partition so
# that each partition's row limit keeps the rows that would rank first.
def order_by_sql(id_col: str, status_col: str, price_col: str, modified_col: str) -> str:
    return (
        f"CASE WHEN {id_col} < {EXCLUSIVE_ID_THRESHOLD} THEN 0 ELSE 1 END, "
        f"CASE {status_col} WHEN 'Active' THEN 0 WHEN 'Pending' THEN 1 ELSE 2 END, "
        f"{price_col} DESC, {modified_col} DESC"
    )
