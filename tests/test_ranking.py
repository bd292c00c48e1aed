from listing_search.models import Listing
from listing_search.search.ranking import compare_listings, dedupe, merge_partitions, rank


def _l(listing_id, status="Active", price=500000, modified="2026-01-01 00:00:00", source="live"):
    return Listing(listing_id=listing_id, status=status, price=price, modification_timestamp=modified, source=source)


def test_exclusive_listings_rank_first():
    ranked = rank([_l(2000001, price=900000), _l(999, price=100000, status="Closed")])
    assert [x.listing_id for x in ranked] == [999, 2000001]


def test_status_tier_before_price():
    ranked = rank(
        [
            _l(2000001, status="Closed", price=900000),
            _l(2000002, status="Pending", price=800000),
            _l(2000003, status="Active Under Contract", price=850000),
            _l(2000004, status="Active", price=100000),
        ]
    )
    assert [x.listing_id for x in ranked] == [2000004, 2000002, 2000001, 2000003]


def test_price_band_falls_through_to_recency():
    older = _l(2000001, price=500900, modified="2026-01-01 00:00:00")
    newer = _l(2000002, price=500000, modified="2026-02-01 00:00:00")
    assert compare_listings(older, newer) > 0
    assert [x.listing_id for x in rank([older, newer])] == [2000002, 2000001]

    cheaper = _l(2000003, price=498000, modified="2026-03-01 00:00:00")
    assert [x.listing_id for x in rank([cheaper, older])] == [2000001, 2000003]


def test_dedupe_keeps_live_copy():
    live = _l(2000001, status="Active", source="live")
    archived = _l(2000001, status="Closed", source="archive")
    merged = dedupe({"archive": [archived], "live": [live]})
    assert len(merged) == 1
    assert merged[0].source == "live"


def test_merge_paginates_after_ranking():
    live = [_l(2000000 + i, price=100000 * i) for i in range(1, 6)]
    archive = [_l(3000000 + i, status="Closed", price=1_000_000 * i, source="archive") for i in range(1, 3)]
    page = merge_partitions({"live": live, "archive": archive}, limit=3, offset=2)
    assert [x.listing_id for x in page] == [2000003, 2000002, 2000001]
