from __future__ import annotations

import logging
import sqlite3
from typing import List, Optional, Sequence

import httpx

from ..models import Listing
from .events import EventSource
from .schools import (
    NEAR_SCHOOL_RADIUS_MILES,
    SchoolCriteria,
    SchoolGradeSource,
    passes_school_criteria,
)


_log = logging.getLogger("lse.enrichment")

ENRICHMENT_ERRORS = (httpx.HTTPError, sqlite3.Error, ValueError, TypeError, KeyError)


def attach_events(listings: Sequence[Listing], source: EventSource) -> None:
    if not listings:
        return
    try:
        events = source.active_events_for([x.listing_id for x in listings])
    except ENRICHMENT_ERRORS as exc:
        _log.warning("event lookup failed for %d listings: %s", len(listings), exc)
        return
    for listing in listings:
        listing.open_house_data = list(events.get(listing.listing_id, []))


def attach_school_grades(listings: Sequence[Listing], source: SchoolGradeSource) -> None:
    for listing in listings:
        if listing.latitude and listing.longitude:
            try:
                listing.best_school_grade = source.best_grade_near(
                    listing.latitude, listing.longitude, NEAR_SCHOOL_RADIUS_MILES
                )
            except ENRICHMENT_ERRORS as exc:
                _log.warning("school grade lookup failed listing_id=%s: %s", listing.listing_id, exc)
        if listing.city:
            try:
                info = source.district_grade_for(listing.city)
            except ENRICHMENT_ERRORS as exc:
                _log.warning("district grade lookup failed listing_id=%s: %s", listing.listing_id, exc)
                info = None
            if info:
                listing.district_grade = info.get("grade")
                listing.district_percentile = info.get("percentile")


def enrich(
    listings: Sequence[Listing],
    *,
    events: Optional[EventSource] = None,
    schools: Optional[SchoolGradeSource] = None,
) -> List[Listing]:
    """Attach open-house windows and school grades to a final page.

    A failed lookup leaves that listing without the field; nothing is dropped.
    """

    out = list(listings)
    if events is not None:
        attach_events(out, events)
    if schools is not None:
        attach_school_grades(out, schools)
    return out


def apply_school_filter(
    listings: Sequence[Listing], criteria: Optional[SchoolCriteria], source: SchoolGradeSource
) -> List[Listing]:
    """Keep listings that meet ``criteria``; a failed lookup does not pass."""

    if criteria is None:
        return list(listings)
    kept = []
    for listing in listings:
        try:
            ok = passes_school_criteria(listing, criteria, source)
        except ENRICHMENT_ERRORS as exc:
            _log.warning("school filter lookup failed listing_id=%s: %s", listing.listing_id, exc)
            ok = False
        if ok:
            kept.append(listing)
    return kept
