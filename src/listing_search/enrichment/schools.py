from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Tuple

import httpx

from ..errors import MalformedFilterError


GRADE_ORDER: Dict[str, int] = {
    "A+": 12,
    "A": 11,
    "A-": 10,
    "B+": 9,
    "B": 8,
    "B-": 7,
    "C+": 6,
    "C": 5,
    "C-": 4,
    "D+": 3,
    "D": 2,
    "D-": 1,
    "F": 0,
}

SCHOOL_LEVELS = ("elementary", "middle", "high")
NEAR_SCHOOL_RADIUS_MILES = 1.0
# ~0.7 mile grid cells for memoized lookups.
GRID_DEGREES = 0.01

_log = logging.getLogger("lse.enrichment")


def grade_meets_minimum(grade: Optional[str], min_grade: str) -> bool:
    """``"B"`` as a minimum admits B+, B and B- (and anything better)."""

    if not grade:
        return False
    min_grade = str(min_grade).strip().upper()
    if len(min_grade) == 1 and min_grade != "F":
        min_grade = min_grade + "-"
    grade_value = GRADE_ORDER.get(str(grade).strip().upper(), 0)
    min_value = GRADE_ORDER.get(min_grade, 0)
    return grade_value >= min_value


def best_grade(*grades: Optional[str]) -> Optional[str]:
    ranked = [g for g in grades if g and g.upper() in GRADE_ORDER]
    if not ranked:
        return None
    return max(ranked, key=lambda g: GRADE_ORDER[g.upper()])


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y", "on"}
    return bool(value)


@dataclass(frozen=True)
class SchoolCriteria:
    # level -> minimum grade of a school within NEAR_SCHOOL_RADIUS_MILES
    near: Tuple[Tuple[str, str], ...] = ()
    # minimum district grade, looked up by city
    district_grade: Optional[str] = None
    district_id: Optional[int] = None

    @classmethod
    def from_filters(cls, filters: Mapping[str, Any]) -> Optional["SchoolCriteria"]:
        near: Dict[str, str] = {}
        for level in SCHOOL_LEVELS:
            if _truthy(filters.get(f"near_ab_{level}")):
                near[level] = "B-"
            if _truthy(filters.get(f"near_a_{level}")):
                near[level] = "A-"

        district_grade = None
        raw_grade = filters.get("school_grade")
        if raw_grade not in (None, "", False):
            district_grade = str(raw_grade).strip().upper()
            if district_grade not in GRADE_ORDER:
                raise MalformedFilterError("school_grade", "unknown grade")

        district_id = None
        raw_district = filters.get("school_district_id")
        if raw_district not in (None, "", False, 0, "0"):
            try:
                district_id = abs(int(raw_district))
            except (TypeError, ValueError):
                raise MalformedFilterError("school_district_id", "expected an integer") from None

        if not near and district_grade is None and district_id is None:
            return None
        return cls(near=tuple(sorted(near.items())), district_grade=district_grade, district_id=district_id)


class SchoolGradeSource(Protocol):
    def best_grade_near(
        self, lat: float, lng: float, radius_miles: float, level: Optional[str] = None
    ) -> Optional[str]:
        ...

    def district_grade_for(self, city: str) -> Optional[Dict[str, Any]]:
        ...

    def district_for_point(self, lat: float, lng: float) -> Optional[Dict[str, Any]]:
        ...


class NullSchoolGradeSource:
    """Used when school enrichment is disabled; knows no schools."""

    def best_grade_near(self, lat, lng, radius_miles, level=None):
        return None

    def district_grade_for(self, city):
        return None

    def district_for_point(self, lat, lng):
        return None


class HttpSchoolGradeSource:
    """Client for the schools service.

    Unknown locations come back as 404 or an empty body; both map to None.
    Transport and 5xx errors propagate as ``httpx.HTTPError``.
    """

    def __init__(self, base_url: str, *, timeout_s: float = 5.0, client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(base_url=self.base_url, timeout=timeout_s)

    @classmethod
    def from_env(cls) -> Optional["HttpSchoolGradeSource"]:
        base_url = str(os.getenv("SCHOOLS_API_URL", "") or "").strip()
        if not base_url:
            return None
        timeout_s = float(os.getenv("SCHOOLS_API_TIMEOUT_S", "5") or 5)
        return cls(base_url, timeout_s=timeout_s)

    def _get(self, path: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        resp = self._client.get(path, params=params)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        if not resp.content:
            return None
        data = resp.json()
        return data if isinstance(data, dict) and data else None

    def best_grade_near(self, lat, lng, radius_miles, level=None):
        params: Dict[str, Any] = {"lat": lat, "lng": lng, "radius": radius_miles}
        if level:
            params["level"] = level
        data = self._get("/schools/best-grade", params)
        return (data or {}).get("grade") or None

    def district_grade_for(self, city):
        if not city:
            return None
        data = self._get("/districts/grade", {"city": city})
        if not data or not data.get("grade"):
            return None
        return {"grade": data["grade"], "percentile": data.get("percentile")}

    def district_for_point(self, lat, lng):
        return self._get("/districts/for-point", {"lat": lat, "lng": lng})

    def close(self) -> None:
        self._client.close()


@dataclass
class CachedSchoolGradeSource:
    """Memoizes lookups on a ~0.7 mile grid."""

    inner: Any
    ttl: float = 1800
    clock: Callable[[], float] = time.monotonic
    _entries: Dict[Tuple, Tuple[float, Any]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    @staticmethod
    def _cell(lat: float, lng: float) -> Tuple[float, float]:
        return round(round(lat / GRID_DEGREES) * GRID_DEGREES, 4), round(round(lng / GRID_DEGREES) * GRID_DEGREES, 4)

    def _memo(self, key: Tuple, fetch: Callable[[], Any]) -> Any:
        now = self.clock()
        with self._lock:
            hit = self._entries.get(key)
            if hit and hit[0] > now:
                return hit[1]
        value = fetch()
        with self._lock:
            self._entries[key] = (now + self.ttl, value)
        return value

    def best_grade_near(self, lat, lng, radius_miles, level=None):
        key = ("best", self._cell(lat, lng), float(radius_miles), level)
        return self._memo(key, lambda: self.inner.best_grade_near(lat, lng, radius_miles, level))

    def district_grade_for(self, city):
        key = ("district_grade", str(city or "").strip().lower())
        return self._memo(key, lambda: self.inner.district_grade_for(city))

    def district_for_point(self, lat, lng):
        key = ("district", self._cell(lat, lng))
        return self._memo(key, lambda: self.inner.district_for_point(lat, lng))


def passes_school_criteria(listing: Any, criteria: SchoolCriteria, source: SchoolGradeSource) -> bool:
    lat, lng = listing.latitude, listing.longitude
    if not lat or not lng:
        return False

    if criteria.district_grade:
        info = source.district_grade_for(listing.city or "")
        if not info or not grade_meets_minimum(info.get("grade"), criteria.district_grade):
            return False

    for level, min_grade in criteria.near:
        grade = source.best_grade_near(lat, lng, NEAR_SCHOOL_RADIUS_MILES, level)
        if not grade_meets_minimum(grade, min_grade):
            return False

    if criteria.district_id is not None:
        district = source.district_for_point(lat, lng)
        if not district:
            return False
        try:
            if int(district.get("id")) != criteria.district_id:
                return False
        except (TypeError, ValueError):
            _log.warning("district lookup returned a non-numeric id")
            return False

    return True
