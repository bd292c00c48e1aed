from __future__ import annotations

import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from .feature_flags import env_int


# TTL classes, seconds.
TTL_MAP_INITIAL = 300
TTL_MAP_PAN = 180
TTL_MAP_OPTIMIZED = 1800
TTL_FILTER_OPTIONS = 600
TTL_REFERENCE = 3600
TTL_SCHOOL_GRID = 1800

_log = logging.getLogger("lse.cache")


def _cache_enabled() -> bool:
    return os.environ.get("CACHE", "1") != "0"


def canonical_json(value: Any) -> str:
    """Stable serialization: sorted keys, no whitespace."""

    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def _round_bounds(bounds: Optional[Mapping[str, float]]) -> Optional[Tuple[float, float, float, float]]:
    if not bounds:
        return None
    return (
        round(float(bounds["north"]), 6),
        round(float(bounds["south"]), 6),
        round(float(bounds["east"]), 6),
        round(float(bounds["west"]), 6),
    )


@dataclass(frozen=True)
class CacheKey:
    kind: str
    bounds: Optional[Tuple[float, float, float, float]] = None
    filters: str = "{}"
    offset: int = 0
    limit: int = 0
    zoom: Optional[int] = None
    modes: Tuple[str, ...] = ()

    @classmethod
    def build(
        cls,
        kind: str,
        *,
        bounds: Optional[Mapping[str, float]] = None,
        filters: Optional[Mapping[str, Any]] = None,
        offset: int = 0,
        limit: int = 0,
        zoom: Optional[int] = None,
        modes: Mapping[str, bool] | None = None,
    ) -> "CacheKey":
        active_modes = tuple(sorted(k for k, v in (modes or {}).items() if v))
        return cls(
            kind=kind,
            bounds=_round_bounds(bounds),
            filters=canonical_json(dict(filters or {})),
            offset=int(offset),
            limit=int(limit),
            zoom=zoom,
            modes=active_modes,
        )


class QueryCache:
    """TTL cache keyed on :class:`CacheKey`.

    Entries are replaced wholesale and never mutated after insertion. There
    is no write-side invalidation; staleness is bounded by each entry's TTL.
    """

    def __init__(
        self,
        *,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        enabled: Optional[bool] = None,
    ):
        self.max_entries = max_entries if max_entries is not None else env_int("CACHE_MAX_ENTRIES", 512)
        self._clock = clock
        self._enabled = enabled
        self._entries: Dict[CacheKey, Tuple[float, Any]] = {}
        self._stats = {"hits": 0, "misses": 0, "evictions": 0}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        if self._enabled is not None:
            return self._enabled
        return _cache_enabled()

    def get(self, key: CacheKey) -> Any:
        if not self.enabled:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if not entry:
                self._stats["misses"] += 1
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                self._entries.pop(key, None)
                self._stats["misses"] += 1
                return None
            self._stats["hits"] += 1
            return value

    def set(self, key: CacheKey, value: Any, ttl: float) -> None:
        if not self.enabled or ttl <= 0 or self.max_entries <= 0:
            return
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                soonest = min(self._entries.items(), key=lambda item: item[1][0])[0]
                self._entries.pop(soonest, None)
                self._stats["evictions"] += 1
                _log.debug("evicted cache entry kind=%s", soonest.kind)
            self._entries[key] = (self._clock() + ttl, value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._stats = {"hits": 0, "misses": 0, "evictions": 0}

    def stats(self) -> dict:
        with self._lock:
            return {**self._stats, "entries": len(self._entries)}
