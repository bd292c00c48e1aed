from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    v = str(raw).strip().lower()
    if v in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return int(float(raw))
    except ValueError:
        return default


@dataclass(frozen=True)
class FeatureFlags:
    """Central feature flag registry.

    Defaults MUST keep every search path enabled.
    """

    optimized_store: bool
    school_enrichment: bool
    event_enrichment: bool

    @classmethod
    def from_env(cls) -> "FeatureFlags":
        return cls(
            optimized_store=_env_bool("LSE_FEATURE_OPTIMIZED_STORE", True),
            school_enrichment=_env_bool("LSE_FEATURE_SCHOOL_ENRICHMENT", True),
            event_enrichment=_env_bool("LSE_FEATURE_EVENT_ENRICHMENT", True),
        )


@lru_cache(maxsize=1)
def get_flags() -> FeatureFlags:
    return FeatureFlags.from_env()


def reset_flags_cache() -> None:
    """Test helper to force env re-read."""

    get_flags.cache_clear()
