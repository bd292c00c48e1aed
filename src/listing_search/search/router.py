from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Mapping, Optional

from ..models import OPTIMIZED_STATUSES, QueryPlan
from .filters import OPTIMIZED_UNSUPPORTED, active_filters, filter_value, has_lookup


_log = logging.getLogger("lse.router")

_STATS_LOCK = threading.Lock()
_STATS: Dict[str, int] = {"lookup": 0, "archive_status": 0, "unsupported_filter": 0, "optimized": 0, "optimized_unavailable": 0}


def _requested_statuses(filters: Mapping[str, Any]) -> list:
    raw = filter_value(filters.get("status"))
    values = raw if isinstance(raw, (list, tuple, set)) else [raw]
    # A status value the compiler rejects leaves the default live statuses in place.
    if any(isinstance(v, (dict, list, tuple, set)) for v in values):
        return []
    return [str(v).strip() for v in values if v is not None and str(v).strip()]


def _bump(reason: str) -> None:
    with _STATS_LOCK:
        _STATS[reason] = _STATS.get(reason, 0) + 1


def select_plan(filters: Optional[Mapping[str, Any]], *, optimized_available: bool = True) -> QueryPlan:
    """Pick the store and partitions that can answer ``filters``.

    Rules, first match wins:
      1. MLS number / address lookups read both partitions of the Normalized
         Store, whatever the status filter says.
      2. Any status outside the live set needs the archive partition.
      3. Any key the summary table lacks forces the Normalized Store.
      4. Otherwise the Optimized Store answers alone.
    """

    active = active_filters(dict(filters or {}))

    if has_lookup(active):
        plan = QueryPlan(use_optimized_store=False, partitions=frozenset({"live", "archive"}), reason="lookup")
    else:
        statuses = _requested_statuses(active)
        off_live = [s for s in statuses if s not in OPTIMIZED_STATUSES]
        if off_live:
            partitions = {"archive"}
            if any(s in OPTIMIZED_STATUSES for s in statuses):
                partitions.add("live")
            plan = QueryPlan(use_optimized_store=False, partitions=frozenset(partitions), reason="archive_status")
        elif any(key in OPTIMIZED_UNSUPPORTED for key in active):
            plan = QueryPlan(
                use_optimized_store=False, partitions=frozenset({"live", "archive"}), reason="unsupported_filter"
            )
        elif not optimized_available:
            plan = QueryPlan(
                use_optimized_store=False, partitions=frozenset({"live", "archive"}), reason="optimized_unavailable"
            )
        else:
            plan = QueryPlan(use_optimized_store=True, partitions=frozenset({"live"}), reason="optimized")

    _bump(plan.reason)
    _log.debug(
        "plan reason=%s optimized=%s partitions=%s keys=%s",
        plan.reason,
        plan.use_optimized_store,
        ",".join(plan.ordered_partitions()),
        ",".join(sorted(active)),
    )
    return plan


def router_stats() -> Dict[str, int]:
    with _STATS_LOCK:
        return dict(_STATS)


def reset_router_stats() -> None:
    """Test helper."""

    with _STATS_LOCK:
        for key in _STATS:
            _STATS[key] = 0
