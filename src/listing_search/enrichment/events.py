from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol


_log = logging.getLogger("lse.enrichment")

# SQLite stores expiry as naive UTC text; keep comparisons textual.
EXPIRES_AT_FORMAT = "%Y-%m-%d %H:%M:%S"


class EventSource(Protocol):
    def active_events_for(self, listing_ids: Iterable[int]) -> Dict[int, List[Dict[str, Any]]]:
        ...


class NullEventSource:
    def active_events_for(self, listing_ids):
        return {}


class SQLiteEventSource:
    """Reads open-house windows from the ``open_houses`` table.

    Rows whose ``expires_at`` has passed are ignored. ``open_house_data`` is
    a JSON object, or a JSON list of objects, per row.
    """

    def __init__(self, conn: sqlite3.Connection, *, now: Optional[Callable[[], datetime]] = None):
        self.conn = conn
        self._now = now or (lambda: datetime.now(timezone.utc))

    def active_events_for(self, listing_ids: Iterable[int]) -> Dict[int, List[Dict[str, Any]]]:
        ids = sorted({int(i) for i in listing_ids})
        if not ids:
            return {}
        now_sql = self._now().strftime(EXPIRES_AT_FORMAT)
        placeholders = ",".join(["?"] * len(ids))
        rows = self.conn.execute(
            f"""
            SELECT listing_id, open_house_data
            FROM open_houses
            WHERE listing_id IN ({placeholders}) AND expires_at > ?
            ORDER BY listing_id, expires_at, id
            """,
            [*ids, now_sql],
        ).fetchall()

        out: Dict[int, List[Dict[str, Any]]] = {}
        for row in rows:
            listing_id = int(row["listing_id"])
            try:
                data = json.loads(row["open_house_data"] or "null")
            except json.JSONDecodeError:
                _log.warning("undecodable open_house_data listing_id=%s", listing_id)
                continue
            events = data if isinstance(data, list) else [data]
            out.setdefault(listing_id, []).extend(e for e in events if isinstance(e, dict))
        return out
