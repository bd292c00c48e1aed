from __future__ import annotations

import logging
import sqlite3
from typing import Dict, Iterable, List, Protocol

from .search.streets import escape_like


_log = logging.getLogger("lse.search")

SUGGESTION_LIMIT = 10


class AgentDirectory(Protocol):
    def resolve(self, ids: Iterable[str]) -> List[str]:
        ...

    def suggest(self, term: str, *, limit: int = SUGGESTION_LIMIT) -> List[Dict[str, str]]:
        ...


class SQLiteAgentDirectory:
    """Read-only view over the ``agents`` table."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def resolve(self, ids: Iterable[str]) -> List[str]:
        """Map user ids to MLS agent ids; ids with no mapping pass through unchanged."""

        wanted = [str(i).strip() for i in ids if str(i).strip()]
        if not wanted:
            return []
        placeholders = ",".join(["?"] * len(wanted))
        try:
            rows = self.conn.execute(
                f"SELECT user_id, agent_mls_id FROM agents WHERE user_id IN ({placeholders})",
                wanted,
            ).fetchall()
        except sqlite3.OperationalError as exc:
            _log.warning("agent directory unavailable, using ids as given: %s", exc)
            return wanted
        by_user = {str(r["user_id"]): str(r["agent_mls_id"]) for r in rows if r["agent_mls_id"]}
        out: List[str] = []
        for i in wanted:
            mls_id = by_user.get(i, i)
            if mls_id not in out:
                out.append(mls_id)
        return out

    def suggest(self, term: str, *, limit: int = SUGGESTION_LIMIT) -> List[Dict[str, str]]:
        term = (term or "").strip()
        if not term:
            return []
        like = f"%{escape_like(term)}%"
        rows = self.conn.execute(
            """
            SELECT agent_mls_id, agent_full_name
            FROM agents
            WHERE agent_full_name LIKE ? ESCAPE '\\' OR agent_mls_id LIKE ? ESCAPE '\\'
            ORDER BY agent_full_name
            LIMIT ?
            """,
            (like, like, int(limit)),
        ).fetchall()
        return [
            {
                "value": str(r["agent_mls_id"]),
                "label": f"{r['agent_full_name']} ({r['agent_mls_id']})",
                "type": "Agent",
            }
            for r in rows
        ]
