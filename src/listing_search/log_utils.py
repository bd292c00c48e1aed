from __future__ import annotations

import json
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Mapping, Optional


_JSON_FORMAT = "%(message)s"
_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: Optional[str] = None, json_lines: bool = False) -> None:
    """Root handler setup for the CLI.

    Library code never calls this; it only logs through ``lse.*`` loggers.
    """

    level_name = str(level or os.getenv("LOG_LEVEL", "INFO") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=_JSON_FORMAT if json_lines else _TEXT_FORMAT,
        force=True,
    )


def new_search_id() -> str:
    return uuid.uuid4().hex[:12]


def log_event(
    logger: logging.Logger,
    event: Mapping[str, Any],
    *,
    search_id: Optional[str] = None,
    level: int = logging.INFO,
) -> None:
    """Emit one JSON object per line through ``logger``."""

    if not logger.isEnabledFor(level):
        return
    event_out = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "search_id": search_id,
        **(event or {}),
    }
    logger.log(level, json.dumps(event_out, ensure_ascii=False, default=str))
