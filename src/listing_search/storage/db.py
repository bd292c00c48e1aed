from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path

from ..errors import StorageUnavailableError
from ..search.spatial import register_geometry_functions


DEFAULT_DB_PATH = "./listings.sqlite"

_log = logging.getLogger("lse.storage")


def get_db_path() -> str:
    path = (os.getenv("LISTINGS_SQLITE_PATH") or "").strip()
    if path:
        return path
    return DEFAULT_DB_PATH


def connect(path: str | None = None) -> sqlite3.Connection:
    db_path = Path(path or get_db_path())
    try:
        if str(db_path) != ":memory:":
            db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_path), check_same_thread=False)
    except (OSError, sqlite3.Error) as exc:
        _log.error("cannot open listings database path=%s", db_path)
        raise StorageUnavailableError(f"cannot open listings database: {exc}") from exc
    conn.row_factory = sqlite3.Row
    register_geometry_functions(conn)
    return conn


@contextmanager
def open_conn(path: str | None = None):
    conn = connect(path)
    try:
        yield conn
    finally:
        conn.close()
