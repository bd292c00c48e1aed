from __future__ import annotations

import logging
import os
from typing import Optional

from fastapi import FastAPI

from listing_search.api.routes.search import router as search_router
from listing_search.feature_flags import get_flags
from listing_search.search.engine import SearchEngine
from listing_search.search.router import router_stats
from listing_search.storage.db import connect, get_db_path
from listing_search.storage.schema import ensure_schema


def health():
    return {"status": "ok"}


def create_app(engine: Optional[SearchEngine] = None) -> FastAPI:
    """Build the HTTP app. Without ``engine`` one is opened on startup."""

    app = FastAPI(title="listing_search")
    app.state.engine = engine
    app.include_router(search_router, prefix="/api")

    @app.get("/health")
    def health_route():
        return health()

    @app.get("/api/search/stats")
    def stats_route():
        current = app.state.engine
        return {
            "router": router_stats(),
            "cache": current.cache.stats() if current is not None else None,
        }

    @app.on_event("startup")
    def _open_engine():
        logger = logging.getLogger("lse.startup")
        if app.state.engine is not None:
            return
        path = get_db_path()
        flags = get_flags()
        logger.warning(
            "startup env: LISTINGS_SQLITE_PATH=%s CACHE=%s optimized_store=%s school_enrichment=%s",
            path,
            os.getenv("CACHE", "1"),
            flags.optimized_store,
            flags.school_enrichment,
        )
        conn = connect(path)
        ensure_schema(conn)
        app.state.engine = SearchEngine(conn, flags=flags)

    @app.on_event("shutdown")
    def _close_engine():
        if engine is None and app.state.engine is not None:
            app.state.engine.close()
            app.state.engine = None

    return app


app = create_app()
