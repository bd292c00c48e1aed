from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from listing_search.api.schemas import (
    CountResponse,
    FilterOptionsBody,
    MapSearchBody,
    MapSearchResponse,
    Suggestion,
)
from listing_search.errors import StorageUnavailableError
from listing_search.search.engine import MapSearchRequest, SearchEngine


router = APIRouter(tags=["search"])


def get_engine(request: Request) -> SearchEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="search engine not initialised")
    return engine


def _unavailable(exc: StorageUnavailableError) -> HTTPException:
    return HTTPException(status_code=503, detail=str(exc))


@router.post("/search/map")
def search_map(body: MapSearchBody, engine: SearchEngine = Depends(get_engine)) -> Any:
    req = MapSearchRequest(
        filters=dict(body.filters or {}),
        bounds=body.bounds.model_dump() if body.bounds else None,
        polygons=body.polygons,
        count_only=body.count_only,
        force_fresh=body.force_fresh,
        limit=body.limit,
        offset=body.offset,
        zoom=body.zoom,
        initial_load=body.initial_load,
    )
    try:
        result = engine.search_map(req)
    except StorageUnavailableError as exc:
        raise _unavailable(exc)
    if isinstance(result, int):
        return CountResponse(total=result)
    return MapSearchResponse(**result.to_dict())


@router.post("/search/options")
def filter_options(body: FilterOptionsBody, engine: SearchEngine = Depends(get_engine)) -> dict:
    try:
        return engine.filter_options(
            body.filters,
            bounds=body.bounds.model_dump() if body.bounds else None,
            force_fresh=body.force_fresh,
        )
    except StorageUnavailableError as exc:
        raise _unavailable(exc)


@router.get("/search/autocomplete", response_model=list[Suggestion])
def autocomplete(term: str = Query("", max_length=200), engine: SearchEngine = Depends(get_engine)) -> list:
    try:
        return engine.autocomplete(term)
    except StorageUnavailableError as exc:
        raise _unavailable(exc)


@router.get("/search/agents", response_model=list[Suggestion])
def agent_suggestions(term: str = Query("", max_length=200), engine: SearchEngine = Depends(get_engine)) -> list:
    try:
        return engine.agent_suggestions(term)
    except StorageUnavailableError as exc:
        raise _unavailable(exc)


@router.get("/search/subtypes", response_model=list[str])
def property_sub_types(engine: SearchEngine = Depends(get_engine)) -> list:
    try:
        return engine.property_sub_types()
    except StorageUnavailableError as exc:
        raise _unavailable(exc)
