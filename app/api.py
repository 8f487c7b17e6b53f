"""HTTP route definitions for the service."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from app.schemas import ROW_MODELS, HealthOut, RawReadingOut, StatsOut
from datastore.collections import ConnectionState
from services.errors import ClientInputError, DependencyError
from services.router import (
    ResolutionRouter,
    build_default_router,
    parse_range,
    select_tier,
)

router = APIRouter()

_SERVER_ERROR = "Server error"


def get_router() -> ResolutionRouter:
    return build_default_router()


def _bad_request(exc: ClientInputError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _server_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=_SERVER_ERROR,
    )


@router.get(
    "/api/data",
    summary="Readings or summaries for a time range, from the tier that fits the span.",
)
async def get_data(
    start: Optional[str] = Query(None, description="ISO-8601 range start."),
    end: Optional[str] = Query(None, description="ISO-8601 range end."),
    resolver: ResolutionRouter = Depends(get_router),
) -> List[Dict[str, Any]]:
    try:
        start_at, end_at = parse_range(start, end)
    except ClientInputError as exc:
        raise _bad_request(exc) from exc

    try:
        rows = resolver.query(start_at, end_at)
    except DependencyError as exc:
        raise _server_error() from exc

    model = ROW_MODELS[select_tier(start_at, end_at)]
    return [model.model_validate(row).model_dump(mode="json") for row in rows]


@router.get(
    "/api/data/latest",
    response_model=Optional[RawReadingOut],
    summary="Most recent raw reading, or null when none is stored.",
)
async def get_latest(
    resolver: ResolutionRouter = Depends(get_router),
) -> Optional[RawReadingOut]:
    try:
        row = resolver.latest()
    except DependencyError as exc:
        raise _server_error() from exc
    if row is None:
        return None
    return RawReadingOut.model_validate(row)


@router.get(
    "/api/data/stats",
    summary="Summary statistics for a time range; empty object when nothing matched.",
)
async def get_stats(
    start: Optional[str] = Query(None, description="ISO-8601 range start."),
    end: Optional[str] = Query(None, description="ISO-8601 range end."),
    resolver: ResolutionRouter = Depends(get_router),
) -> Dict[str, Any]:
    try:
        start_at, end_at = parse_range(start, end)
    except ClientInputError as exc:
        raise _bad_request(exc) from exc

    try:
        stats = resolver.stats(start_at, end_at)
    except DependencyError as exc:
        raise _server_error() from exc

    if not stats:
        return {}
    return StatsOut.model_validate(stats).model_dump()


@router.get(
    "/health",
    response_model=HealthOut,
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck(
    request: Request,
    resolver: ResolutionRouter = Depends(get_router),
) -> HealthOut:
    mqtt = getattr(request.app.state, "mqtt", None)
    return HealthOut(
        status="ok",
        store=_state_label(resolver.store.state),
        mqtt=_state_label(mqtt) if mqtt is not None else "disabled",
    )


def _state_label(state: ConnectionState) -> str:
    return "up" if state.connected else "down"
