# src/services/tracking/routes.py
"""
HTTP API Tracking Service.

- POST  /api/v1/locations: приём GPS-фикса
- GET   /api/v1/buses/nearby: автобусы рядом с точкой
- GET   /api/v1/buses/{bus_ref}/location: последняя позиция
- GET   /api/v1/buses/{bus_ref}/location/history: история позиций
- GET   /api/v1/locations/active: позиции автобусов на линии
- PATCH /api/v1/trips/{trip_id}/status: смена статуса рейса
"""

from __future__ import annotations

import secrets
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Query, Response, status

from src.config import settings
from src.core.fleet.service import TripStatusService
from src.core.tracking.errors import UnauthorizedError
from src.core.tracking.ingestion import LocationIngestService
from src.core.tracking.queries import LocationQueryService
from src.services.tracking.dependencies import (
    get_ingest_service,
    get_query_service,
    get_trip_status_service,
)
from src.services.tracking.schemas import (
    LocationCreateRequest,
    TripStatusUpdateRequest,
    bus_to_dict,
    etag_matches,
    fix_to_dict,
    location_cache_headers,
    success,
    trip_to_dict,
)
from src.shared.models.common import ErrorResponse

router = APIRouter(prefix="/api/v1")

_ERRORS = {
    400: {"model": ErrorResponse, "description": "Некорректный запрос"},
    404: {"model": ErrorResponse, "description": "Не найдено"},
}


async def require_ingest_token(authorization: Optional[str] = Header(default=None)) -> None:
    """
    Проверяет Bearer-токен передатчика.
    Пустой INGEST_API_TOKEN отключает проверку.
    """
    expected = settings.auth.INGEST_API_TOKEN
    if not expected:
        return

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise UnauthorizedError("Not authorized to access this route")
    if not secrets.compare_digest(token.strip(), expected):
        raise UnauthorizedError("Not authorized. Invalid token")


# =============================================================================
# ПРИЁМ
# =============================================================================

@router.post(
    "/locations",
    status_code=status.HTTP_201_CREATED,
    tags=["Locations"],
    dependencies=[Depends(require_ingest_token)],
    responses={**_ERRORS, 401: {"model": ErrorResponse, "description": "Нет доступа"}},
)
async def create_location(
    request: LocationCreateRequest,
    service: LocationIngestService = Depends(get_ingest_service),
) -> dict[str, Any]:
    """Приём GPS-фикса: запись и рассылка подписчикам."""
    payload = await service.ingest(
        bus_id=request.bus_id,
        latitude=request.latitude,
        longitude=request.longitude,
        speed=request.speed,
        heading=request.heading,
        timestamp=request.timestamp,
    )
    return success({"location": payload.to_message()})


# =============================================================================
# ВЫБОРКИ
# =============================================================================

@router.get("/buses/nearby", tags=["Buses"], responses=_ERRORS)
async def get_buses_nearby(
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    radius: Optional[float] = Query(default=None, gt=0, description="Радиус, метры"),
    service: LocationQueryService = Depends(get_query_service),
) -> dict[str, Any]:
    """Автобусы в радиусе от точки (по умолчанию 5000 м)."""
    buses = await service.nearby(latitude, longitude, radius)
    return success(
        {"buses": [item.model_dump(mode="json") for item in buses]},
        results=len(buses),
    )


@router.get(
    "/buses/{bus_ref}/location",
    tags=["Buses"],
    response_model=None,
    responses={**_ERRORS, 304: {"description": "Позиция не изменилась"}},
)
async def get_bus_location(
    bus_ref: str,
    response: Response,
    if_none_match: Optional[str] = Header(default=None),
    service: LocationQueryService = Depends(get_query_service),
) -> Any:
    """
    Последняя позиция автобуса по ID или бортовому номеру.
    ETag/Last-Modified привязаны к фиксу, совпавший If-None-Match даёт 304.
    """
    view = await service.latest_for_bus(bus_ref)
    headers = location_cache_headers(view)
    if etag_matches(if_none_match, headers["ETag"]):
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers=headers)

    response.headers.update(headers)
    return success({"location": view.model_dump(mode="json")})


@router.get("/buses/{bus_ref}/location/history", tags=["Buses"], responses=_ERRORS)
async def get_bus_location_history(
    bus_ref: str,
    start_time: Optional[datetime] = Query(default=None, alias="startTime"),
    end_time: Optional[datetime] = Query(default=None, alias="endTime"),
    limit: Optional[int] = Query(default=None, ge=1),
    service: LocationQueryService = Depends(get_query_service),
) -> dict[str, Any]:
    """История позиций автобуса от новых к старым."""
    bus, fixes = await service.history_for_bus(
        bus_ref,
        start_time=start_time,
        end_time=end_time,
        limit=limit or settings.tracking.HISTORY_DEFAULT_LIMIT,
    )
    return success(
        {"bus": bus_to_dict(bus), "locations": [fix_to_dict(fix) for fix in fixes]},
        results=len(fixes),
    )


@router.get("/locations/active", tags=["Locations"])
async def get_active_locations(
    window: Optional[int] = Query(default=None, gt=0, description="Окно свежести, секунды"),
    service: LocationQueryService = Depends(get_query_service),
) -> dict[str, Any]:
    """Последние позиции автобусов, находящихся на рейсе."""
    locations = await service.active_locations(window_seconds=window)
    return success(
        {"locations": [payload.to_message() for payload in locations]},
        results=len(locations),
    )


# =============================================================================
# РЕЙСЫ
# =============================================================================

@router.patch(
    "/trips/{trip_id}/status",
    tags=["Trips"],
    responses={**_ERRORS, 409: {"model": ErrorResponse, "description": "Конфликт статуса"}},
)
async def update_trip_status(
    trip_id: str,
    request: TripStatusUpdateRequest,
    service: TripStatusService = Depends(get_trip_status_service),
) -> dict[str, Any]:
    """Смена статуса рейса по машине состояний."""
    trip = await service.change_status(trip_id, request.status)
    return success({"trip": trip_to_dict(trip)})
