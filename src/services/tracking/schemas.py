# src/services/tracking/schemas.py
"""
Схемы запросов и ответов Tracking Service.
"""

from __future__ import annotations

from datetime import timezone
from email.utils import format_datetime
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from src.core.fleet.models import Bus, Trip
from src.core.tracking.models import BusLocationView, BusSummary, LocationFix


# === REQUESTS ===

class LocationCreateRequest(BaseModel):
    """
    GPS-фикс от передатчика.
    Поля не типизируются строго: проверка и сообщения об ошибках
    выполняются сервисом приёма.
    """
    model_config = ConfigDict(populate_by_name=True)

    bus_id: Any = Field(default=None, validation_alias=AliasChoices("busId", "bus_id"))
    latitude: Any = None
    longitude: Any = None
    speed: Any = None
    heading: Any = None
    timestamp: Any = None


class TripStatusUpdateRequest(BaseModel):
    status: str


# === RESPONSES ===

def success(data: dict[str, Any], results: Optional[int] = None) -> dict[str, Any]:
    """Конверт успешного ответа: {"status": "success", ["results": n], "data": {...}}."""
    body: dict[str, Any] = {"status": "success"}
    if results is not None:
        body["results"] = results
    body["data"] = data
    return body


def fix_to_dict(fix: LocationFix) -> dict[str, Any]:
    return fix.model_dump(mode="json")


def bus_to_dict(bus: Bus) -> dict[str, Any]:
    return BusSummary.from_bus(bus).model_dump(mode="json")


def trip_to_dict(trip: Trip) -> dict[str, Any]:
    return trip.model_dump(mode="json")


# === CACHING ===

def location_cache_headers(view: BusLocationView) -> dict[str, str]:
    """ETag и Last-Modified последней позиции: меняются вместе с фиксом."""
    timestamp = view.location.timestamp.astimezone(timezone.utc)
    millis = int(timestamp.timestamp() * 1000)
    return {
        "ETag": f'"{view.fix_id}-{millis}"',
        "Last-Modified": format_datetime(timestamp, usegmt=True),
    }


def etag_matches(if_none_match: Optional[str], etag: str) -> bool:
    """Проверка If-None-Match (список через запятую, слабые теги, "*")."""
    if not if_none_match:
        return False
    candidates = {tag.strip() for tag in if_none_match.split(",")}
    return "*" in candidates or etag in candidates or f"W/{etag}" in candidates
