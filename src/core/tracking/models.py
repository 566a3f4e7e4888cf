# src/core/tracking/models.py
"""
Модели трекинга: GPS-фикс и сообщения, которые уходят подписчикам.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from src.common.constants import BusOperator, ServiceType, TripDirection, TripStatus
from src.core.fleet.models import Bus, Route, Trip, ensure_utc


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LocationFix(BaseModel):
    """Один GPS-фикс автобуса. После записи не изменяется."""

    id: str = Field(default_factory=lambda: str(uuid4()), description="UUID фикса")
    bus_id: str
    trip_id: Optional[str] = None
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    speed: float = Field(0.0, ge=0, description="Скорость, км/ч")
    heading: float = Field(0.0, ge=0, le=360, description="Курс, градусы")
    timestamp: datetime = Field(default_factory=utc_now)

    class Config:
        frozen = True
        from_attributes = True

    @field_validator("timestamp")
    @classmethod
    def to_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


# =============================================================================
# СООБЩЕНИЕ ДЛЯ ПОДПИСЧИКОВ
# =============================================================================

class BusSummary(BaseModel):
    id: str
    bus_number: str
    registration_number: str
    service_type: ServiceType
    operator: BusOperator

    @classmethod
    def from_bus(cls, bus: Bus) -> "BusSummary":
        return cls(
            id=bus.id,
            bus_number=bus.bus_number,
            registration_number=bus.registration_number,
            service_type=bus.service_type,
            operator=bus.operator,
        )


class LocationSnapshot(BaseModel):
    latitude: float
    longitude: float
    speed: float
    heading: float
    timestamp: datetime

    @classmethod
    def from_fix(cls, fix: LocationFix) -> "LocationSnapshot":
        return cls(
            latitude=fix.latitude,
            longitude=fix.longitude,
            speed=fix.speed,
            heading=fix.heading,
            timestamp=fix.timestamp,
        )


class RouteSummary(BaseModel):
    id: str
    route_number: str
    name: str
    origin: str
    destination: str

    @classmethod
    def from_route(cls, route: Route) -> "RouteSummary":
        return cls(
            id=route.id,
            route_number=route.route_number,
            name=route.name,
            origin=route.origin,
            destination=route.destination,
        )


class TripSummary(BaseModel):
    id: str
    trip_number: str
    direction: TripDirection
    status: TripStatus
    route: Optional[RouteSummary] = None

    @classmethod
    def from_trip(cls, trip: Trip, route: Optional[Route] = None) -> "TripSummary":
        return cls(
            id=trip.id,
            trip_number=trip.trip_number,
            direction=trip.direction,
            status=trip.status,
            route=RouteSummary.from_route(route) if route is not None else None,
        )


class BroadcastPayload(BaseModel):
    """
    Сообщение о новой позиции автобуса.
    Одна и та же форма отдаётся подписчикам, в ответе на POST
    и в выборке активных автобусов.
    """

    bus: BusSummary
    location: LocationSnapshot
    trip: TripSummary

    @classmethod
    def build(
        cls,
        bus: Bus,
        fix: LocationFix,
        trip: Trip,
        route: Optional[Route] = None,
    ) -> "BroadcastPayload":
        return cls(
            bus=BusSummary.from_bus(bus),
            location=LocationSnapshot.from_fix(fix),
            trip=TripSummary.from_trip(trip, route),
        )

    def to_message(self) -> dict:
        """JSON-совместимый словарь (время в ISO 8601)."""
        return self.model_dump(mode="json")


class NearbyBus(BaseModel):
    """Автобус рядом с точкой. Рейс берётся из последнего фикса и может отсутствовать."""

    bus: BusSummary
    location: LocationSnapshot
    trip: Optional[TripSummary] = None
    distance_km: float = Field(..., ge=0)


class BusLocationView(BaseModel):
    """Последняя позиция автобуса и его текущий рейс."""

    bus: BusSummary
    location: LocationSnapshot
    trip: Optional[TripSummary] = None
    fix_id: str = Field(default="", exclude=True, description="ID фикса для ETag")
