# src/core/fleet/models.py
"""
Модели автобусного парка: автобусы, маршруты, рейсы.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from src.common.constants import (
    BusOperator,
    BusStatus,
    ServiceType,
    TripDirection,
    TripStatus,
)


def ensure_utc(value: datetime) -> datetime:
    """Наивное время считается UTC, aware приводится к UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Capacity(BaseModel):
    """Вместимость автобуса."""

    seated: int = Field(0, ge=0, description="Сидячих мест")
    standing: int = Field(0, ge=0, description="Стоячих мест")

    @property
    def total(self) -> int:
        return self.seated + self.standing


class Bus(BaseModel):
    """Модель автобуса."""

    id: str = Field(..., description="ID автобуса")
    bus_number: str = Field(..., min_length=1, description="Бортовой номер (NB-1001)")
    registration_number: str = Field(..., min_length=1, description="Госномер")
    operator: BusOperator = Field(..., description="Оператор")
    service_type: ServiceType = Field(..., description="Класс обслуживания")
    capacity: Capacity = Field(default_factory=Capacity)
    status: BusStatus = Field(BusStatus.ACTIVE, description="Статус автобуса")

    class Config:
        from_attributes = True

    @field_validator("bus_number", "registration_number", mode="before")
    @classmethod
    def normalize_number(cls, v: str) -> str:
        """Номера хранятся в верхнем регистре без пробелов по краям."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @property
    def is_active(self) -> bool:
        return self.status == BusStatus.ACTIVE


class Waypoint(BaseModel):
    """Остановка маршрута."""

    name: str
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    stop_duration: int = Field(120, ge=0, description="Стоянка, секунды")
    sequence_number: int = Field(..., ge=0)


class Route(BaseModel):
    """Модель маршрута."""

    id: str = Field(..., description="ID маршрута")
    route_number: str = Field(..., min_length=1, description="Номер маршрута")
    name: str
    origin: str
    destination: str
    distance: float = Field(0.0, ge=0, description="Длина, км")
    estimated_duration: int = Field(0, ge=0, description="Время в пути, минуты")
    waypoints: list[Waypoint] = Field(default_factory=list)

    class Config:
        from_attributes = True

    @field_validator("waypoints")
    @classmethod
    def order_waypoints(cls, v: list[Waypoint]) -> list[Waypoint]:
        """Остановки всегда упорядочены по sequence_number."""
        return sorted(v, key=lambda w: w.sequence_number)


class Trip(BaseModel):
    """Модель рейса."""

    id: str = Field(..., description="ID рейса")
    trip_number: str = Field(..., min_length=1, description="Номер рейса")
    bus_id: str
    route_id: str
    direction: TripDirection = TripDirection.OUTBOUND
    departure_time: datetime
    arrival_time: Optional[datetime] = None
    status: TripStatus = TripStatus.SCHEDULED

    class Config:
        from_attributes = True

    @field_validator("departure_time", "arrival_time")
    @classmethod
    def to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    @property
    def is_in_progress(self) -> bool:
        return self.status == TripStatus.IN_PROGRESS
