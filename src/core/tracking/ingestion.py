# src/core/tracking/ingestion.py
"""
Приём GPS-фиксов от автобусов.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from src.common.constants import bus_topic, route_topic, TOPIC_ALL
from src.common.logger import log_debug, log_error
from src.core.fleet.models import ensure_utc
from src.core.fleet.repository import FleetRepository
from src.core.tracking.errors import (
    AmbiguousTripError,
    NoActiveTripError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from src.core.tracking.models import BroadcastPayload, LocationFix, utc_now
from src.core.tracking.resolver import TripResolver
from src.core.tracking.store import LocationStore


class TopicPublisher(Protocol):
    async def publish(self, topic: str, payload: dict[str, Any]) -> int: ...


def _to_float(value: Any) -> Optional[float]:
    """Число или числовая строка -> float. bool, NaN и бесконечность не числа."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def parse_timestamp(value: Any) -> datetime:
    """
    Время фикса: datetime, ISO 8601 или число миллисекунд эпохи (Date.now() передатчика).
    Без зоны считается UTC.
    """
    if value is None or value == "":
        return utc_now()
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000, timezone.utc)
        except (OverflowError, OSError, ValueError):
            pass
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return ensure_utc(datetime.fromisoformat(text))
        except ValueError:
            pass
    raise ValidationError(f"Invalid timestamp: {value!r}")


class LocationIngestService:
    """
    Сервис приёма GPS-фиксов.

    Порядок обработки:
    1. Валидация входных данных
    2. Поиск автобуса (по ID, затем по номеру)
    3. Поиск активного рейса
    4. Запись фикса (до любой рассылки)
    5. Сборка сообщения с контекстом автобуса, рейса и маршрута
    6. Рассылка в bus:{номер}, all и route:{id}
    """

    def __init__(
        self,
        fleet: FleetRepository,
        store: LocationStore,
        resolver: TripResolver,
        publisher: TopicPublisher,
    ) -> None:
        self._fleet = fleet
        self._store = store
        self._resolver = resolver
        self._publisher = publisher

        # Статистика
        self._total_updates = 0
        self._total_deliveries = 0
        self._publish_errors = 0
        self._rejected: dict[str, int] = {}
        self._updates_per_bus: dict[str, int] = {}
        self._last_update_at: Optional[datetime] = None

    async def ingest(
        self,
        bus_id: Any,
        latitude: Any,
        longitude: Any,
        speed: Any = None,
        heading: Any = None,
        timestamp: Any = None,
    ) -> BroadcastPayload:
        """
        Принимает фикс, сохраняет и рассылает подписчикам.

        Returns:
            Сообщение, ушедшее подписчикам

        Raises:
            ValidationError, NotFoundError, NoActiveTripError,
            AmbiguousTripError, StoreError
        """
        try:
            return await self._ingest(bus_id, latitude, longitude, speed, heading, timestamp)
        except ValidationError:
            self._reject("validation")
            raise
        except NotFoundError:
            self._reject("unknown_bus")
            raise
        except NoActiveTripError:
            self._reject("no_active_trip")
            raise
        except AmbiguousTripError:
            self._reject("ambiguous_trip")
            raise
        except StoreError:
            self._reject("store_error")
            raise

    async def _ingest(
        self,
        bus_id: Any,
        latitude: Any,
        longitude: Any,
        speed: Any,
        heading: Any,
        timestamp: Any,
    ) -> BroadcastPayload:
        bus_ref, lat, lon = self._validate_required(bus_id, latitude, longitude)
        speed_value = self._validate_optional("speed", speed, low=0.0)
        heading_value = self._validate_optional("heading", heading, low=0.0, high=360.0)
        recorded_at = parse_timestamp(timestamp)

        bus = await self._fleet.find_bus(bus_ref)
        if bus is None:
            raise NotFoundError(f"Bus {bus_ref} not found")

        trip = await self._resolver.find_active_trip(bus.id)
        if trip is None:
            raise NoActiveTripError(bus_ref)

        fix = LocationFix(
            bus_id=bus.id,
            trip_id=trip.id,
            latitude=lat,
            longitude=lon,
            speed=speed_value,
            heading=heading_value,
            timestamp=recorded_at,
        )
        await self._store.append(fix)

        route = await self._fleet.get_route(trip.route_id)
        payload = BroadcastPayload.build(bus, fix, trip, route)

        topics = [bus_topic(bus.bus_number), TOPIC_ALL]
        if route is not None:
            topics.append(route_topic(route.id))
        await self._broadcast(topics, payload)

        self._total_updates += 1
        self._updates_per_bus[bus.bus_number] = self._updates_per_bus.get(bus.bus_number, 0) + 1
        self._last_update_at = fix.timestamp

        await log_debug(
            f"Фикс {bus.bus_number} ({lat:.5f}, {lon:.5f}) рейс {trip.trip_number}",
            extra={"bus_id": bus.id, "trip_id": trip.id, "topics": topics},
        )
        return payload

    async def _broadcast(self, topics: list[str], payload: BroadcastPayload) -> None:
        """Ошибки рассылки логируются и не отменяют уже записанный фикс."""
        message = payload.to_message()
        for topic in topics:
            try:
                self._total_deliveries += await self._publisher.publish(topic, message)
            except Exception as e:
                self._publish_errors += 1
                await log_error(f"Ошибка рассылки в {topic}: {e}", exc_info=True)

    def _validate_required(
        self,
        bus_id: Any,
        latitude: Any,
        longitude: Any,
    ) -> tuple[str, float, float]:
        missing = [
            name for name, value in (("busId", bus_id), ("latitude", latitude), ("longitude", longitude))
            if value is None or (isinstance(value, str) and not value.strip())
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        if not isinstance(bus_id, (str, int)) or isinstance(bus_id, bool):
            raise ValidationError("busId must be a string")

        lat = _to_float(latitude)
        lon = _to_float(longitude)
        if lat is None or lon is None:
            raise ValidationError("latitude and longitude must be numbers")
        if not self._validate_coordinates(lat, lon):
            raise ValidationError(
                f"Coordinates out of range: latitude {lat} must be in [-90, 90], "
                f"longitude {lon} must be in [-180, 180]"
            )
        return str(bus_id).strip(), lat, lon

    def _validate_optional(
        self,
        name: str,
        value: Any,
        low: float,
        high: Optional[float] = None,
    ) -> float:
        """Отсутствующее или нечисловое значение становится 0, числовое проверяется на диапазон."""
        number = _to_float(value)
        if number is None:
            return 0.0
        if number < low or (high is not None and number > high):
            bounds = f"[{low:g}, {high:g}]" if high is not None else f">= {low:g}"
            raise ValidationError(f"{name} {number:g} out of range, expected {bounds}")
        return number

    def _validate_coordinates(self, lat: float, lon: float) -> bool:
        """Валидация координат."""
        return -90 <= lat <= 90 and -180 <= lon <= 180

    def _reject(self, reason: str) -> None:
        self._rejected[reason] = self._rejected.get(reason, 0) + 1

    def get_stats(self) -> dict[str, Any]:
        """Получить статистику."""
        return {
            "total_updates": self._total_updates,
            "total_deliveries": self._total_deliveries,
            "publish_errors": self._publish_errors,
            "rejected": dict(self._rejected),
            "unique_buses": len(self._updates_per_bus),
            "top_buses": sorted(
                self._updates_per_bus.items(),
                key=lambda x: x[1],
                reverse=True,
            )[:10],
            "last_update_at": self._last_update_at.isoformat() if self._last_update_at else None,
            "resolver": self._resolver.get_stats(),
        }
