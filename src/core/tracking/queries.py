# src/core/tracking/queries.py
"""
Выборки для чтения: ближайшие автобусы, активные автобусы,
последняя позиция и история автобуса.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from src.common.constants import BusStatus, TripStatus
from src.core.fleet.models import Bus, Route, Trip
from src.core.fleet.repository import FleetRepository
from src.core.tracking.errors import NotFoundError, ValidationError
from src.core.tracking.geo import haversine_km, within_radius
from src.core.tracking.models import (
    BroadcastPayload,
    BusLocationView,
    BusSummary,
    LocationFix,
    LocationSnapshot,
    NearbyBus,
    TripSummary,
    utc_now,
)
from src.core.tracking.resolver import TripResolver
from src.core.tracking.store import DEFAULT_HISTORY_LIMIT, LocationStore


class LocationQueryService:
    """Выборки поверх хранилища фиксов и справочников парка."""

    def __init__(
        self,
        fleet: FleetRepository,
        store: LocationStore,
        resolver: TripResolver,
        active_window_seconds: int = 300,
        default_radius_m: float = 5000.0,
        max_history_limit: int = 500,
    ) -> None:
        self._fleet = fleet
        self._store = store
        self._resolver = resolver
        self._active_window = active_window_seconds
        self._default_radius_m = default_radius_m
        self._max_history_limit = max_history_limit

    async def nearby(
        self,
        latitude: float,
        longitude: float,
        radius_m: Optional[float] = None,
    ) -> list[NearbyBus]:
        """
        Автобусы со статусом active, последний фикс которых лежит
        в радиусе от точки. Давность фикса не ограничивается.
        Линейный проход по последним фиксам, результат по возрастанию расстояния.
        """
        radius = self._default_radius_m if radius_m is None else radius_m
        if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
            raise ValidationError("Please provide valid latitude and longitude")
        if radius <= 0:
            raise ValidationError("radius must be positive")

        buses = {bus.id: bus for bus in await self._fleet.list_buses(status=BusStatus.ACTIVE)}
        latest = await self._store.latest_per_bus(buses.keys())

        result: list[NearbyBus] = []
        for bus_id, fix in latest.items():
            if not within_radius(latitude, longitude, fix.latitude, fix.longitude, radius):
                continue
            distance = haversine_km(latitude, longitude, fix.latitude, fix.longitude)
            result.append(NearbyBus(
                bus=BusSummary.from_bus(buses[bus_id]),
                location=LocationSnapshot.from_fix(fix),
                trip=await self._trip_summary(fix.trip_id),
                distance_km=round(distance, 3),
            ))

        result.sort(key=lambda item: (item.distance_km, item.bus.bus_number))
        return result

    async def active_locations(
        self,
        window_seconds: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> list[BroadcastPayload]:
        """
        Последние позиции автобусов с рейсом in_progress за окно свежести.
        В выдачу попадают только фиксы, у которых находятся и автобус, и рейс.
        """
        window = self._active_window if window_seconds is None else window_seconds
        if window <= 0:
            raise ValidationError("window must be positive")
        since = (now or utc_now()) - timedelta(seconds=window)

        active_trips = await self._fleet.find_trips(status=TripStatus.IN_PROGRESS)
        if not active_trips:
            return []

        bus_ids = {trip.bus_id for trip in active_trips}
        latest = await self._store.latest_per_bus(bus_ids, since=since)
        buses = await self._fleet.get_buses(latest.keys())

        routes: dict[str, Optional[Route]] = {}
        result: list[BroadcastPayload] = []
        for bus_id, fix in latest.items():
            bus = buses.get(bus_id)
            trip = await self._fleet.get_trip(fix.trip_id) if fix.trip_id else None
            if bus is None or trip is None:
                continue
            if trip.route_id not in routes:
                routes[trip.route_id] = await self._fleet.get_route(trip.route_id)
            result.append(BroadcastPayload.build(bus, fix, trip, routes[trip.route_id]))

        result.sort(key=lambda p: p.location.timestamp, reverse=True)
        return result

    async def latest_for_bus(self, bus_ref: str) -> BusLocationView:
        """
        Последняя позиция автобуса (по ID или бортовому номеру) и его текущий рейс.
        """
        bus = await self._require_bus(bus_ref)
        fix = await self._store.latest_by_bus(bus.id)
        if fix is None:
            raise NotFoundError(f"No location data found for bus {bus.bus_number}")

        trip = await self._resolver.find_active_trip(bus.id)
        return BusLocationView(
            bus=BusSummary.from_bus(bus),
            location=LocationSnapshot.from_fix(fix),
            trip=await self._summarize(trip) if trip else None,
            fix_id=fix.id,
        )

    async def history_for_bus(
        self,
        bus_ref: str,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> tuple[Bus, list[LocationFix]]:
        """История фиксов автобуса от новых к старым."""
        if limit < 1 or limit > self._max_history_limit:
            raise ValidationError(f"limit must be between 1 and {self._max_history_limit}")
        bus = await self._require_bus(bus_ref)
        fixes = await self._store.history(bus.id, start_time=start_time, end_time=end_time, limit=limit)
        return bus, fixes

    async def _require_bus(self, bus_ref: str) -> Bus:
        bus = await self._fleet.find_bus(bus_ref)
        if bus is None:
            raise NotFoundError(f"Bus {bus_ref} not found")
        return bus

    async def _trip_summary(self, trip_id: Optional[str]) -> Optional[TripSummary]:
        if not trip_id:
            return None
        trip = await self._fleet.get_trip(trip_id)
        return await self._summarize(trip) if trip else None

    async def _summarize(self, trip: Trip) -> TripSummary:
        route = await self._fleet.get_route(trip.route_id)
        return TripSummary.from_trip(trip, route)
