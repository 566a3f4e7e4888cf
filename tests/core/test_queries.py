# tests/core/test_queries.py
"""
Тесты выборок: ближайшие автобусы, активные автобусы, последняя позиция, история.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.common.constants import BusStatus, TripStatus
from src.core.tracking.errors import NotFoundError, ValidationError
from src.core.tracking.geo import haversine_km, within_radius
from src.core.tracking.models import LocationFix
from src.core.tracking.queries import LocationQueryService
from src.core.tracking.resolver import TripResolver

COLOMBO_FORT = (6.9271, 79.8612)
PETTAH = (6.9319, 79.8478)
KANDY = (7.2906, 80.6337)


@pytest.fixture
def queries(fleet, store) -> LocationQueryService:
    return LocationQueryService(fleet, store, TripResolver(fleet), max_history_limit=100)


async def put(store, bus_id: str, trip_id: str, point: tuple[float, float], at: datetime) -> LocationFix:
    fix = LocationFix(bus_id=bus_id, trip_id=trip_id, latitude=point[0], longitude=point[1], timestamp=at)
    await store.append(fix)
    return fix


class TestGeo:
    def test_zero_distance(self) -> None:
        assert haversine_km(*COLOMBO_FORT, *COLOMBO_FORT) == 0.0

    def test_colombo_pettah(self) -> None:
        assert 1.0 < haversine_km(*COLOMBO_FORT, *PETTAH) < 2.0

    def test_within_radius(self) -> None:
        distance_m = haversine_km(*COLOMBO_FORT, *PETTAH) * 1000
        assert within_radius(*COLOMBO_FORT, *PETTAH, radius_m=distance_m + 0.001)
        assert not within_radius(*COLOMBO_FORT, *PETTAH, radius_m=distance_m - 1)


class TestNearby:
    """Тесты nearby."""

    @pytest.mark.asyncio
    async def test_sorted_by_distance(self, queries, store, now) -> None:
        await put(store, "bus-1002", "TRIP-002", PETTAH, now)
        await put(store, "bus-1001", "TRIP-001", COLOMBO_FORT, now)
        await put(store, "bus-2001", "TRIP-006", KANDY, now)

        result = await queries.nearby(*COLOMBO_FORT)

        assert [item.bus.bus_number for item in result] == ["NB-1001", "NB-1002"]
        assert result[0].distance_km == 0.0
        assert result[0].trip.id == "TRIP-001"
        assert result[0].trip.route.id == "R001"

    @pytest.mark.asyncio
    async def test_radius(self, queries, store, now) -> None:
        await put(store, "bus-1001", "TRIP-001", COLOMBO_FORT, now)
        await put(store, "bus-1002", "TRIP-002", PETTAH, now)

        result = await queries.nearby(*COLOMBO_FORT, radius_m=100)

        assert [item.bus.id for item in result] == ["bus-1001"]

    @pytest.mark.asyncio
    async def test_radius_boundary_included(self, queries, store, now) -> None:
        await put(store, "bus-1002", "TRIP-002", PETTAH, now)
        distance_m = haversine_km(*COLOMBO_FORT, *PETTAH) * 1000

        assert len(await queries.nearby(*COLOMBO_FORT, radius_m=distance_m + 0.001)) == 1
        assert await queries.nearby(*COLOMBO_FORT, radius_m=distance_m - 1) == []

    @pytest.mark.asyncio
    async def test_stale_fix_still_counts(self, queries, store, now) -> None:
        await put(store, "bus-1001", "TRIP-001", COLOMBO_FORT, now - timedelta(days=2))

        assert len(await queries.nearby(*COLOMBO_FORT)) == 1

    @pytest.mark.asyncio
    async def test_inactive_bus_excluded(self, queries, fleet, store, now) -> None:
        bus = await fleet.get_bus("bus-1001")
        await fleet.save_bus(bus.model_copy(update={"status": BusStatus.MAINTENANCE}))
        await put(store, "bus-1001", "TRIP-001", COLOMBO_FORT, now)

        assert await queries.nearby(*COLOMBO_FORT) == []

    @pytest.mark.asyncio
    async def test_invalid_arguments(self, queries) -> None:
        with pytest.raises(ValidationError):
            await queries.nearby(95, 0)
        with pytest.raises(ValidationError):
            await queries.nearby(*COLOMBO_FORT, radius_m=0)


class TestActiveLocations:
    """Тесты active_locations."""

    @pytest.mark.asyncio
    async def test_window(self, queries, store, now) -> None:
        await put(store, "bus-1001", "TRIP-001", COLOMBO_FORT, now - timedelta(seconds=30))
        await put(store, "bus-1002", "TRIP-002", PETTAH, now - timedelta(minutes=10))

        fresh = await queries.active_locations(now=now)
        wide = await queries.active_locations(window_seconds=3600, now=now)

        assert [p.bus.bus_number for p in fresh] == ["NB-1001"]
        assert [p.bus.bus_number for p in wide] == ["NB-1001", "NB-1002"]

    @pytest.mark.asyncio
    async def test_only_buses_on_trip(self, queries, fleet, store, now) -> None:
        await put(store, "bus-1001", "TRIP-001", COLOMBO_FORT, now)
        await fleet.update_trip_status("TRIP-001", TripStatus.IN_PROGRESS, TripStatus.COMPLETED)

        assert await queries.active_locations(now=now) == []

    @pytest.mark.asyncio
    async def test_unknown_trip_skipped(self, queries, store, now) -> None:
        await put(store, "bus-1001", "TRIP-404", COLOMBO_FORT, now)

        assert await queries.active_locations(now=now) == []

    @pytest.mark.asyncio
    async def test_payload_shape(self, queries, store, now) -> None:
        await put(store, "bus-3001", "TRIP-011", COLOMBO_FORT, now)

        [payload] = await queries.active_locations(now=now)

        message = payload.to_message()
        assert set(message) == {"bus", "location", "trip"}
        assert message["trip"]["route"]["id"] == "R003"


class TestBusLocation:
    """Тесты последней позиции и истории."""

    @pytest.mark.asyncio
    async def test_latest_by_number(self, queries, store, now) -> None:
        await put(store, "bus-1001", "TRIP-001", PETTAH, now - timedelta(minutes=1))
        latest = await put(store, "bus-1001", "TRIP-001", COLOMBO_FORT, now)

        view = await queries.latest_for_bus("nb-1001")

        assert (view.location.latitude, view.location.longitude) == COLOMBO_FORT
        assert view.trip.id == "TRIP-001"
        assert view.fix_id == latest.id
        assert "fix_id" not in view.model_dump()

    @pytest.mark.asyncio
    async def test_latest_without_trip(self, queries, fleet, store, now) -> None:
        await put(store, "bus-1001", "TRIP-001", COLOMBO_FORT, now)
        await fleet.update_trip_status("TRIP-001", TripStatus.IN_PROGRESS, TripStatus.COMPLETED)

        view = await queries.latest_for_bus("bus-1001")

        assert view.trip is None

    @pytest.mark.asyncio
    async def test_latest_not_found(self, queries) -> None:
        with pytest.raises(NotFoundError):
            await queries.latest_for_bus("NB-9999")
        with pytest.raises(NotFoundError, match="No location data"):
            await queries.latest_for_bus("NB-1001")

    @pytest.mark.asyncio
    async def test_history(self, queries, store, now) -> None:
        for minutes in range(5):
            await put(store, "bus-1001", "TRIP-001", COLOMBO_FORT, now - timedelta(minutes=minutes))

        bus, fixes = await queries.history_for_bus("NB-1001", limit=2)

        assert bus.id == "bus-1001"
        assert [f.timestamp for f in fixes] == [now, now - timedelta(minutes=1)]

    @pytest.mark.asyncio
    async def test_history_limit_bounds(self, queries) -> None:
        with pytest.raises(ValidationError):
            await queries.history_for_bus("NB-1001", limit=101)
        with pytest.raises(ValidationError):
            await queries.history_for_bus("NB-1001", limit=0)
