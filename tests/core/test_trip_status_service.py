# tests/core/test_trip_status_service.py
"""
Тесты смены статуса рейса.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from src.common.constants import TripStatus
from src.core.fleet.models import Trip
from src.core.fleet.repository import InMemoryFleetRepository
from src.core.fleet.service import TripStatusService
from src.core.tracking.errors import ConflictError, NotFoundError, ValidationError


def scheduled_trip(trip_id: str = "TRIP-900", bus_id: str = "bus-1001") -> Trip:
    return Trip(
        id=trip_id,
        trip_number=f"TRIP-{trip_id[-3:]}00",
        bus_id=bus_id,
        route_id="R001",
        departure_time=datetime.now(timezone.utc),
    )


class TestTripStatusService:
    """Тесты TripStatusService."""

    @pytest.mark.asyncio
    async def test_complete_trip(self, fleet: InMemoryFleetRepository) -> None:
        service = TripStatusService(fleet)

        trip = await service.change_status("TRIP-001", "completed")

        assert trip.status == TripStatus.COMPLETED
        assert not await fleet.find_trips(bus_id="bus-1001", status=TripStatus.IN_PROGRESS)

    @pytest.mark.asyncio
    async def test_forbidden_transition(self, fleet: InMemoryFleetRepository) -> None:
        service = TripStatusService(fleet)
        await service.change_status("TRIP-001", TripStatus.COMPLETED)

        with pytest.raises(ConflictError):
            await service.change_status("TRIP-001", TripStatus.IN_PROGRESS)

    @pytest.mark.asyncio
    async def test_second_trip_in_progress_rejected(self, fleet: InMemoryFleetRepository) -> None:
        """У автобуса не может быть двух рейсов в пути."""
        await fleet.save_trip(scheduled_trip())
        service = TripStatusService(fleet)

        with pytest.raises(ConflictError, match="already has a trip in progress"):
            await service.change_status("TRIP-900", "in_progress")

        assert (await fleet.get_trip("TRIP-900")).status == TripStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_start_after_previous_completed(self, fleet: InMemoryFleetRepository) -> None:
        await fleet.save_trip(scheduled_trip())
        service = TripStatusService(fleet)

        await service.change_status("TRIP-001", "completed")
        trip = await service.change_status("TRIP-900", "in_progress")

        assert trip.status == TripStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_concurrent_starts_keep_single_active(self, fleet: InMemoryFleetRepository) -> None:
        await free_bus_with_two_scheduled(fleet)
        service = TripStatusService(fleet)

        results = await asyncio.gather(
            service.change_status("TRIP-901", "in_progress"),
            service.change_status("TRIP-902", "in_progress"),
            return_exceptions=True,
        )

        assert sum(isinstance(r, ConflictError) for r in results) == 1
        active = await fleet.find_trips(bus_id="bus-1001", status=TripStatus.IN_PROGRESS)
        assert len(active) == 1

    @pytest.mark.asyncio
    async def test_unknown_status(self, fleet: InMemoryFleetRepository) -> None:
        with pytest.raises(ValidationError, match="Invalid trip status"):
            await TripStatusService(fleet).change_status("TRIP-001", "flying")

    @pytest.mark.asyncio
    async def test_unknown_trip(self, fleet: InMemoryFleetRepository) -> None:
        with pytest.raises(NotFoundError):
            await TripStatusService(fleet).change_status("TRIP-404", "completed")


async def free_bus_with_two_scheduled(fleet: InMemoryFleetRepository) -> None:
    """Освобождает bus-1001 и добавляет ему два запланированных рейса."""
    await fleet.update_trip_status("TRIP-001", TripStatus.IN_PROGRESS, TripStatus.COMPLETED)
    await fleet.save_trip(scheduled_trip("TRIP-901"))
    await fleet.save_trip(scheduled_trip("TRIP-902"))
