# tests/core/test_resolver.py
"""
Тесты поиска активного рейса.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from src.common.constants import AmbiguousTripPolicy, TripStatus
from src.core.fleet.repository import InMemoryFleetRepository
from src.core.tracking.errors import AmbiguousTripError
from src.core.tracking.resolver import TripResolver


async def add_parallel_trip(fleet: InMemoryFleetRepository) -> None:
    """Второй рейс in_progress у bus-1001, отправлен позже TRIP-001."""
    first = await fleet.get_trip("TRIP-001")
    await fleet.save_trip(first.model_copy(update={
        "id": "TRIP-777",
        "trip_number": "TRIP-00777",
        "departure_time": first.departure_time + timedelta(minutes=5),
    }))


class TestTripResolver:
    """Тесты TripResolver."""

    @pytest.mark.asyncio
    async def test_single_active_trip(self, fleet: InMemoryFleetRepository) -> None:
        resolver = TripResolver(fleet)

        trip = await resolver.find_active_trip("bus-1001")

        assert trip is not None and trip.id == "TRIP-001"

    @pytest.mark.asyncio
    async def test_no_active_trip(self, fleet: InMemoryFleetRepository) -> None:
        await fleet.update_trip_status("TRIP-001", TripStatus.IN_PROGRESS, TripStatus.COMPLETED)
        resolver = TripResolver(fleet)

        assert await resolver.find_active_trip("bus-1001") is None
        assert resolver.get_stats()["misses"] == 1

    @pytest.mark.asyncio
    async def test_ambiguous_latest_policy(self, fleet: InMemoryFleetRepository) -> None:
        await add_parallel_trip(fleet)
        resolver = TripResolver(fleet, policy=AmbiguousTripPolicy.LATEST)

        trip = await resolver.find_active_trip("bus-1001")

        assert trip.id == "TRIP-777"
        assert resolver.get_stats()["ambiguous"] == 1

    @pytest.mark.asyncio
    async def test_ambiguous_reject_policy(self, fleet: InMemoryFleetRepository) -> None:
        await add_parallel_trip(fleet)
        resolver = TripResolver(fleet, policy="reject")

        with pytest.raises(AmbiguousTripError) as exc_info:
            await resolver.find_active_trip("bus-1001")

        assert exc_info.value.trip_ids == ["TRIP-001", "TRIP-777"]
        assert exc_info.value.status_code == 409
        assert resolver.policy == AmbiguousTripPolicy.REJECT

    @pytest.mark.asyncio
    async def test_ambiguous_equal_departure_uses_trip_number(self, fleet: InMemoryFleetRepository) -> None:
        first = await fleet.get_trip("TRIP-001")
        await fleet.save_trip(first.model_copy(update={"id": "TRIP-000", "trip_number": "TRIP-00000"}))

        trip = await TripResolver(fleet).find_active_trip("bus-1001")

        assert trip.id == "TRIP-001"
