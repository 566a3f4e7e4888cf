# src/core/tracking/resolver.py
"""
Поиск активного рейса автобуса.
"""

from __future__ import annotations

from typing import Any, Optional

from src.common.constants import AmbiguousTripPolicy, TripStatus
from src.common.logger import log_warning
from src.core.fleet.models import Trip
from src.core.fleet.repository import FleetRepository
from src.core.tracking.errors import AmbiguousTripError


class TripResolver:
    """
    Возвращает рейс автобуса в статусе in_progress.

    Если таких рейсов несколько (нарушен инвариант справочника), действует политика:
    - LATEST: берётся рейс с самым поздним departure_time, при равенстве
      больший trip_number; событие логируется и считается
    - REJECT: AmbiguousTripError
    """

    def __init__(
        self,
        fleet: FleetRepository,
        policy: AmbiguousTripPolicy = AmbiguousTripPolicy.LATEST,
    ) -> None:
        self._fleet = fleet
        self._policy = AmbiguousTripPolicy(policy)
        self._lookups = 0
        self._misses = 0
        self._ambiguous = 0

    @property
    def policy(self) -> AmbiguousTripPolicy:
        return self._policy

    async def find_active_trip(self, bus_id: str) -> Optional[Trip]:
        self._lookups += 1
        trips = await self._fleet.find_trips(bus_id=bus_id, status=TripStatus.IN_PROGRESS)

        if not trips:
            self._misses += 1
            return None
        if len(trips) == 1:
            return trips[0]

        self._ambiguous += 1
        trip_ids = sorted(t.id for t in trips)
        if self._policy == AmbiguousTripPolicy.REJECT:
            raise AmbiguousTripError(bus_id, trip_ids)

        chosen = max(trips, key=lambda t: (t.departure_time, t.trip_number))
        await log_warning(
            f"У автобуса {bus_id} несколько активных рейсов {trip_ids}, выбран {chosen.id}",
            extra={"bus_id": bus_id, "trip_ids": trip_ids, "chosen": chosen.id},
        )
        return chosen

    def get_stats(self) -> dict[str, Any]:
        return {
            "policy": self._policy.value,
            "lookups": self._lookups,
            "misses": self._misses,
            "ambiguous": self._ambiguous,
        }
