# src/core/fleet/service.py
"""
Сервис смены статуса рейса.
Держит инвариант: у автобуса не больше одного рейса in_progress.
"""

from __future__ import annotations

import asyncio

from src.common.constants import TripStatus
from src.common.logger import log_info
from src.core.fleet.models import Trip
from src.core.fleet.repository import FleetRepository
from src.core.fleet.state_machine import TripStateMachine
from src.core.tracking.errors import ConflictError, NotFoundError, ValidationError


class TripStatusService:
    """Переводит рейсы по машине состояний."""

    def __init__(self, fleet: FleetRepository) -> None:
        self._fleet = fleet
        # Проверка «нет другого активного рейса» и запись выполняются атомарно в процессе
        self._lock = asyncio.Lock()

    async def change_status(self, trip_id: str, new_status: str | TripStatus) -> Trip:
        """
        Меняет статус рейса.

        Raises:
            ValidationError: неизвестный статус
            NotFoundError: рейс не найден
            ConflictError: переход запрещён или у автобуса уже есть активный рейс
        """
        try:
            target = TripStatus(new_status)
        except ValueError:
            allowed = ", ".join(s.value for s in TripStatus)
            raise ValidationError(f"Invalid trip status '{new_status}'. Allowed: {allowed}") from None

        async with self._lock:
            trip = await self._fleet.get_trip(trip_id)
            if trip is None:
                raise NotFoundError(f"Trip {trip_id} not found")

            if not TripStateMachine.can_transition(trip.status, target):
                raise ConflictError(
                    f"Trip {trip.trip_number} cannot move from {trip.status} to {target}"
                )

            if target == TripStatus.IN_PROGRESS:
                active = await self._fleet.find_trips(bus_id=trip.bus_id, status=TripStatus.IN_PROGRESS)
                others = [t for t in active if t.id != trip.id]
                if others:
                    raise ConflictError(
                        f"Bus {trip.bus_id} already has a trip in progress: {others[0].trip_number}"
                    )

            updated = await self._fleet.update_trip_status(trip.id, trip.status, target)
            if updated is None:
                raise ConflictError(f"Trip {trip.trip_number} status changed concurrently")

        await log_info(
            f"Рейс {updated.trip_number}: {trip.status} -> {updated.status}",
            extra={"trip_id": updated.id, "bus_id": updated.bus_id},
        )
        return updated
