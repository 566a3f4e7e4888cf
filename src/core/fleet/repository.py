# src/core/fleet/repository.py
"""
Репозиторий справочников парка: автобусы, маршруты, рейсы.

Ядро трекинга только читает эти данные по ключам. Запись нужна
сидеру и смене статуса рейса.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional

import asyncpg

from src.common.constants import BusStatus, TripStatus
from src.core.fleet.models import Bus, Capacity, Route, Trip, Waypoint
from src.core.tracking.errors import ConflictError
from src.infra.database import DatabaseManager


class FleetRepository(ABC):
    """Доступ к автобусам, маршрутам и рейсам."""

    @abstractmethod
    async def get_bus(self, bus_id: str) -> Optional[Bus]:
        ...

    @abstractmethod
    async def get_bus_by_number(self, bus_number: str) -> Optional[Bus]:
        ...

    @abstractmethod
    async def list_buses(self, status: Optional[BusStatus] = None) -> list[Bus]:
        ...

    @abstractmethod
    async def get_route(self, route_id: str) -> Optional[Route]:
        ...

    @abstractmethod
    async def list_routes(self) -> list[Route]:
        ...

    @abstractmethod
    async def get_trip(self, trip_id: str) -> Optional[Trip]:
        ...

    @abstractmethod
    async def find_trips(
        self,
        bus_id: Optional[str] = None,
        status: Optional[TripStatus] = None,
    ) -> list[Trip]:
        ...

    @abstractmethod
    async def update_trip_status(
        self,
        trip_id: str,
        expected: TripStatus,
        new_status: TripStatus,
    ) -> Optional[Trip]:
        """
        Меняет статус рейса, только если текущий статус равен expected.

        Returns:
            Обновлённый рейс или None, если статус успел измениться
        """

    @abstractmethod
    async def save_bus(self, bus: Bus) -> Bus:
        ...

    @abstractmethod
    async def save_route(self, route: Route) -> Route:
        ...

    @abstractmethod
    async def save_trip(self, trip: Trip) -> Trip:
        ...

    async def find_bus(self, bus_ref: str) -> Optional[Bus]:
        """Ищет автобус по ID, затем по бортовому номеру (без учёта регистра)."""
        bus = await self.get_bus(bus_ref)
        if bus is None:
            bus = await self.get_bus_by_number(bus_ref)
        return bus

    async def get_buses(self, bus_ids: Iterable[str]) -> dict[str, Bus]:
        """Возвращает найденные автобусы по набору ID."""
        result: dict[str, Bus] = {}
        for bus_id in set(bus_ids):
            bus = await self.get_bus(bus_id)
            if bus is not None:
                result[bus_id] = bus
        return result


# =============================================================================
# IN-MEMORY
# =============================================================================

class InMemoryFleetRepository(FleetRepository):
    """Справочники в памяти процесса (разработка и тесты)."""

    def __init__(self) -> None:
        self._buses: dict[str, Bus] = {}
        self._routes: dict[str, Route] = {}
        self._trips: dict[str, Trip] = {}
        self._lock = asyncio.Lock()

    async def get_bus(self, bus_id: str) -> Optional[Bus]:
        return self._buses.get(bus_id)

    async def get_bus_by_number(self, bus_number: str) -> Optional[Bus]:
        wanted = bus_number.strip().upper()
        for bus in self._buses.values():
            if bus.bus_number == wanted:
                return bus
        return None

    async def list_buses(self, status: Optional[BusStatus] = None) -> list[Bus]:
        buses = sorted(self._buses.values(), key=lambda b: b.bus_number)
        if status is None:
            return buses
        return [b for b in buses if b.status == status]

    async def get_route(self, route_id: str) -> Optional[Route]:
        return self._routes.get(route_id)

    async def list_routes(self) -> list[Route]:
        return sorted(self._routes.values(), key=lambda r: r.route_number)

    async def get_trip(self, trip_id: str) -> Optional[Trip]:
        return self._trips.get(trip_id)

    async def find_trips(
        self,
        bus_id: Optional[str] = None,
        status: Optional[TripStatus] = None,
    ) -> list[Trip]:
        return [
            trip for trip in self._trips.values()
            if (bus_id is None or trip.bus_id == bus_id)
            and (status is None or trip.status == status)
        ]

    async def update_trip_status(
        self,
        trip_id: str,
        expected: TripStatus,
        new_status: TripStatus,
    ) -> Optional[Trip]:
        async with self._lock:
            trip = self._trips.get(trip_id)
            if trip is None or trip.status != expected:
                return None
            if new_status == TripStatus.IN_PROGRESS:
                busy = [
                    t.id for t in self._trips.values()
                    if t.bus_id == trip.bus_id and t.status == TripStatus.IN_PROGRESS
                ]
                if busy:
                    raise ConflictError(
                        f"Bus {trip.bus_id} already has a trip in progress: {busy[0]}"
                    )
            updated = trip.model_copy(update={"status": new_status})
            self._trips[trip_id] = updated
            return updated

    async def save_bus(self, bus: Bus) -> Bus:
        self._buses[bus.id] = bus
        return bus

    async def save_route(self, route: Route) -> Route:
        self._routes[route.id] = route
        return route

    async def save_trip(self, trip: Trip) -> Trip:
        self._trips[trip.id] = trip
        return trip


# =============================================================================
# POSTGRESQL
# =============================================================================

_BUS_COLUMNS = """
    id, bus_number, registration_number, operator, service_type,
    capacity_seated, capacity_standing, status
"""

_TRIP_COLUMNS = """
    id, trip_number, bus_id, route_id, direction,
    departure_time, arrival_time, status
"""


class PostgresFleetRepository(FleetRepository):
    """Справочники парка в PostgreSQL."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    async def get_bus(self, bus_id: str) -> Optional[Bus]:
        row = await self._db.fetchrow(
            f"SELECT {_BUS_COLUMNS} FROM buses WHERE id = $1",
            bus_id,
        )
        return self._row_to_bus(row) if row else None

    async def get_bus_by_number(self, bus_number: str) -> Optional[Bus]:
        row = await self._db.fetchrow(
            f"SELECT {_BUS_COLUMNS} FROM buses WHERE bus_number = $1",
            bus_number.strip().upper(),
        )
        return self._row_to_bus(row) if row else None

    async def list_buses(self, status: Optional[BusStatus] = None) -> list[Bus]:
        if status is None:
            rows = await self._db.fetch(
                f"SELECT {_BUS_COLUMNS} FROM buses ORDER BY bus_number"
            )
        else:
            rows = await self._db.fetch(
                f"SELECT {_BUS_COLUMNS} FROM buses WHERE status = $1 ORDER BY bus_number",
                status.value,
            )
        return [self._row_to_bus(row) for row in rows]

    async def get_buses(self, bus_ids: Iterable[str]) -> dict[str, Bus]:
        ids = list(set(bus_ids))
        if not ids:
            return {}
        rows = await self._db.fetch(
            f"SELECT {_BUS_COLUMNS} FROM buses WHERE id = ANY($1::text[])",
            ids,
        )
        return {row["id"]: self._row_to_bus(row) for row in rows}

    async def get_route(self, route_id: str) -> Optional[Route]:
        row = await self._db.fetchrow(
            """
            SELECT id, route_number, name, origin, destination, distance, estimated_duration
            FROM routes
            WHERE id = $1
            """,
            route_id,
        )
        if row is None:
            return None
        waypoints = await self._db.fetch(
            """
            SELECT name, latitude, longitude, stop_duration, sequence_number
            FROM route_waypoints
            WHERE route_id = $1
            ORDER BY sequence_number
            """,
            route_id,
        )
        return self._row_to_route(row, waypoints)

    async def list_routes(self) -> list[Route]:
        rows = await self._db.fetch("SELECT id FROM routes ORDER BY route_number")
        routes = []
        for row in rows:
            route = await self.get_route(row["id"])
            if route is not None:
                routes.append(route)
        return routes

    async def get_trip(self, trip_id: str) -> Optional[Trip]:
        row = await self._db.fetchrow(
            f"SELECT {_TRIP_COLUMNS} FROM trips WHERE id = $1",
            trip_id,
        )
        return self._row_to_trip(row) if row else None

    async def find_trips(
        self,
        bus_id: Optional[str] = None,
        status: Optional[TripStatus] = None,
    ) -> list[Trip]:
        conditions: list[str] = []
        args: list[Any] = []
        if bus_id is not None:
            args.append(bus_id)
            conditions.append(f"bus_id = ${len(args)}")
        if status is not None:
            args.append(status.value)
            conditions.append(f"status = ${len(args)}")

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = await self._db.fetch(
            f"SELECT {_TRIP_COLUMNS} FROM trips {where} ORDER BY departure_time DESC",
            *args,
        )
        return [self._row_to_trip(row) for row in rows]

    async def update_trip_status(
        self,
        trip_id: str,
        expected: TripStatus,
        new_status: TripStatus,
    ) -> Optional[Trip]:
        try:
            row = await self._db.fetchrow(
                f"""
                UPDATE trips
                SET status = $3
                WHERE id = $1 AND status = $2
                RETURNING {_TRIP_COLUMNS}
                """,
                trip_id,
                expected.value,
                new_status.value,
            )
        except asyncpg.UniqueViolationError as e:
            # Частичный уникальный индекс trips_one_in_progress_per_bus
            raise ConflictError(f"Bus already has a trip in progress (trip {trip_id})") from e
        return self._row_to_trip(row) if row else None

    async def save_bus(self, bus: Bus) -> Bus:
        await self._db.execute(
            """
            INSERT INTO buses (id, bus_number, registration_number, operator, service_type,
                               capacity_seated, capacity_standing, status)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            ON CONFLICT (id) DO UPDATE SET
                bus_number = EXCLUDED.bus_number,
                registration_number = EXCLUDED.registration_number,
                operator = EXCLUDED.operator,
                service_type = EXCLUDED.service_type,
                capacity_seated = EXCLUDED.capacity_seated,
                capacity_standing = EXCLUDED.capacity_standing,
                status = EXCLUDED.status
            """,
            bus.id,
            bus.bus_number,
            bus.registration_number,
            bus.operator.value,
            bus.service_type.value,
            bus.capacity.seated,
            bus.capacity.standing,
            bus.status.value,
        )
        return bus

    async def save_route(self, route: Route) -> Route:
        async with self._db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO routes (id, route_number, name, origin, destination,
                                    distance, estimated_duration)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                ON CONFLICT (id) DO UPDATE SET
                    route_number = EXCLUDED.route_number,
                    name = EXCLUDED.name,
                    origin = EXCLUDED.origin,
                    destination = EXCLUDED.destination,
                    distance = EXCLUDED.distance,
                    estimated_duration = EXCLUDED.estimated_duration
                """,
                route.id,
                route.route_number,
                route.name,
                route.origin,
                route.destination,
                route.distance,
                route.estimated_duration,
            )
            await conn.execute("DELETE FROM route_waypoints WHERE route_id = $1", route.id)
            await conn.executemany(
                """
                INSERT INTO route_waypoints (route_id, sequence_number, name,
                                             latitude, longitude, stop_duration)
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                [
                    (route.id, w.sequence_number, w.name, w.latitude, w.longitude, w.stop_duration)
                    for w in route.waypoints
                ],
            )
        return route

    async def save_trip(self, trip: Trip) -> Trip:
        await self._db.execute(
            """
            INSERT INTO trips (id, trip_number, bus_id, route_id, direction,
                               departure_time, arrival_time, status)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            ON CONFLICT (id) DO UPDATE SET
                trip_number = EXCLUDED.trip_number,
                bus_id = EXCLUDED.bus_id,
                route_id = EXCLUDED.route_id,
                direction = EXCLUDED.direction,
                departure_time = EXCLUDED.departure_time,
                arrival_time = EXCLUDED.arrival_time,
                status = EXCLUDED.status
            """,
            trip.id,
            trip.trip_number,
            trip.bus_id,
            trip.route_id,
            trip.direction.value,
            trip.departure_time,
            trip.arrival_time,
            trip.status.value,
        )
        return trip

    def _row_to_bus(self, row) -> Bus:
        """Конвертирует строку БД в модель Bus."""
        return Bus(
            id=row["id"],
            bus_number=row["bus_number"],
            registration_number=row["registration_number"],
            operator=row["operator"],
            service_type=row["service_type"],
            capacity=Capacity(
                seated=row["capacity_seated"],
                standing=row["capacity_standing"],
            ),
            status=row["status"],
        )

    def _row_to_route(self, row, waypoint_rows) -> Route:
        """Конвертирует строку БД и остановки в модель Route."""
        return Route(
            id=row["id"],
            route_number=row["route_number"],
            name=row["name"],
            origin=row["origin"],
            destination=row["destination"],
            distance=row["distance"],
            estimated_duration=row["estimated_duration"],
            waypoints=[
                Waypoint(
                    name=w["name"],
                    latitude=w["latitude"],
                    longitude=w["longitude"],
                    stop_duration=w["stop_duration"],
                    sequence_number=w["sequence_number"],
                )
                for w in waypoint_rows
            ],
        )

    def _row_to_trip(self, row) -> Trip:
        """Конвертирует строку БД в модель Trip."""
        return Trip(
            id=row["id"],
            trip_number=row["trip_number"],
            bus_id=row["bus_id"],
            route_id=row["route_id"],
            direction=row["direction"],
            departure_time=row["departure_time"],
            arrival_time=row["arrival_time"],
            status=row["status"],
        )
