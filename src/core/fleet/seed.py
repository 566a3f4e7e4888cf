# src/core/fleet/seed.py
"""
Демонстрационные данные: пять междугородних маршрутов Шри-Ланки,
по пять автобусов на маршрут и рейсы, идущие прямо сейчас.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from src.common.constants import BusOperator, ServiceType, TripDirection, TripStatus
from src.core.fleet.models import Bus, Capacity, Route, Trip, Waypoint
from src.core.fleet.repository import FleetRepository

# (id, номер, название, начало, км, минуты, остановки (name, latitude, longitude, stop_duration))
_ROUTES: list[tuple[str, str, str, str, float, int, list[tuple[str, float, float, int]]]] = [
    ("R001", "ROUTE_001", "Colombo - Kandy", "Colombo Fort", 115, 210, [
        ("Colombo Fort", 6.9271, 79.8612, 300),
        ("Pettah", 6.9319, 79.8478, 120),
        ("Kelaniya", 7.0378, 79.9003, 60),
        ("Kiribathgoda", 7.0873, 79.9553, 180),
        ("Kadawatha", 7.1431, 79.9969, 120),
        ("Nittambuwa", 7.1906, 80.1003, 300),
        ("Warakapola", 7.2336, 80.1956, 240),
        ("Kegalle", 7.2503, 80.3464, 420),
        ("Kadugannawa", 7.3311, 80.5978, 180),
        ("Kandy Central", 7.2906, 80.6337, 600),
    ]),
    ("R002", "ROUTE_002", "Colombo - Galle", "Colombo Fort", 119, 180, [
        ("Colombo Fort", 6.9271, 79.8612, 300),
        ("Wellawatte", 6.8485, 79.8848, 120),
        ("Moratuwa", 6.7648, 79.9014, 180),
        ("Panadura", 6.7133, 79.9206, 240),
        ("Kalutara", 6.6186, 79.9883, 300),
        ("Beruwala", 6.4218, 80.0180, 180),
        ("Bentota", 6.3676, 80.0142, 120),
        ("Ambalangoda", 6.2390, 80.0503, 240),
        ("Hikkaduwa", 6.1408, 80.0990, 180),
        ("Galle Fort", 6.0535, 80.2210, 600),
    ]),
    ("R003", "ROUTE_003", "Colombo - Ratnapura", "Colombo Fort", 101, 150, [
        ("Colombo Fort", 6.9271, 79.8612, 300),
        ("Nugegoda", 6.8560, 79.9208, 120),
        ("Hanwella", 6.8211, 80.0377, 180),
        ("Avissawella", 6.7354, 80.1495, 240),
        ("Eheliyagoda", 6.6892, 80.2372, 180),
        ("Kuruwita", 6.6659, 80.3729, 120),
        ("Ratnapura", 6.6835, 80.3992, 600),
    ]),
    ("R004", "ROUTE_004", "Colombo - Anuradhapura", "Colombo Fort", 206, 270, [
        ("Colombo Fort", 6.9271, 79.8612, 300),
        ("Negombo", 7.1067, 79.8392, 240),
        ("Chilaw", 7.2167, 79.8500, 300),
        ("Puttalam", 8.0362, 80.0851, 360),
        ("Anuradhapura", 8.3114, 80.4037, 600),
    ]),
    ("R005", "ROUTE_005", "Kandy - Badulla", "Kandy Central", 142, 240, [
        ("Kandy Central", 7.2906, 80.6337, 300),
        ("Peradeniya", 7.2683, 80.5908, 120),
        ("Gampola", 7.2571, 80.5821, 180),
        ("Nuwara Eliya", 7.0378, 80.7675, 420),
        ("Ella", 6.9895, 81.0550, 240),
        ("Badulla", 6.9934, 81.0550, 600),
    ]),
]

# Серия регистрационных номеров для каждой группы автобусов
_REGISTRATION_SERIES = ["WP-CAB", "WP-CAC", "WP-CAD", "WP-CAE", "CP-CAF"]

_BUS_PROFILES: list[tuple[BusOperator, ServiceType, int, int]] = [
    (BusOperator.SLTB, ServiceType.NORMAL, 45, 20),
    (BusOperator.SLTB, ServiceType.SEMI_LUXURY, 50, 15),
    (BusOperator.PRIVATE, ServiceType.AC, 40, 0),
    (BusOperator.SLTB, ServiceType.NORMAL, 45, 20),
    (BusOperator.PRIVATE, ServiceType.SEMI_LUXURY, 48, 10),
]


@dataclass
class SeedData:
    routes: list[Route] = field(default_factory=list)
    buses: list[Bus] = field(default_factory=list)
    trips: list[Trip] = field(default_factory=list)


def build_routes() -> list[Route]:
    routes = []
    for route_id, number, name, origin, distance, duration, stops in _ROUTES:
        routes.append(Route(
            id=route_id,
            route_number=number,
            name=name,
            origin=origin,
            destination=stops[-1][0],
            distance=distance,
            estimated_duration=duration,
            waypoints=[
                Waypoint(name=n, latitude=lat, longitude=lon, stop_duration=stop, sequence_number=i)
                for i, (n, lat, lon, stop) in enumerate(stops, start=1)
            ],
        ))
    return routes


def build_buses() -> list[Bus]:
    """25 автобусов: NB-1001..NB-1005 на R001, NB-2001..NB-2005 на R002 и т.д."""
    buses = []
    for group, series in enumerate(_REGISTRATION_SERIES, start=1):
        for index, (operator, service_type, seated, standing) in enumerate(_BUS_PROFILES, start=1):
            number = group * 1000 + index
            buses.append(Bus(
                id=f"bus-{number}",
                bus_number=f"NB-{number}",
                registration_number=f"{series}-{number}",
                operator=operator,
                service_type=service_type,
                capacity=Capacity(seated=seated, standing=standing),
            ))
    return buses


def build_trips(
    buses: list[Bus],
    routes: list[Route],
    now: datetime | None = None,
) -> list[Trip]:
    """
    По одному рейсу in_progress на каждый автобус.
    Автобусы группы N ездят по маршруту N, ID рейсов TRIP-001, TRIP-002, ...
    """
    now = now or datetime.now(timezone.utc)
    trips = []
    per_route = max(1, len(buses) // max(1, len(routes)))
    for counter, bus in enumerate(buses, start=1):
        route = routes[min((counter - 1) // per_route, len(routes) - 1)]
        departure = now - timedelta(minutes=15 * ((counter - 1) % per_route + 1))
        trips.append(Trip(
            id=f"TRIP-{counter:03d}",
            trip_number=f"TRIP-{counter:05d}",
            bus_id=bus.id,
            route_id=route.id,
            direction=TripDirection.OUTBOUND if counter % 2 else TripDirection.INBOUND,
            departure_time=departure,
            arrival_time=departure + timedelta(minutes=route.estimated_duration),
            status=TripStatus.IN_PROGRESS,
        ))
    return trips


def build_seed(now: datetime | None = None) -> SeedData:
    routes = build_routes()
    buses = build_buses()
    return SeedData(routes=routes, buses=buses, trips=build_trips(buses, routes, now))


async def load_seed(fleet: FleetRepository, data: SeedData | None = None) -> SeedData:
    """Записывает демонстрационные данные в репозиторий."""
    data = data or build_seed()
    for route in data.routes:
        await fleet.save_route(route)
    for bus in data.buses:
        await fleet.save_bus(bus)
    for trip in data.trips:
        await fleet.save_trip(trip)
    return data
