# src/core/fleet/__init__.py
"""
Домен автобусного парка.
Автобусы, маршруты, рейсы и их хранилища.
"""

from src.core.fleet.models import Bus, Capacity, Route, Trip, Waypoint
from src.core.fleet.repository import (
    FleetRepository,
    InMemoryFleetRepository,
    PostgresFleetRepository,
)

__all__ = [
    "Bus",
    "Capacity",
    "Route",
    "Trip",
    "Waypoint",
    "FleetRepository",
    "InMemoryFleetRepository",
    "PostgresFleetRepository",
]
