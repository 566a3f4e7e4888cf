# src/core/tracking/__init__.py
"""
Домен трекинга.
Приём GPS-фиксов, их хранение и выборки.
"""

from src.core.tracking.errors import (
    AmbiguousTripError,
    BroadcastError,
    ConflictError,
    NoActiveTripError,
    NotFoundError,
    StoreError,
    TrackingError,
    UnauthorizedError,
    ValidationError,
)
from src.core.tracking.models import BroadcastPayload, LocationFix

__all__ = [
    "AmbiguousTripError",
    "BroadcastError",
    "ConflictError",
    "NoActiveTripError",
    "NotFoundError",
    "StoreError",
    "TrackingError",
    "UnauthorizedError",
    "ValidationError",
    "BroadcastPayload",
    "LocationFix",
]
