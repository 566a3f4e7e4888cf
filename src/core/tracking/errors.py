# src/core/tracking/errors.py
"""
Иерархия ошибок трекинга.
Каждое исключение несёт HTTP-статус, с которым его отдаёт API.
"""

from __future__ import annotations


class TrackingError(Exception):
    """Базовая ошибка трекинга."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(TrackingError):
    """Некорректные входные данные."""

    status_code = 400


class NoActiveTripError(TrackingError):
    """У автобуса нет рейса в статусе in_progress."""

    status_code = 400

    def __init__(self, bus_ref: str) -> None:
        super().__init__(f"No active trip found for bus {bus_ref}")
        self.bus_ref = bus_ref


class UnauthorizedError(TrackingError):
    """Нет или неверный токен доступа."""

    status_code = 401


class NotFoundError(TrackingError):
    """Сущность не найдена."""

    status_code = 404


class ConflictError(TrackingError):
    """Операция нарушает текущее состояние (переход статуса, второй активный рейс)."""

    status_code = 409


class AmbiguousTripError(ConflictError):
    """У автобуса несколько рейсов in_progress, а политика запрещает выбор."""

    def __init__(self, bus_id: str, trip_ids: list[str]) -> None:
        super().__init__(
            f"Bus {bus_id} has {len(trip_ids)} trips in progress: {', '.join(trip_ids)}"
        )
        self.bus_id = bus_id
        self.trip_ids = trip_ids


class StoreError(TrackingError):
    """Ошибка хранилища координат."""

    status_code = 500


class BroadcastError(TrackingError):
    """Ошибка доставки сообщения одному соединению. Только логируется."""

    status_code = 500

    def __init__(self, connection_id: str, reason: str) -> None:
        super().__init__(f"Delivery to connection {connection_id} failed: {reason}")
        self.connection_id = connection_id
        self.reason = reason
