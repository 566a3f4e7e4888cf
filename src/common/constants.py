# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class BusStatus(str, Enum):
    """Статусы автобуса."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"


class BusOperator(str, Enum):
    """Операторы автобусного парка."""
    SLTB = "SLTB"
    PRIVATE = "Private"


class ServiceType(str, Enum):
    """Классы обслуживания."""
    NORMAL = "Normal"
    SEMI_LUXURY = "Semi-Luxury"
    AC = "AC"
    LUXURY = "Luxury"


class TripStatus(str, Enum):
    """Статусы рейса."""
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value


class TripDirection(str, Enum):
    """Направление рейса."""
    OUTBOUND = "outbound"
    INBOUND = "inbound"


class OverflowPolicy(str, Enum):
    """Политика переполнения очереди соединения."""
    DROP_OLDEST = "drop_oldest"
    CLOSE = "close"


class AmbiguousTripPolicy(str, Enum):
    """Поведение резолвера при нескольких активных рейсах у автобуса."""
    LATEST = "latest"
    REJECT = "reject"


class StorageBackend(str, Enum):
    """Хранилище GPS-фиксов и справочников парка."""
    POSTGRES = "postgres"
    MEMORY = "memory"


# Топики рассылки
TOPIC_ALL = "all"
TOPIC_BUS_PREFIX = "bus:"
TOPIC_ROUTE_PREFIX = "route:"


def bus_topic(bus_number: str) -> str:
    """Топик конкретного автобуса."""
    return f"{TOPIC_BUS_PREFIX}{bus_number}"


def route_topic(route_id: str) -> str:
    """Топик маршрута."""
    return f"{TOPIC_ROUTE_PREFIX}{route_id}"
