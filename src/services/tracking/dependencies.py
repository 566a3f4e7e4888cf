# src/services/tracking/dependencies.py
"""
Зависимости Tracking Service.
Инициализация и управление ресурсами.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from src.common.constants import StorageBackend, TypeMsg
from src.common.logger import log_info
from src.core.fanout.redis_bridge import RedisFanoutBridge
from src.core.fanout.router import FanoutRouter
from src.core.fleet.repository import (
    FleetRepository,
    InMemoryFleetRepository,
    PostgresFleetRepository,
)
from src.core.fleet.seed import load_seed
from src.core.fleet.service import TripStatusService
from src.core.tracking.ingestion import LocationIngestService
from src.core.tracking.queries import LocationQueryService
from src.core.tracking.resolver import TripResolver
from src.core.tracking.store import InMemoryLocationStore, LocationStore, PostgresLocationStore
from src.infra.database import DatabaseManager
from src.infra.redis_client import RedisClient

if TYPE_CHECKING:
    from src.config.loader import Settings


# Глобальные экземпляры ресурсов
_db: Optional[DatabaseManager] = None
_redis: Optional[RedisClient] = None

# Компоненты
_fleet: Optional[FleetRepository] = None
_store: Optional[LocationStore] = None
_router: Optional[FanoutRouter] = None
_bridge: Optional[RedisFanoutBridge] = None

# Сервисы
_resolver: Optional[TripResolver] = None
_ingest_service: Optional[LocationIngestService] = None
_query_service: Optional[LocationQueryService] = None
_trip_status_service: Optional[TripStatusService] = None


async def init_dependencies(
    app_settings: Optional["Settings"] = None,
    fleet: Optional[FleetRepository] = None,
    store: Optional[LocationStore] = None,
) -> None:
    """
    Инициализация всех зависимостей сервиса.

    Args:
        app_settings: Настройки (по умолчанию глобальные)
        fleet: Готовый репозиторий парка (вместо выбранного по настройкам)
        store: Готовое хранилище фиксов (вместо выбранного по настройкам)
    """
    global _db, _redis, _fleet, _store, _router, _bridge
    global _resolver, _ingest_service, _query_service, _trip_status_service

    if app_settings is None:
        from src.config import settings as app_settings

    tracking = app_settings.tracking
    fanout = app_settings.fanout

    # Хранилища
    if tracking.STORAGE_BACKEND == StorageBackend.POSTGRES and (fleet is None or store is None):
        from src.infra.database import init_db
        _db = await init_db()
        await log_info("PostgreSQL подключён", type_msg=TypeMsg.DEBUG)

    if fleet is None:
        if tracking.STORAGE_BACKEND == StorageBackend.POSTGRES:
            fleet = PostgresFleetRepository(_db)
        else:
            fleet = InMemoryFleetRepository()
            if tracking.SEED_DEMO_DATA:
                data = await load_seed(fleet)
                await log_info(
                    f"Демо-данные загружены: {len(data.routes)} маршрутов, "
                    f"{len(data.buses)} автобусов, {len(data.trips)} рейсов",
                    type_msg=TypeMsg.DEBUG,
                )
    if store is None:
        if tracking.STORAGE_BACKEND == StorageBackend.POSTGRES:
            store = PostgresLocationStore(_db)
        else:
            store = InMemoryLocationStore()

    _fleet = fleet
    _store = store

    # Рассылка
    _router = FanoutRouter(
        queue_max_size=fanout.QUEUE_MAX_SIZE,
        overflow_policy=fanout.OVERFLOW_POLICY,
        lock_shards=fanout.LOCK_SHARDS,
        send_timeout=fanout.SEND_TIMEOUT_SECONDS,
    )
    publisher = _router
    if fanout.REDIS_BRIDGE_ENABLED:
        from src.infra.redis_client import init_redis
        _redis = await init_redis()
        _bridge = RedisFanoutBridge(_router, _redis, fanout.REDIS_CHANNEL)
        await _bridge.start()
        publisher = _bridge

    # Сервисы
    _resolver = TripResolver(_fleet, policy=tracking.AMBIGUOUS_TRIP_POLICY)
    _ingest_service = LocationIngestService(_fleet, _store, _resolver, publisher)
    _query_service = LocationQueryService(
        _fleet,
        _store,
        _resolver,
        active_window_seconds=tracking.ACTIVE_WINDOW_SECONDS,
        default_radius_m=tracking.NEARBY_DEFAULT_RADIUS_M,
        max_history_limit=tracking.HISTORY_MAX_LIMIT,
    )
    _trip_status_service = TripStatusService(_fleet)

    await log_info(
        f"Tracking Service инициализирован (хранилище: {_store.name}, "
        f"redis-ретрансляция: {'вкл' if _bridge else 'выкл'})",
        type_msg=TypeMsg.INFO,
    )


async def close_dependencies() -> None:
    """Закрытие всех ресурсов."""
    global _db, _redis, _fleet, _store, _router, _bridge
    global _resolver, _ingest_service, _query_service, _trip_status_service

    if _router:
        await _router.log_stats()
        await _router.close_all()

    if _bridge:
        await _bridge.stop()
        await log_info("Redis-ретрансляция остановлена", type_msg=TypeMsg.DEBUG)

    if _redis:
        await _redis.disconnect()

    if _db:
        await _db.disconnect()

    _db = _redis = None
    _fleet = _store = _router = _bridge = None
    _resolver = _ingest_service = _query_service = _trip_status_service = None


def get_db() -> Optional[DatabaseManager]:
    """DatabaseManager или None для хранилища в памяти."""
    return _db


def get_redis() -> Optional[RedisClient]:
    """RedisClient или None, если ретрансляция выключена."""
    return _redis


async def get_store() -> LocationStore:
    """Получение хранилища фиксов."""
    if _store is None:
        raise RuntimeError("LocationStore не инициализирован")
    return _store


async def get_fanout_router() -> FanoutRouter:
    """Получение маршрутизатора рассылки."""
    if _router is None:
        raise RuntimeError("FanoutRouter не инициализирован")
    return _router


def get_bridge() -> Optional[RedisFanoutBridge]:
    return _bridge


async def get_ingest_service() -> LocationIngestService:
    """Получение экземпляра LocationIngestService."""
    if _ingest_service is None:
        raise RuntimeError("LocationIngestService не инициализирован")
    return _ingest_service


async def get_query_service() -> LocationQueryService:
    """Получение экземпляра LocationQueryService."""
    if _query_service is None:
        raise RuntimeError("LocationQueryService не инициализирован")
    return _query_service


async def get_trip_status_service() -> TripStatusService:
    """Получение экземпляра TripStatusService."""
    if _trip_status_service is None:
        raise RuntimeError("TripStatusService не инициализирован")
    return _trip_status_service
