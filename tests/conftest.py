# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import asyncio
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["REDIS_BRIDGE_ENABLED"] = "false"
os.environ.pop("INGEST_API_TOKEN", None)
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")

from src.core.fleet.repository import InMemoryFleetRepository  # noqa: E402
from src.core.fleet.seed import build_seed, load_seed  # noqa: E402
from src.core.tracking.store import InMemoryLocationStore  # noqa: E402


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "комментарий",
        "PROJECT_NAME": "bus_tracking_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "LOG_LEVEL": "DEBUG",
        "ENVIRONMENT": "test",
        "TRACKING_API_HOST": "127.0.0.1",
        "TRACKING_API_PORT": 3100,
        "LOG_TO_FILE": False,
        "LOG_FILE_PATH": "logs/test.log",
        "LOG_FORMAT": "json",
        "DB_HOST": "localhost",
        "DB_PORT": 5432,
        "DB_NAME": "bus_tracking_test",
        "DB_USER": "postgres",
        "DB_RETRY_ATTEMPTS": 2,
        "DB_RETRY_DELAY": 0.5,
        "REDIS_HOST": "localhost",
        "REDIS_PORT": 6379,
        "REDIS_DB": 1,
        "REDIS_NAMESPACE": "bus_test",
        "STORAGE_BACKEND": "memory",
        "SEED_DEMO_DATA": False,
        "ACTIVE_WINDOW_SECONDS": 120,
        "HISTORY_MAX_LIMIT": 200,
        "AMBIGUOUS_TRIP_POLICY": "reject",
        "QUEUE_MAX_SIZE": 10,
        "OVERFLOW_POLICY": "close",
        "LOCK_SHARDS": 4,
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_db() -> AsyncMock:
    """Мок менеджера базы данных."""
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetchval = AsyncMock(return_value=None)
    db.health_check = AsyncMock(return_value=True)
    return db


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Мок клиента Redis."""
    redis = AsyncMock()
    redis.make_key = lambda key: key if key.startswith("bus_test:") else f"bus_test:{key}"
    redis.publish_json = AsyncMock(return_value=1)
    return redis


# =============================================================================
# ФИКСТУРЫ ДОМЕНА
# =============================================================================

@pytest.fixture
def now() -> datetime:
    return datetime.now(timezone.utc)


@pytest.fixture
def fleet(now: datetime) -> InMemoryFleetRepository:
    """Справочник парка с демо-данными: 5 маршрутов, 25 автобусов, 25 рейсов в пути."""
    repo = InMemoryFleetRepository()
    loop = asyncio.new_event_loop()
    try:
        loop.run_until_complete(load_seed(repo, build_seed(now)))
    finally:
        loop.close()
    return repo


@pytest.fixture
def store() -> InMemoryLocationStore:
    return InMemoryLocationStore()


class FakeSocket:
    """WebSocket для тестов маршрутизатора: копит отправленное, умеет падать и тормозить."""

    def __init__(self, fail: bool = False, gate: asyncio.Event | None = None) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed_code: int | None = None
        self.fail = fail
        self.gate = gate

    async def send_json(self, data: Any) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RuntimeError("socket is broken")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_code = code


@pytest.fixture
def socket_factory():
    """Фабрика FakeSocket."""
    return FakeSocket


class RecordingPublisher:
    """Публикатор, запоминающий топики и сообщения."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []

    @property
    def topics(self) -> list[str]:
        return [topic for topic, _ in self.calls]

    async def publish(self, topic: str, payload: dict[str, Any]) -> int:
        self.calls.append((topic, payload))
        return 1


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()
