# tests/common/test_logger.py
"""
Тесты логирования: форматы записей, настройка, ротация файлов
и дополнительные данные в логах приёма, резолвера и рассылки.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

from src.common import logger as logger_module
from src.common.constants import TypeMsg
from src.common.logger import (
    DEFAULT_LOGGER_NAME,
    ColoredFormatter,
    DateBasedRotatingFileHandler,
    JsonFormatter,
    _loggers,
    get_logger,
    log_error,
    log_info,
    setup_logging,
)
from src.core.fanout.router import FanoutRouter
from src.core.tracking.ingestion import LocationIngestService
from src.core.tracking.resolver import TripResolver


def make_record(level: int = logging.INFO, msg: str = "Фикс NB-1001", exc_info=None) -> logging.LogRecord:
    record = logging.LogRecord("bus_tracking", level, "ingestion.py", 42, msg, (), exc_info)
    record.module = "ingestion"
    record.funcName = "ingest"
    return record


def extra_of(mock_method) -> list[dict]:
    """extra_data всех вызовов замоканного метода логгера."""
    return [call.kwargs["extra"]["extra_data"] for call in mock_method.call_args_list]


# =============================================================================
# ФОРМАТЫ
# =============================================================================

class TestJsonFormatter:
    """Тесты JsonFormatter."""

    def test_fix_record(self) -> None:
        record = make_record()
        record.extra_data = {"bus_id": "bus-1001", "topics": ["bus:NB-1001", "all"]}

        data = json.loads(JsonFormatter().format(record))

        assert data["level"] == "INFO"
        assert data["message"] == "Фикс NB-1001"
        assert data["function"] == "ingest"
        assert data["line"] == 42
        assert data["extra"] == {"bus_id": "bus-1001", "topics": ["bus:NB-1001", "all"]}
        assert data["timestamp"].endswith("Z")

    def test_exception(self) -> None:
        try:
            raise ConnectionError("store unavailable")
        except ConnectionError:
            record = make_record(logging.ERROR, "Ошибка записи", exc_info=sys.exc_info())

        data = json.loads(JsonFormatter().format(record))

        assert "ConnectionError: store unavailable" in data["exception"]


class TestColoredFormatter:
    def test_caller_suffix(self) -> None:
        record = make_record(logging.WARNING)
        record.extra_data = {
            "caller_function": "find_active_trip",
            "caller_module": "src.core.tracking.resolver",
            "caller_file": "resolver.py",
            "caller_line": 57,
        }

        result = ColoredFormatter().format(record)

        assert "WARNING" in result
        assert "src.core.tracking.resolver.find_active_trip()" in result
        assert "resolver.py:57" in result


# =============================================================================
# НАСТРОЙКА
# =============================================================================

class TestSetupLogging:
    """Тесты setup_logging и get_logger."""

    def setup_method(self) -> None:
        _loggers.clear()
        logger_module._LOGGING_INITIALIZED = False

    def test_service_logger(self) -> None:
        setup_logging()

        logger = _loggers[DEFAULT_LOGGER_NAME]
        assert logger.propagate is False
        assert get_logger() is logger

    def test_idempotent(self) -> None:
        setup_logging()
        handlers = list(_loggers[DEFAULT_LOGGER_NAME].handlers)
        setup_logging()

        assert _loggers[DEFAULT_LOGGER_NAME].handlers == handlers

    def test_driver_loggers_quiet(self) -> None:
        setup_logging()

        assert logging.getLogger("asyncpg").level == logging.WARNING
        assert logging.getLogger("redis").level == logging.WARNING


class TestDateBasedRotatingFileHandler:
    """Тесты ротации файлов логов."""

    def test_rollover_archives_file(self, tmp_path: Path) -> None:
        handler = DateBasedRotatingFileHandler(str(tmp_path), max_bytes=10, logger_name="svc", backup_count=3)
        handler.setFormatter(logging.Formatter("%(message)s"))
        try:
            handler.emit(make_record(msg="x" * 20))
            handler.emit(make_record(msg="y"))
        finally:
            handler.close()

        assert (tmp_path / "svc.log").exists()
        assert list(tmp_path.glob("svc_*.log"))

    def test_disabled_rotation(self, tmp_path: Path) -> None:
        handler = DateBasedRotatingFileHandler(str(tmp_path), max_bytes=0, logger_name="svc")
        try:
            assert handler.shouldRollover(make_record()) is False
        finally:
            handler.close()


# =============================================================================
# ФУНКЦИИ ЛОГИРОВАНИЯ
# =============================================================================

class TestLogFunctions:
    def setup_method(self) -> None:
        _loggers.clear()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("type_msg,method", [
        (TypeMsg.DEBUG, "debug"),
        (TypeMsg.INFO, "info"),
        (TypeMsg.WARNING, "warning"),
        (TypeMsg.ERROR, "error"),
        (TypeMsg.CRITICAL, "critical"),
    ])
    async def test_level_by_type(self, type_msg: TypeMsg, method: str) -> None:
        with patch.object(logging.Logger, method) as mocked:
            await log_info("Tracking Service запускается", type_msg=type_msg)

        mocked.assert_called_once()

    @pytest.mark.asyncio
    async def test_extra_merged_with_caller(self) -> None:
        with patch.object(logging.Logger, "info") as mocked:
            await log_info("Fan-out статистика", extra={"active_connections": 3})

        extra = extra_of(mocked)[0]
        assert extra["active_connections"] == 3
        assert extra["caller_function"] == "test_extra_merged_with_caller"

    @pytest.mark.asyncio
    async def test_error_with_traceback(self) -> None:
        with patch.object(logging.Logger, "error") as mocked:
            await log_error("Ошибка рассылки", exc_info=True, extra={"topic": "all"})

        assert mocked.call_args.kwargs["exc_info"] is True
        assert extra_of(mocked)[0]["topic"] == "all"


# =============================================================================
# ЛОГИ СЕРВИСА
# =============================================================================

class TestServiceLogs:
    """Дополнительные данные в записях приёма, резолвера и рассылки."""

    def setup_method(self) -> None:
        _loggers.clear()

    @pytest.mark.asyncio
    async def test_ingest_logs_fix(self, fleet, store, publisher) -> None:
        service = LocationIngestService(fleet, store, TripResolver(fleet), publisher)

        with patch.object(logging.Logger, "debug") as mocked:
            await service.ingest(bus_id="NB-1001", latitude=6.9271, longitude=79.8612)

        extra = next(item for item in extra_of(mocked) if "topics" in item)
        assert extra["bus_id"] == "bus-1001"
        assert extra["trip_id"] == "TRIP-001"
        assert extra["topics"] == ["bus:NB-1001", "all", "route:R001"]

    @pytest.mark.asyncio
    async def test_ambiguous_trip_warning(self, fleet) -> None:
        first = await fleet.get_trip("TRIP-001")
        await fleet.save_trip(first.model_copy(update={
            "id": "TRIP-777",
            "trip_number": "TRIP-00777",
            "departure_time": first.departure_time + timedelta(minutes=5),
        }))

        with patch.object(logging.Logger, "warning") as mocked:
            await TripResolver(fleet).find_active_trip("bus-1001")

        extra = next(item for item in extra_of(mocked) if "trip_ids" in item)
        assert extra["trip_ids"] == ["TRIP-001", "TRIP-777"]
        assert extra["chosen"] == "TRIP-777"

    @pytest.mark.asyncio
    async def test_send_failure_warning(self, socket_factory) -> None:
        router = FanoutRouter()
        conn = await router.connect(socket_factory(fail=True))
        await router.subscribe(conn.id, "all")

        with patch.object(logging.Logger, "warning") as mocked:
            await router.publish("all", {"n": 1})
            for _ in range(50):
                await asyncio.sleep(0)

        assert any(item.get("connection_id") == conn.id for item in extra_of(mocked))
        await router.close_all()
