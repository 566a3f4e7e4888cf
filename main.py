#!/usr/bin/env python3
# main.py
"""
Главная точка входа Bus Tracking.
Запускает HTTP/WebSocket сервис, применяет схему БД или загружает демо-данные.
"""

from __future__ import annotations

import asyncio
import signal
import sys

from src.config import settings
from src.common.logger import setup_logging, log_info, log_error
from src.common.constants import TypeMsg


VALID_MODES = ("tracking", "migrate", "seed")

# Глобальный флаг для graceful shutdown
_shutdown_event: asyncio.Event | None = None
_running_tasks: list[asyncio.Task] = []


def setup_signal_handlers() -> None:
    """Настраивает обработчики сигналов для graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        """Обработчик сигналов SIGINT и SIGTERM."""
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
            _shutdown_event.set()
            for task in _running_tasks:
                if not task.done():
                    task.cancel()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))


async def run_tracking_service() -> None:
    """Запускает Tracking Service (приём фиксов, выборки, WebSocket)."""
    import uvicorn

    host = settings.deployment.TRACKING_API_HOST
    port = settings.deployment.TRACKING_API_PORT
    await log_info(f"Запуск Tracking Service на {host}:{port}...", type_msg=TypeMsg.INFO)

    config = uvicorn.Config(
        "src.services.tracking.app:app",
        host=host,
        port=port,
        log_level="debug" if settings.system.DEBUG else "info",
    )
    server = uvicorn.Server(config)
    # Сигналы обрабатывает main()
    server.install_signal_handlers = lambda: None

    task = asyncio.create_task(server.serve())
    _running_tasks.append(task)
    try:
        await task
    except asyncio.CancelledError:
        await log_info("Tracking Service: graceful shutdown", type_msg=TypeMsg.DEBUG)
        server.should_exit = True


async def run_migrate() -> None:
    """Применяет migrations/init.sql."""
    from src.infra.database import close_db, init_db

    await init_db()
    await close_db()


async def run_seed() -> None:
    """Применяет схему и загружает демо-данные в PostgreSQL."""
    from seed_db import seed

    await seed()


async def main(mode: str | None = None) -> None:
    """
    Главная функция запуска.

    Args:
        mode: Режим запуска (tracking, migrate, seed).
              Если None, берётся из COMPONENT_MODE.
    """
    setup_logging()
    setup_signal_handlers()

    mode = mode or settings.system.COMPONENT_MODE or "tracking"
    await log_info(
        f"{settings.system.PROJECT_NAME} v{settings.system.VERSION}: запуск в режиме '{mode}'",
        type_msg=TypeMsg.INFO,
    )

    try:
        if mode == "tracking":
            await run_tracking_service()
        elif mode == "migrate":
            await run_migrate()
        elif mode == "seed":
            await run_seed()
        else:
            await log_error(f"Неизвестный режим: {mode}")
    except asyncio.CancelledError:
        await log_info("Задача отменена, выполняется graceful shutdown", type_msg=TypeMsg.INFO)
    except Exception as e:
        await log_error(f"Критическая ошибка: {e}", exc_info=True)
        raise
    finally:
        await log_info("Приложение остановлено", type_msg=TypeMsg.INFO)


def print_usage() -> None:
    """Выводит справку по использованию."""
    print(f"""
{settings.system.PROJECT_NAME} v{settings.system.VERSION}: live-трекинг автобусов

Использование:
    python main.py [mode]

Режимы:
    tracking  : HTTP API + WebSocket (:{settings.deployment.TRACKING_API_PORT})
    migrate   : применить migrations/init.sql
    seed      : схема + демо-данные (маршруты, автобусы, рейсы)

Без аргумента режим берётся из COMPONENT_MODE.
    """)


if __name__ == "__main__":
    mode = None

    if len(sys.argv) > 1:
        arg = sys.argv[1].lower()
        if arg in ("--help", "-h"):
            print_usage()
            sys.exit(0)
        elif arg in VALID_MODES:
            mode = arg
        else:
            print(f"Ошибка: неизвестный режим '{arg}'")
            print_usage()
            sys.exit(1)

    try:
        asyncio.run(main(mode))
    except KeyboardInterrupt:
        pass
