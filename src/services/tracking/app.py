# src/services/tracking/app.py
"""
FastAPI приложение Tracking Service.

REST endpoints:
- /api/v1/...: приём и выборки позиций (routes.py)
- GET /health: проверка здоровья
- GET /stats: статистика приёма и рассылки

WebSocket endpoints:
- /ws/locations: подписки на обновления (ws.py)
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info, setup_logging
from src.config import settings
from src.core.tracking.errors import TrackingError
from src.services.tracking import routes, ws
from src.shared.models.common import ErrorResponse, HealthStatus

SERVICE_NAME = "tracking_service"

_started_at = time.monotonic()


# =============================================================================
# LIFESPAN
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Жизненный цикл приложения."""
    global _started_at

    setup_logging()
    await log_info("Tracking Service запускается...", type_msg=TypeMsg.INFO)

    from src.services.tracking.dependencies import init_dependencies, close_dependencies
    await init_dependencies()
    _started_at = time.monotonic()

    yield

    await close_dependencies()
    await log_info("Tracking Service остановлен", type_msg=TypeMsg.INFO)


# =============================================================================
# ОБРАБОТКА ОШИБОК
# =============================================================================

def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message).model_dump(),
    )


def describe_validation_errors(errors: list[dict[str, Any]]) -> str:
    """
    Превращает ошибки схемы запроса в одно сообщение.
    Отсутствующие поля перечисляются вместе: "Missing required fields: a, b".
    """
    missing: list[str] = []
    invalid: list[str] = []
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path", "header")]
        field = ".".join(loc) or "body"
        if error.get("type") == "missing":
            missing.append(field)
        else:
            invalid.append(f"{field}: {error.get('msg', 'invalid value')}")

    parts = []
    if missing:
        parts.append(f"Missing required fields: {', '.join(missing)}")
    if invalid:
        parts.append(f"Invalid values: {'; '.join(invalid)}")
    return ". ".join(parts) or "Invalid request"


async def tracking_error_handler(request: Request, exc: TrackingError) -> JSONResponse:
    if exc.status_code >= 500:
        await log_error(f"{request.method} {request.url.path}: {exc.message}")
    return _error(exc.status_code, exc.message)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(status.HTTP_400_BAD_REQUEST, describe_validation_errors(exc.errors()))


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    await log_error(f"{request.method} {request.url.path}: {exc!r}", exc_info=True)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


# =============================================================================
# ПРИЛОЖЕНИЕ
# =============================================================================

def create_app() -> FastAPI:
    application = FastAPI(
        title="Bus Tracking Service",
        description="Приём GPS-фиксов автобусов и рассылка позиций подписчикам в реальном времени.",
        version=settings.system.VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.deployment.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_exception_handler(TrackingError, tracking_error_handler)
    application.add_exception_handler(RequestValidationError, request_validation_handler)
    application.add_exception_handler(StarletteHTTPException, http_exception_handler)
    application.add_exception_handler(Exception, unhandled_exception_handler)

    application.include_router(routes.router)
    application.include_router(ws.router)
    application.add_api_route("/health", health_check, methods=["GET"], response_model=HealthStatus, tags=["Health"])
    application.add_api_route("/stats", get_stats, methods=["GET"], tags=["Stats"])
    return application


# =============================================================================
# HEALTH CHECK / STATS
# =============================================================================

async def health_check() -> HealthStatus:
    """Проверка здоровья сервиса."""
    from src.services.tracking.dependencies import get_bridge, get_db, get_redis, get_store

    deps: dict[str, str] = {}

    store = await get_store()
    deps["store"] = store.name

    db = get_db()
    if db is not None:
        deps["postgres"] = "healthy" if await db.health_check() else "unhealthy"

    redis = get_redis()
    if redis is not None:
        deps["redis"] = "healthy" if await redis.health_check() else "unhealthy"
    elif get_bridge() is None:
        deps["redis"] = "disabled"

    unhealthy = [name for name, state in deps.items() if state == "unhealthy"]
    overall = "healthy" if not unhealthy else "degraded"

    return HealthStatus(
        service=SERVICE_NAME,
        status=overall,
        version=settings.system.VERSION,
        uptime_seconds=round(time.monotonic() - _started_at, 1),
        dependencies=deps,
    )


async def get_stats() -> dict[str, Any]:
    """Статистика приёма, резолвера и рассылки."""
    from src.services.tracking.dependencies import get_bridge, get_fanout_router, get_ingest_service

    ingest = await get_ingest_service()
    fanout = await get_fanout_router()
    bridge = get_bridge()

    return {
        "ingestion": ingest.get_stats(),
        "fanout": fanout.get_stats(),
        "redis_bridge": bridge.get_stats() if bridge else None,
    }


app = create_app()
