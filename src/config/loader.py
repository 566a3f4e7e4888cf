# src/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины: config/config.json.
Секретные данные и адреса инфраструктуры переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from src.common.constants import AmbiguousTripPolicy, OverflowPolicy, StorageBackend


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации."""
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Загружает config.json и возвращает словарь без ключей-комментариев."""
    config_path = get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    return {k: v for k, v in data.items() if not k.startswith("_comment_")}


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "bus_tracking"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    LOG_LEVEL: str = "DEBUG"
    ENVIRONMENT: str = "development"
    RUN_DEV_MODE: bool = True
    COMPONENT_MODE: str = "tracking"


class DeploymentSettings(BaseModel):
    """Настройки развертывания."""
    TRACKING_API_HOST: str = "0.0.0.0"
    TRACKING_API_PORT: int = 3000
    CORS_ORIGINS: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:4200", "http://localhost:5173"]
    )


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = True
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760
    LOG_BACKUP_COUNT: int = 5


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "bus_tracking"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 5
    DB_MAX_POOL_SIZE: int = 20
    DB_COMMAND_TIMEOUT: int = 60
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_DELAY: float = 1.0

    @field_validator("DB_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("DB_PASSWORD", "")
        return v

    @property
    def dsn(self) -> str:
        """Возвращает DSN для подключения к PostgreSQL."""
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


class RedisSettings(BaseModel):
    """Настройки Redis."""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "bus_tracking"
    REDIS_MAX_CONNECTIONS: int = 50

    @field_validator("REDIS_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("REDIS_PASSWORD", "")
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class TrackingSettings(BaseModel):
    """Настройки приёма и выдачи GPS-фиксов."""
    STORAGE_BACKEND: StorageBackend = StorageBackend.POSTGRES
    SEED_DEMO_DATA: bool = True
    ACTIVE_WINDOW_SECONDS: int = Field(default=300, gt=0)
    HISTORY_DEFAULT_LIMIT: int = Field(default=50, ge=1)
    HISTORY_MAX_LIMIT: int = Field(default=500, ge=1)
    NEARBY_DEFAULT_RADIUS_M: float = Field(default=5000.0, gt=0)
    AMBIGUOUS_TRIP_POLICY: AmbiguousTripPolicy = AmbiguousTripPolicy.LATEST


class FanoutSettings(BaseModel):
    """Настройки рассылки по WebSocket."""
    QUEUE_MAX_SIZE: int = Field(default=100, ge=1)
    OVERFLOW_POLICY: OverflowPolicy = OverflowPolicy.DROP_OLDEST
    LOCK_SHARDS: int = Field(default=16, ge=1)
    SEND_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    REDIS_BRIDGE_ENABLED: bool = False
    REDIS_CHANNEL: str = "bus_tracking:fanout"


class AuthSettings(BaseModel):
    """Настройки доступа к приёму координат."""
    INGEST_API_TOKEN: str = ""

    @field_validator("INGEST_API_TOKEN", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает токен из переменных окружения."""
        if not v:
            return os.getenv("INGEST_API_TOKEN", "")
        return v


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

SectionT = TypeVar("SectionT", bound=BaseModel)

# Ключи, которые переопределяются переменными окружения (Docker, секреты)
ENV_OVERRIDES: frozenset[str] = frozenset({
    "COMPONENT_MODE",
    "TRACKING_API_HOST",
    "TRACKING_API_PORT",
    "DB_HOST",
    "DB_PORT",
    "DB_NAME",
    "DB_USER",
    "DB_PASSWORD",
    "REDIS_HOST",
    "REDIS_PORT",
    "REDIS_PASSWORD",
    "STORAGE_BACKEND",
    "REDIS_BRIDGE_ENABLED",
    "INGEST_API_TOKEN",
})


def build_section(section_cls: type[SectionT], data: dict[str, Any]) -> SectionT:
    """
    Собирает секцию настроек из плоского словаря config.json.

    Берутся только ключи, объявленные в секции; значения из ENV_OVERRIDES
    имеют приоритет над файлом.
    """
    values: dict[str, Any] = {}
    for key in section_cls.model_fields:
        env_value = os.getenv(key) if key in ENV_OVERRIDES else None
        if env_value is not None and env_value != "":
            values[key] = env_value
        elif key in data:
            values[key] = data[key]
    return section_cls(**values)


class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    system: SystemSettings = Field(default_factory=SystemSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    tracking: TrackingSettings = Field(default_factory=TrackingSettings)
    fanout: FanoutSettings = Field(default_factory=FanoutSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        """Создаёт Settings из плоского словаря в формате config.json."""
        return cls(
            system=build_section(SystemSettings, data),
            deployment=build_section(DeploymentSettings, data),
            logging=build_section(LoggingSettings, data),
            database=build_section(DatabaseSettings, data),
            redis=build_section(RedisSettings, data),
            tracking=build_section(TrackingSettings, data),
            fanout=build_section(FanoutSettings, data),
            auth=build_section(AuthSettings, data),
        )

    @classmethod
    def from_config_json(cls) -> "Settings":
        """
        Создаёт объект Settings из config.json.
        Секреты переопределяются из переменных окружения.
        """
        return cls.from_dict(load_config_json())


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Перед чтением config.json подгружает .env из корня проекта.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


settings = get_settings()
