# medride/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины - config/config.json.
Секретные данные и адреса хостов переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


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
    PROJECT_NAME: str = "medride_dispatch"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"


class DeploymentSettings(BaseModel):
    """Настройки развертывания."""
    DISPATCH_HOST: str = "0.0.0.0"
    DISPATCH_PORT: int = 8085


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760


class DomainSettings(BaseModel):
    """Настройки домена: локальное время для надбавок."""
    TIMEZONE: str = "America/New_York"


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "medride"
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
    """Настройки Redis (мост fan-out между инстансами)."""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "medride"
    REDIS_MAX_CONNECTIONS: int = 50
    FANOUT_BRIDGE_ENABLED: bool = False

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


class AuthSettings(BaseModel):
    """Настройки проверки bearer-токенов."""
    JWT_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"

    @field_validator("JWT_SECRET", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Секрет всегда берётся из окружения, если он там задан."""
        return os.getenv("JWT_SECRET", "") or v or ""


class FareSettings(BaseModel):
    """Тарифы по умолчанию для первичного создания записи pricing_config."""
    BASE_FARE: float = 5.0
    PER_MILE_RATE: float = 2.5
    MINIMUM_FARE: float = 10.0
    CANCELLATION_FEE: float = 5.0
    SURGE_MULTIPLIER_MIN: float = 1.0
    SURGE_MULTIPLIER_MAX: float = 3.0
    NIGHT_CHARGE: float = 0.0
    PEAK_HOUR_CHARGE: float = 0.0
    HOLIDAY_CHARGE: float = 0.0
    HOLIDAYS: list[str] = Field(default_factory=list)


class DispatchSettings(BaseModel):
    """Настройки гео-поиска заказов и истории позиций водителей."""
    DEFAULT_RADIUS_METERS: int = 10000
    MAX_RADIUS_METERS: int = 100000
    NEARBY_LIMIT: int = 100
    LOCATION_HISTORY_LIMIT: int = 100


class PresenceSettings(BaseModel):
    """Настройки учёта живых соединений."""
    SWEEP_INTERVAL_SECONDS: int = 60
    IDLE_TIMEOUT_SECONDS: int = 120


class ReconcilerSettings(BaseModel):
    """Настройки очистки поездок-сирот."""
    RECONCILER_ENABLED: bool = True
    RECONCILER_RUN_AT_HOUR: int = 0
    RECONCILER_INTERVAL_HOURS: int = 24
    RECONCILER_BATCH_SIZE: int = 500


# Переменные окружения, которые переопределяют значения из config.json
_ENV_OVERRIDES: tuple[str, ...] = (
    "ENVIRONMENT",
    "DISPATCH_HOST",
    "DB_HOST",
    "DB_PORT",
    "DB_NAME",
    "DB_USER",
    "DB_PASSWORD",
    "REDIS_HOST",
    "REDIS_PORT",
    "REDIS_PASSWORD",
    "JWT_SECRET",
    "LOG_LEVEL",
)


def _section(model: type[BaseModel], data: dict[str, Any]) -> BaseModel:
    """Собирает секцию настроек из плоского словаря по именам полей модели."""
    values = {name: data[name] for name in model.model_fields if name in data}
    return model(**values)


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    system: SystemSettings = Field(default_factory=SystemSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    domain: DomainSettings = Field(default_factory=DomainSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    fares: FareSettings = Field(default_factory=FareSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    presence: PresenceSettings = Field(default_factory=PresenceSettings)
    reconciler: ReconcilerSettings = Field(default_factory=ReconcilerSettings)

    @classmethod
    def from_dict(cls, config_data: dict[str, Any]) -> "Settings":
        """
        Создаёт объект Settings из плоского словаря.
        Значения из окружения имеют приоритет над файлом.
        """
        data = dict(config_data)
        for key in _ENV_OVERRIDES:
            env_value = os.getenv(key)
            if env_value:
                data[key] = env_value

        return cls(
            system=_section(SystemSettings, data),
            deployment=_section(DeploymentSettings, data),
            logging=_section(LoggingSettings, data),
            domain=_section(DomainSettings, data),
            database=_section(DatabaseSettings, data),
            redis=_section(RedisSettings, data),
            auth=_section(AuthSettings, data),
            fares=_section(FareSettings, data),
            dispatch=_section(DispatchSettings, data),
            presence=_section(PresenceSettings, data),
            reconciler=_section(ReconcilerSettings, data),
        )

    @classmethod
    def from_config_json(cls) -> "Settings":
        """Создаёт объект Settings из config.json."""
        return cls.from_dict(load_config_json())


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Использует кэширование для производительности.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()
