# src/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины: config/config.json (плоские ключи).
Любой ключ переопределяется переменной окружения с тем же именем.
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
    """Возвращает путь к файлу конфигурации (CONFIG_PATH переопределяет)."""
    override = os.getenv("CONFIG_PATH")
    if override:
        return Path(override)
    return get_project_root() / "config" / "config.json"


def load_config_json(path: Path | None = None) -> dict[str, Any]:
    """Загружает config.json и возвращает словарь без ключей-комментариев."""
    config_path = path or get_config_path()
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
    PROJECT_NAME: str = "booking_core"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "colored"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/booking_core.log"
    LOG_MAX_BYTES: int = 10485760

    @field_validator("LOG_FORMAT")
    @classmethod
    def check_format(cls, v: str) -> str:
        if v not in ("colored", "json"):
            raise ValueError("LOG_FORMAT должен быть 'colored' или 'json'")
        return v


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "bookings"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 2
    DB_MAX_POOL_SIZE: int = 10
    DB_COMMAND_TIMEOUT: int = 30

    @property
    def dsn(self) -> str:
        """Строка подключения для asyncpg."""
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
    REDIS_NAMESPACE: str = ""
    REDIS_MAX_CONNECTIONS: int = 50

    @property
    def url(self) -> str:
        """URL подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class RedisTTLSettings(BaseModel):
    """Время жизни ключей Redis (секунды)."""
    BOOKING_TTL: int = 300
    DRIVERS_NOTIFIED_TTL: int = 300
    NOTIFICATION_LOG_TTL: int = 86400
    PROCESSED_EVENT_TTL: int = 3600


class RabbitMQSettings(BaseModel):
    """Настройки RabbitMQ."""
    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"
    RABBITMQ_URL: str = ""
    EXCHANGE_NAME: str = "booking_events"
    DLX_EXCHANGE: str = "dlx.exchange"
    DLX_ROUTING_KEY: str = "dlx.routing.key"
    DLX_QUEUE: str = "dlx.queue"
    PREFETCH_COUNT: int = 10

    @property
    def url(self) -> str:
        """URL подключения к RabbitMQ (RABBITMQ_URL имеет приоритет)."""
        if self.RABBITMQ_URL:
            return self.RABBITMQ_URL
        vhost = self.RABBITMQ_VHOST if self.RABBITMQ_VHOST.startswith("/") else f"/{self.RABBITMQ_VHOST}"
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}{vhost}"
        )


class ServiceSettings(BaseModel):
    """Настройки HTTP-сервиса бронирований и внешних зависимостей."""
    HOST: str = "0.0.0.0"
    PORT: int = 3003
    SERVICE_TOKEN: str = ""
    DRIVER_LOCATOR: str = "redis"
    DRIVER_SERVICE_URL: str = ""
    DRIVER_SERVICE_TIMEOUT: float = 3.0
    NOTIFICATION_CHANNEL_PREFIX: str = "notifications"


class BookingPolicySettings(BaseModel):
    """Бизнес-политики бронирования."""
    AVERAGE_SPEED_KMH: float = 30.0
    CANCELLATION_GRACE_MINUTES: int = 5
    CANCELLATION_FEE_PERCENT: float = 50.0
    DRIVER_CANCEL_REFUND_PERCENT: float = 50.0
    APOLOGY_VOUCHER_AMOUNT: int = 20000
    CURRENCY: str = "VND"
    DEFAULT_NEARBY_RADIUS_M: int = 5000
    SEARCH_RADIUS_M: dict[str, int] = Field(default_factory=lambda: {
        "BIKE": 2000,
        "STANDARD": 5000,
        "PREMIUM": 10000,
        "LUXURY": 15000,
    })
    PENDING_TIMEOUT_SECONDS: int = 600
    SMS_ON_ASSIGNMENT: bool = True


class FareSettings(BaseModel):
    """Тарифы для оценки стоимости при создании брони."""
    BASE_FARE: float = 10000.0
    FARE_PER_KM: float = 8000.0
    FARE_PER_MINUTE: float = 500.0
    MULTIPLIERS: dict[str, float] = Field(default_factory=lambda: {
        "BIKE": 0.6,
        "STANDARD": 1.0,
        "PREMIUM": 1.5,
        "LUXURY": 2.2,
    })


class TimeoutSettings(BaseModel):
    """Настройки таймаутов и интервалов (секунды)."""
    HEALTH_CHECK_INTERVAL: int = 60
    TIMEOUT_SWEEP_INTERVAL: int = 30
    STORAGE_RETRY_ATTEMPTS: int = 3
    STORAGE_RETRY_DELAY: float = 0.5


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

_SECTIONS: dict[str, type[BaseModel]] = {
    "system": SystemSettings,
    "logging": LoggingSettings,
    "database": DatabaseSettings,
    "redis": RedisSettings,
    "redis_ttl": RedisTTLSettings,
    "rabbitmq": RabbitMQSettings,
    "service": ServiceSettings,
    "booking_policy": BookingPolicySettings,
    "fares": FareSettings,
    "timeouts": TimeoutSettings,
}


def _build_section(model: type[BaseModel], data: dict[str, Any]) -> BaseModel:
    """
    Собирает секцию из плоского словаря конфигурации.

    Значение из окружения имеет приоритет; для полей-словарей
    переменная окружения должна содержать JSON.
    """
    values: dict[str, Any] = {}
    for field_name, field in model.model_fields.items():
        env_value = os.getenv(field_name)
        if env_value is not None:
            if field.annotation is not None and getattr(field.annotation, "__origin__", None) is dict:
                values[field_name] = json.loads(env_value)
            else:
                values[field_name] = env_value
        elif field_name in data:
            values[field_name] = data[field_name]
    return model(**values)


class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    system: SystemSettings = Field(default_factory=SystemSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    redis_ttl: RedisTTLSettings = Field(default_factory=RedisTTLSettings)
    rabbitmq: RabbitMQSettings = Field(default_factory=RabbitMQSettings)
    service: ServiceSettings = Field(default_factory=ServiceSettings)
    booking_policy: BookingPolicySettings = Field(default_factory=BookingPolicySettings)
    fares: FareSettings = Field(default_factory=FareSettings)
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)

    model_config = SettingsConfigDict(extra="ignore")

    @classmethod
    def from_config_json(cls, path: Path | None = None) -> "Settings":
        """
        Создаёт объект Settings из config.json.
        Секреты и адреса переопределяются из переменных окружения.
        """
        data = load_config_json(path)
        return cls(**{name: _build_section(model, data) for name, model in _SECTIONS.items()})


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает кэшированный объект настроек приложения.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


settings = get_settings()
