# src/infra/context.py
"""
Контейнер ресурсов процесса.

Создаёт подключения к PostgreSQL, Redis и RabbitMQ один раз из настроек
и собирает поверх них репозиторий, сервис бронирований и диспетчер
уведомлений. Владельцы контекста: lifespan FastAPI и запускалка воркеров.
"""

from __future__ import annotations

from typing import Optional

from src.common.constants import NotificationChannel, TypeMsg
from src.common.logger import log_info
from src.config.loader import Settings, get_project_root
from src.core.bookings.cache import BookingCache
from src.core.bookings.pricing import FareCalculator
from src.core.bookings.repository import BookingRepository
from src.core.bookings.service import BookingService
from src.core.notifications.locator import (
    DriverLocator,
    HttpDriverLocator,
    RedisGeoDriverLocator,
    StaticDriverLocator,
)
from src.core.notifications.service import NotificationDispatcher
from src.core.notifications.sinks import CompositeSink, LoggingSink, RedisPubSubSink
from src.infra.database import DatabaseManager
from src.infra.event_bus import EventBus
from src.infra.redis_client import RedisClient

SCHEMA_PATH = get_project_root() / "migrations" / "init.sql"


def build_locator(settings: Settings, redis: RedisClient) -> DriverLocator:
    """Выбирает источник позиций водителей по service.DRIVER_LOCATOR."""
    mode = settings.service.DRIVER_LOCATOR.lower()
    if mode == "http":
        if not settings.service.DRIVER_SERVICE_URL:
            raise ValueError("DRIVER_LOCATOR=http требует DRIVER_SERVICE_URL")
        return HttpDriverLocator(
            settings.service.DRIVER_SERVICE_URL,
            timeout=settings.service.DRIVER_SERVICE_TIMEOUT,
        )
    if mode == "static":
        return StaticDriverLocator()
    return RedisGeoDriverLocator(redis)


class AppContext:
    """Ресурсы и сервисы одного процесса."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

        self.db = DatabaseManager(
            settings.database.dsn,
            min_size=settings.database.DB_MIN_POOL_SIZE,
            max_size=settings.database.DB_MAX_POOL_SIZE,
            command_timeout=settings.database.DB_COMMAND_TIMEOUT,
            retry_attempts=settings.timeouts.STORAGE_RETRY_ATTEMPTS,
            retry_delay=settings.timeouts.STORAGE_RETRY_DELAY,
        )
        self.redis = RedisClient(
            settings.redis.url,
            namespace=settings.redis.REDIS_NAMESPACE,
            max_connections=settings.redis.REDIS_MAX_CONNECTIONS,
        )
        self.event_bus = EventBus(
            settings.rabbitmq.url,
            exchange_name=settings.rabbitmq.EXCHANGE_NAME,
            dlx_exchange=settings.rabbitmq.DLX_EXCHANGE,
            dlx_routing_key=settings.rabbitmq.DLX_ROUTING_KEY,
            dlx_queue=settings.rabbitmq.DLX_QUEUE,
            prefetch_count=settings.rabbitmq.PREFETCH_COUNT,
        )

        self.repository = BookingRepository(self.db)
        self.cache = BookingCache(self.redis, ttl=settings.redis_ttl.BOOKING_TTL)
        self.booking_service = BookingService(
            self.repository,
            self.cache,
            self.event_bus,
            FareCalculator(settings.fares, currency=settings.booking_policy.CURRENCY),
            settings.booking_policy,
        )

        self.locator = build_locator(settings, self.redis)
        logging_sink = LoggingSink()
        self.sink = CompositeSink(
            {
                NotificationChannel.SOCKET: RedisPubSubSink(
                    self.redis,
                    channel_prefix=settings.service.NOTIFICATION_CHANNEL_PREFIX,
                ),
            },
            default=logging_sink,
        )
        self.dispatcher = NotificationDispatcher(
            self.sink,
            self.locator,
            settings.booking_policy,
            settings.redis_ttl,
            redis=self.redis,
        )

    async def startup(self, apply_schema: bool = True) -> None:
        """Подключает хранилище, кэш и брокер; применяет схему БД."""
        await self.db.connect()
        if apply_schema:
            await self.db.apply_schema(SCHEMA_PATH)
        await self.redis.connect()
        await self.event_bus.connect()
        await log_info("Контекст приложения запущен", type_msg=TypeMsg.INFO)

    async def shutdown(self) -> None:
        """Дожидается уведомлений, затем закрывает брокер, кэш и хранилище."""
        await self.dispatcher.drain()
        await self.event_bus.disconnect()
        await self.redis.disconnect()
        await self.db.disconnect()
        if isinstance(self.locator, HttpDriverLocator):
            await self.locator.close()
        await log_info("Контекст приложения остановлен", type_msg=TypeMsg.INFO)

    async def health(self) -> dict[str, bool]:
        """Состояние компонентов для /health."""
        return {
            "database": await self.db.health_check(),
            "redis": await self.redis.health_check(),
            "rabbitmq": await self.event_bus.health_check(),
        }

    async def dead_letter_depth(self) -> Optional[int]:
        """Число сообщений в очереди dead letter (None, если брокер недоступен)."""
        stats = await self.event_bus.dead_letter_stats()
        return stats.message_count if stats is not None else None
