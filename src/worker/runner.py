# src/worker/runner.py
"""
Запускалка потребителей и фоновых задач.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info
from src.core.bookings.service import BookingService
from src.infra.context import AppContext
from src.worker.base import BaseConsumer
from src.worker.booking_status import BookingStatusConsumer
from src.worker.matching import MatchingConsumer
from src.worker.notification import NotificationConsumer
from src.worker.payment import PaymentConsumer
from src.worker.registry import ConsumerRegistry


class PendingTimeoutSweeper:
    """Периодически переводит зависшие PENDING-бронирования в NO_DRIVER."""

    def __init__(
        self,
        booking_service: BookingService,
        timeout_seconds: int,
        interval: float = 30.0,
        batch_size: int = 100,
    ) -> None:
        self.booking_service = booking_service
        self.timeout_seconds = timeout_seconds
        self.interval = interval
        self.batch_size = batch_size
        self._task: Optional[asyncio.Task[None]] = None

    async def sweep_once(self) -> int:
        older_than = datetime.now(timezone.utc) - timedelta(seconds=self.timeout_seconds)
        return await self.booking_service.expire_pending(older_than, limit=self.batch_size)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep_once()
            except Exception as e:
                await log_error(f"Ошибка проверки таймаутов PENDING: {e}", exc_info=True)


def build_consumers(context: AppContext) -> list[BaseConsumer]:
    """Создаёт всех потребителей поверх ресурсов контекста."""
    return [
        BookingStatusConsumer(context.event_bus, context.booking_service),
        PaymentConsumer(context.event_bus, context.booking_service, context.dispatcher),
        NotificationConsumer(
            context.event_bus,
            context.booking_service,
            context.dispatcher,
            redis=context.redis,
            processed_ttl=context.settings.redis_ttl.PROCESSED_EVENT_TTL,
        ),
        MatchingConsumer(context.event_bus, context.booking_service, context.dispatcher),
    ]


async def run_workers(context: AppContext, stop_event: Optional[asyncio.Event] = None) -> None:
    """
    Запускает потребителей, мониторинг и проверку таймаутов.

    Работает до установки stop_event (или до отмены задачи).
    Контекст должен быть уже запущен: его закрывает владелец.

    Args:
        context: Запущенный контекст приложения
        stop_event: Событие остановки
    """
    settings = context.settings
    registry = ConsumerRegistry(build_consumers(context), event_bus=context.event_bus)
    sweeper = PendingTimeoutSweeper(
        context.booking_service,
        timeout_seconds=settings.booking_policy.PENDING_TIMEOUT_SECONDS,
        interval=settings.timeouts.TIMEOUT_SWEEP_INTERVAL,
    )

    await registry.start_all()
    registry.start_monitoring(settings.timeouts.HEALTH_CHECK_INTERVAL)
    sweeper.start()
    await log_info("Воркеры запущены", type_msg=TypeMsg.INFO)

    try:
        await (stop_event or asyncio.Event()).wait()
    except asyncio.CancelledError:
        await log_info("Получен сигнал остановки воркеров", type_msg=TypeMsg.INFO)
    finally:
        await sweeper.stop()
        await registry.stop_monitoring()
        await registry.stop_all()
        await log_info("Воркеры остановлены", type_msg=TypeMsg.INFO)
