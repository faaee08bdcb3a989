# src/worker/base.py
"""
Базовый класс потребителей событий.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Sequence

from src.common.constants import TypeMsg
from src.common.logger import log_debug, log_info, log_warning
from src.infra.event_bus import EventBus
from src.infra.redis_client import RedisClient
from src.shared.events import BookingEvent, EventEnvelope, decode_event


class BaseConsumer(ABC):
    """
    Базовый класс для всех потребителей.

    Подписывает свою очередь на шаблоны ключей и обрабатывает
    типизированные события. Исключение из handle_event уходит в шину:
    сообщение отклоняется и попадает в dead letter.
    """

    # Подавлять повторную обработку того же eventId (нужен redis)
    deduplicate: bool = False

    def __init__(
        self,
        event_bus: EventBus,
        redis: Optional[RedisClient] = None,
        processed_ttl: int = 3600,
    ) -> None:
        """
        Args:
            event_bus: Шина событий
            redis: Клиент Redis для маркеров обработанных событий
            processed_ttl: Время жизни маркера (секунды)
        """
        self.event_bus = event_bus
        self.redis = redis
        self.processed_ttl = processed_ttl
        self._running = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Имя потребителя."""

    @property
    @abstractmethod
    def queue_name(self) -> str:
        """Имя очереди."""

    @property
    @abstractmethod
    def bindings(self) -> Sequence[str]:
        """Шаблоны ключей маршрутизации."""

    @abstractmethod
    async def handle_event(self, event: BookingEvent) -> None:
        """
        Обрабатывает событие.

        Args:
            event: Типизированное событие
        """

    @property
    def is_active(self) -> bool:
        return self._running and self.event_bus.is_consuming(self.queue_name)

    async def start(self) -> None:
        """Подписывает очередь и начинает потребление."""
        if self.is_active:
            return

        await self.event_bus.subscribe(self.queue_name, list(self.bindings), self._on_message)
        self._running = True
        await log_info(f"Потребитель {self.name} запущен ({self.queue_name})", type_msg=TypeMsg.INFO)

    async def stop(self) -> None:
        """Останавливает потребление."""
        if not self._running:
            return

        self._running = False
        await self.event_bus.unsubscribe(self.queue_name)
        await log_info(f"Потребитель {self.name} остановлен", type_msg=TypeMsg.INFO)

    async def _on_message(self, envelope: EventEnvelope) -> None:
        event = decode_event(envelope)
        if event is None:
            await log_debug(
                f"{self.name}: неизвестный тип события {envelope.type}, пропуск",
                extra={"event_id": envelope.event_id},
            )
            return

        if self.deduplicate and not await self._mark_processed(envelope.event_id):
            await log_debug(f"{self.name}: событие {envelope.event_id} уже обработано")
            return

        await log_debug(f"{self.name} получил {envelope.type} ({envelope.event_id})")
        await self.handle_event(event)

    async def _mark_processed(self, event_id: str) -> bool:
        """True, если событие обрабатывается впервые."""
        if self.redis is None:
            return True
        try:
            return await self.redis.set_nx(
                f"event:processed:{self.queue_name}:{event_id}",
                "1",
                ttl=self.processed_ttl,
            )
        except Exception as e:
            await log_warning(f"{self.name}: маркер обработки недоступен ({e}), обрабатываем")
            return True
