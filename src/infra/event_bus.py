# src/infra/event_bus.py
"""
Шина событий на базе RabbitMQ (aio_pika).

Один durable topic exchange, durable-очереди с ручным подтверждением
и dead-letter маршрутизацией. Сообщение, обработчик которого упал,
отклоняется без возврата в очередь, а его копия вместе с текстом
ошибки публикуется в dead-letter exchange для разбора.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Sequence

import aio_pika
from aio_pika import DeliveryMode, ExchangeType, Message
from aio_pika.abc import (
    AbstractChannel,
    AbstractExchange,
    AbstractIncomingMessage,
    AbstractQueue,
    AbstractRobustConnection,
)
from aio_pika.exceptions import AMQPException

from src.common.constants import TypeMsg
from src.common.exceptions import BrokerUnavailable
from src.common.logger import get_logger, log_error, log_info, log_warning
from src.shared.events.base import EventEnvelope, EventPayload, utcnow

BROKER_ERRORS: tuple[type[BaseException], ...] = (
    AMQPException,
    ConnectionError,
    asyncio.TimeoutError,
    RuntimeError,
)

# Обработчик конверта. Исключение = сообщение уходит в dead letter
EnvelopeHandler = Callable[[EventEnvelope], Awaitable[None]]


@dataclass
class Subscription:
    """Активная подписка очереди на exchange."""

    queue_name: str
    patterns: tuple[str, ...]
    handler: EnvelopeHandler
    queue: AbstractQueue | None = None
    consumer_tag: str | None = None


@dataclass(frozen=True)
class QueueStats:
    """Глубина очереди и число её потребителей."""

    queue: str
    message_count: int
    consumer_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "queue": self.queue,
            "messageCount": self.message_count,
            "consumerCount": self.consumer_count,
        }


class EventBus:
    """
    Шина событий поверх RabbitMQ.

    Создаётся один раз на процесс (см. AppContext). Соединение
    robust: после обрыва aio_pika восстанавливает канал, exchange,
    очереди, привязки и потребителей.
    """

    def __init__(
        self,
        url: str,
        *,
        exchange_name: str = "booking_events",
        dlx_exchange: str = "dlx.exchange",
        dlx_routing_key: str = "dlx.routing.key",
        dlx_queue: str = "dlx.queue",
        prefetch_count: int = 10,
    ) -> None:
        self._url = url
        self._exchange_name = exchange_name
        self._dlx_exchange_name = dlx_exchange
        self._dlx_routing_key = dlx_routing_key
        self._dlx_queue_name = dlx_queue
        self._prefetch_count = prefetch_count

        self._connection: AbstractRobustConnection | None = None
        self._channel: AbstractChannel | None = None
        self._exchange: AbstractExchange | None = None
        self._dlx_exchange: AbstractExchange | None = None
        self._subscriptions: dict[str, Subscription] = {}

    @property
    def is_connected(self) -> bool:
        """Проверяет, активно ли соединение и канал."""
        return (
            self._connection is not None
            and not self._connection.is_closed
            and self._channel is not None
            and not self._channel.is_closed
        )

    @property
    def dead_letter_arguments(self) -> dict[str, str]:
        """Аргументы очереди, направляющие отклонённые сообщения в DLX."""
        return {
            "x-dead-letter-exchange": self._dlx_exchange_name,
            "x-dead-letter-routing-key": self._dlx_routing_key,
        }

    @property
    def dlx_queue_name(self) -> str:
        return self._dlx_queue_name

    # =========================================================================
    # СОЕДИНЕНИЕ
    # =========================================================================

    async def connect(self) -> None:
        """Подключается к RabbitMQ и объявляет основной и dead-letter exchange."""
        if self.is_connected:
            return

        await log_info("Подключение к RabbitMQ...", type_msg=TypeMsg.INFO)
        try:
            self._connection = await aio_pika.connect_robust(self._url)
            self._connection.reconnect_callbacks.add(self._on_reconnect)
            self._channel = await self._connection.channel()
            await self._channel.set_qos(prefetch_count=self._prefetch_count)

            self._exchange = await self._channel.declare_exchange(
                self._exchange_name,
                ExchangeType.TOPIC,
                durable=True,
            )
            self._dlx_exchange = await self._channel.declare_exchange(
                self._dlx_exchange_name,
                ExchangeType.DIRECT,
                durable=True,
            )
            dlx_queue = await self._channel.declare_queue(self._dlx_queue_name, durable=True)
            await dlx_queue.bind(self._dlx_exchange, routing_key=self._dlx_routing_key)
        except BROKER_ERRORS as e:
            await log_error(f"Не удалось подключиться к RabbitMQ: {e}")
            raise BrokerUnavailable("Брокер сообщений недоступен") from e

        await log_info(
            f"Подключение к RabbitMQ установлено, exchange={self._exchange_name}",
            type_msg=TypeMsg.INFO,
        )

    def _on_reconnect(self, *args: Any) -> None:
        get_logger().warning(
            "Соединение с RabbitMQ восстановлено, подписки: %s",
            ", ".join(self._subscriptions) or "нет",
        )

    async def disconnect(self) -> None:
        """Закрывает соединение с RabbitMQ."""
        if self._connection is not None:
            await self._connection.close()
            await log_info("Соединение с RabbitMQ закрыто", type_msg=TypeMsg.INFO)
        self._connection = None
        self._channel = None
        self._exchange = None
        self._dlx_exchange = None
        self._subscriptions = {}

    async def health_check(self) -> bool:
        return self.is_connected

    # =========================================================================
    # ПУБЛИКАЦИЯ
    # =========================================================================

    async def publish(self, event: EventPayload) -> str:
        """
        Публикует событие в topic exchange.

        Args:
            event: Типизированное событие

        Returns:
            eventId, сгенерированный для этой публикации

        Raises:
            BrokerUnavailable: брокер не принял сообщение
        """
        envelope = EventEnvelope.wrap(event)
        if not self.is_connected or self._exchange is None:
            raise BrokerUnavailable("Нет соединения с RabbitMQ")

        message = Message(
            body=envelope.to_json().encode(),
            content_type="application/json",
            delivery_mode=DeliveryMode.PERSISTENT,
            message_id=envelope.event_id,
            timestamp=envelope.timestamp,
            type=envelope.type,
        )
        try:
            await self._exchange.publish(message, routing_key=event.routing_key)
        except BROKER_ERRORS as e:
            raise BrokerUnavailable(f"Ошибка публикации {event.routing_key}: {e}") from e

        await log_info(
            f"Событие опубликовано: {event.routing_key} ({envelope.event_id})",
            type_msg=TypeMsg.DEBUG,
        )
        return envelope.event_id

    async def publish_raw(
        self,
        exchange: str,
        routing_key: str,
        body: bytes | str | dict[str, Any],
        headers: dict[str, Any] | None = None,
    ) -> None:
        """
        Публикует произвольное persistent-сообщение.

        Args:
            exchange: Имя exchange (основной или dead-letter)
            routing_key: Ключ маршрутизации
            body: Тело; словарь сериализуется в JSON
            headers: Заголовки AMQP

        Raises:
            BrokerUnavailable: нет соединения, неизвестный exchange или отказ брокера
        """
        targets = {self._exchange_name: self._exchange, self._dlx_exchange_name: self._dlx_exchange}
        target = targets.get(exchange)
        if not self.is_connected or target is None:
            raise BrokerUnavailable(f"Exchange {exchange} недоступен")

        if isinstance(body, dict):
            body = json.dumps(body, ensure_ascii=False, default=str)
        if isinstance(body, str):
            body = body.encode()

        message = Message(
            body=body,
            headers=headers or {},
            content_type="application/json",
            delivery_mode=DeliveryMode.PERSISTENT,
        )
        try:
            await target.publish(message, routing_key=routing_key)
        except BROKER_ERRORS as e:
            raise BrokerUnavailable(f"Ошибка публикации в {exchange}: {e}") from e

    async def publish_dead_letter(self, record: dict[str, Any]) -> None:
        """Публикует запись о непрошедшем сообщении в dead-letter exchange."""
        await self.publish_raw(self._dlx_exchange_name, self._dlx_routing_key, record)

    # =========================================================================
    # ИНСПЕКЦИЯ ОЧЕРЕДЕЙ
    # =========================================================================

    @asynccontextmanager
    async def _inspection_channel(self) -> AsyncIterator[AbstractChannel]:
        """
        Короткоживущий канал для служебных операций.

        Ошибка passive-объявления (очереди нет) закрывает канал,
        поэтому основной канал потребителей для этого не используется.
        """
        if not self.is_connected or self._connection is None:
            raise BrokerUnavailable("Нет соединения с RabbitMQ")

        channel = await self._connection.channel()
        try:
            yield channel
        finally:
            if not channel.is_closed:
                await channel.close()

    async def queue_stats(self, queue_name: str) -> QueueStats | None:
        """
        Число сообщений и потребителей очереди.

        Returns:
            QueueStats или None, если очереди нет или брокер недоступен
        """
        try:
            async with self._inspection_channel() as channel:
                queue = await channel.declare_queue(queue_name, passive=True)
        except (BrokerUnavailable, *BROKER_ERRORS) as e:
            await log_warning(f"Статистика очереди {queue_name} недоступна: {e}", extra={"queue": queue_name})
            return None

        result = queue.declaration_result
        return QueueStats(
            queue=queue_name,
            message_count=result.message_count or 0,
            consumer_count=result.consumer_count or 0,
        )

    async def dead_letter_stats(self) -> QueueStats | None:
        """Сколько отклонённых сообщений ждут разбора в dlx.queue."""
        return await self.queue_stats(self._dlx_queue_name)

    async def purge_queue(self, queue_name: str) -> int:
        """
        Удаляет все сообщения очереди (сама очередь остаётся).

        Returns:
            Количество удалённых сообщений

        Raises:
            BrokerUnavailable: нет соединения, очереди нет или брокер отказал
        """
        try:
            async with self._inspection_channel() as channel:
                queue = await channel.declare_queue(queue_name, passive=True)
                result = await queue.purge()
        except BROKER_ERRORS as e:
            raise BrokerUnavailable(f"Не удалось очистить {queue_name}: {e}") from e

        purged = result.message_count or 0
        await log_info(f"Очередь {queue_name} очищена: {purged} сообщений", extra={"queue": queue_name})
        return purged

    async def delete_queue(self, queue_name: str, *, if_unused: bool = False, if_empty: bool = False) -> None:
        """
        Удаляет очередь. Если она потребляется этим процессом, подписка снимается.

        Raises:
            BrokerUnavailable: нет соединения или брокер отказал
        """
        await self.unsubscribe(queue_name)
        try:
            async with self._inspection_channel() as channel:
                await channel.queue_delete(queue_name, if_unused=if_unused, if_empty=if_empty)
        except BROKER_ERRORS as e:
            raise BrokerUnavailable(f"Не удалось удалить {queue_name}: {e}") from e

        await log_info(f"Очередь {queue_name} удалена", extra={"queue": queue_name})

    # =========================================================================
    # ПОДПИСКА
    # =========================================================================

    async def subscribe(
        self,
        queue_name: str,
        patterns: str | Sequence[str],
        handler: EnvelopeHandler,
    ) -> str:
        """
        Объявляет durable-очередь, привязывает её к exchange и запускает потребление.

        Args:
            queue_name: Имя очереди
            patterns: Шаблон(ы) ключа маршрутизации (booking.status.*, payment.*)
            handler: Асинхронный обработчик конверта

        Returns:
            consumer tag

        Raises:
            BrokerUnavailable: нет соединения или брокер отказал
        """
        if not self.is_connected or self._channel is None or self._exchange is None:
            raise BrokerUnavailable(f"Не удалось подписать {queue_name}: нет соединения с RabbitMQ")

        bindings = (patterns,) if isinstance(patterns, str) else tuple(patterns)
        subscription = Subscription(queue_name=queue_name, patterns=bindings, handler=handler)

        try:
            queue = await self._channel.declare_queue(
                queue_name,
                durable=True,
                arguments=self.dead_letter_arguments,
            )
            for pattern in bindings:
                await queue.bind(self._exchange, routing_key=pattern)
            subscription.queue = queue
            subscription.consumer_tag = await queue.consume(
                self._make_consumer(subscription),
                no_ack=False,
            )
        except BROKER_ERRORS as e:
            raise BrokerUnavailable(f"Ошибка подписки {queue_name}: {e}") from e

        self._subscriptions[queue_name] = subscription
        await log_info(
            f"Подписка {queue_name} -> {', '.join(bindings)}",
            type_msg=TypeMsg.INFO,
        )
        return subscription.consumer_tag

    async def unsubscribe(self, queue_name: str) -> None:
        """
        Останавливает потребление очереди (очередь и привязки остаются).

        cancel вызывается и при разорванном соединении: robust-очередь
        иначе восстановит этого потребителя после переподключения.
        """
        subscription = self._subscriptions.pop(queue_name, None)
        if subscription is None or subscription.queue is None or subscription.consumer_tag is None:
            return
        try:
            await subscription.queue.cancel(subscription.consumer_tag)
        except BROKER_ERRORS as e:
            await log_warning(f"Не удалось отменить потребителя {queue_name}: {e}")

    def is_consuming(self, queue_name: str) -> bool:
        """True, если очередь потребляется по живому каналу."""
        subscription = self._subscriptions.get(queue_name)
        return (
            subscription is not None
            and subscription.consumer_tag is not None
            and self.is_connected
        )

    def _make_consumer(
        self,
        subscription: Subscription,
    ) -> Callable[[AbstractIncomingMessage], Awaitable[None]]:
        """Создаёт callback потребителя с ручным ack и dead-lettering."""

        async def consumer(message: AbstractIncomingMessage) -> None:
            try:
                envelope = EventEnvelope.from_json(message.body)
                await subscription.handler(envelope)
            except Exception as e:
                await log_error(
                    f"Ошибка обработки сообщения в {subscription.queue_name}: {e}",
                    extra={"routing_key": message.routing_key, "message_id": message.message_id},
                    exc_info=True,
                )
                await message.reject(requeue=False)
                await self._dead_letter(message, e, subscription.queue_name)
                return

            await message.ack()

        return consumer

    async def _dead_letter(
        self,
        message: AbstractIncomingMessage,
        error: Exception,
        queue_name: str,
    ) -> None:
        raw = message.body.decode("utf-8", errors="replace")
        try:
            original: Any = json.loads(raw)
        except json.JSONDecodeError:
            original = raw

        record = {
            "originalMessage": original,
            "error": str(error),
            "errorType": type(error).__name__,
            "queue": queue_name,
            "routingKey": message.routing_key,
            "timestamp": utcnow().isoformat().replace("+00:00", "Z"),
        }
        try:
            await self.publish_dead_letter(record)
        except BrokerUnavailable as e:
            await log_error(f"Сообщение из {queue_name} не попало в DLX: {e}", extra=record)
            return

        await log_warning(
            f"Сообщение из {queue_name} отправлено в DLX",
            extra={"queue": queue_name, "error": str(error)},
        )
