# src/core/notifications/sinks.py
"""
Приёмники уведомлений (куда физически уходит уведомление).

NotificationSink задаёт узкий интерфейс доставки. Продовый приёмник для
сокет-комнат публикует сообщение в Redis Pub/Sub (его ретранслирует
realtime-шлюз), push и SMS пишутся в лог до подключения провайдера.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol, runtime_checkable
from uuid import uuid4

from src.common.constants import NotificationChannel, TypeMsg
from src.common.logger import log_info
from src.infra.redis_client import RedisClient

_SENSITIVE_KEYS = ("phone", "email", "token", "password", "card")
_PHONE_RE = re.compile(r"\d(?=\d{4})")


@dataclass(frozen=True)
class Notification:
    """Одно уведомление одному получателю по одному каналу."""

    channel: NotificationChannel
    recipient: str
    event: str
    data: dict[str, Any] = field(default_factory=dict)
    notification_id: str = field(default_factory=lambda: f"ntf_{uuid4().hex[:16]}")
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    )

    def to_message(self) -> dict[str, Any]:
        return {
            "id": self.notification_id,
            "event": self.event,
            "data": self.data,
            "timestamp": self.created_at,
        }


@runtime_checkable
class NotificationSink(Protocol):
    """Доставка уведомления. Исключение = уведомление не доставлено."""

    async def send(self, notification: Notification) -> None: ...


def mask_sensitive_data(data: Mapping[str, Any]) -> dict[str, Any]:
    """Маскирует телефоны, email и токены перед записью в лог."""
    masked: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, Mapping):
            masked[key] = mask_sensitive_data(value)
        elif isinstance(value, str) and any(part in key.lower() for part in _SENSITIVE_KEYS):
            if "@" in value:
                name, _, domain = value.partition("@")
                masked[key] = f"{name[:1]}***@{domain}"
            elif value.isdigit() or value.startswith("+"):
                masked[key] = _PHONE_RE.sub("*", value)
            else:
                masked[key] = "***"
        else:
            masked[key] = value
    return masked


class RedisPubSubSink:
    """Публикует уведомление в канал <prefix>:<комната> Redis Pub/Sub."""

    def __init__(self, redis: RedisClient, channel_prefix: str = "notifications") -> None:
        self._redis = redis
        self._prefix = channel_prefix

    async def send(self, notification: Notification) -> None:
        await self._redis.publish(f"{self._prefix}:{notification.recipient}", notification.to_message())


class LoggingSink:
    """Пишет уведомление в лог (push/SMS без внешнего провайдера)."""

    async def send(self, notification: Notification) -> None:
        await log_info(
            f"[{notification.channel.value}] {notification.event} -> {notification.recipient}",
            type_msg=TypeMsg.INFO,
            extra={"notification": mask_sensitive_data(notification.data)},
        )


class CompositeSink:
    """Маршрутизирует уведомление в приёмник своего канала."""

    def __init__(
        self,
        routes: Mapping[NotificationChannel, NotificationSink],
        default: NotificationSink,
    ) -> None:
        self._routes = dict(routes)
        self._default = default

    async def send(self, notification: Notification) -> None:
        sink = self._routes.get(notification.channel, self._default)
        await sink.send(notification)


class InMemorySink:
    """Собирает уведомления в список. Для тестов и локального запуска."""

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.sent: list[Notification] = []
        self._fail_with = fail_with

    async def send(self, notification: Notification) -> None:
        if self._fail_with is not None:
            raise self._fail_with
        self.sent.append(notification)

    def by_recipient(self, recipient: str) -> list[Notification]:
        return [n for n in self.sent if n.recipient == recipient]
