# src/shared/events/base.py
"""
Базовые классы для доменных событий и конверт сообщения на шине.

Формат на проводе: {eventId, type, timestamp, data}.
"""

from __future__ import annotations

import secrets
import string
import time
from datetime import datetime, timezone
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_event_id() -> str:
    """evt_<миллисекунды>_<9 случайных символов>: уникален для каждой публикации."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"evt_{int(time.time() * 1000)}_{suffix}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventPayload(BaseModel):
    """
    Базовый класс типизированного события.

    EVENT_TYPE: тег варианта (поле type конверта).
    ROUTING_KEY: ключ маршрутизации на topic exchange.
    Поля сериализуются в camelCase.
    """

    EVENT_TYPE: ClassVar[str] = ""
    ROUTING_KEY: ClassVar[str] = ""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    @property
    def routing_key(self) -> str:
        return self.ROUTING_KEY

    def to_data(self) -> dict[str, Any]:
        """Данные события для поля data конверта."""
        return self.model_dump(mode="json", by_alias=True)


class EventEnvelope(BaseModel):
    """Конверт сообщения на шине."""

    model_config = ConfigDict(populate_by_name=True)

    event_id: str = Field(default_factory=generate_event_id, alias="eventId")
    type: str
    timestamp: datetime = Field(default_factory=utcnow)
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def wrap(cls, event: EventPayload) -> "EventEnvelope":
        """Оборачивает событие в конверт со свежим eventId."""
        return cls(type=event.EVENT_TYPE, data=event.to_data())

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "EventEnvelope":
        return cls.model_validate_json(raw)
