# src/shared/events/__init__.py
"""
Схемы событий для RabbitMQ.

Конверт {eventId, type, timestamp, data} декодируется на границе
потребителя в один из типизированных вариантов BookingEvent.
"""

from __future__ import annotations

from typing import Union

from pydantic import ValidationError as PydanticValidationError

from src.common.exceptions import PoisonMessage
from src.shared.events.base import EventEnvelope, EventPayload, generate_event_id
from src.shared.events.booking_events import (
    BookingCancelled,
    BookingCreated,
    BookingStatusChanged,
    DriverAssigned,
)
from src.shared.events.payment_events import PaymentCompleted, PaymentFailed

BookingEvent = Union[
    BookingCreated,
    BookingStatusChanged,
    DriverAssigned,
    BookingCancelled,
    PaymentCompleted,
    PaymentFailed,
]

EVENT_REGISTRY: dict[str, type[EventPayload]] = {
    cls.EVENT_TYPE: cls
    for cls in (
        BookingCreated,
        BookingStatusChanged,
        DriverAssigned,
        BookingCancelled,
        PaymentCompleted,
        PaymentFailed,
    )
}


def decode_event(envelope: EventEnvelope) -> BookingEvent | None:
    """
    Превращает конверт в типизированное событие.

    Returns:
        Экземпляр варианта или None для неизвестного типа

    Raises:
        PoisonMessage: данные не соответствуют схеме своего типа
    """
    event_cls = EVENT_REGISTRY.get(envelope.type)
    if event_cls is None:
        return None
    try:
        return event_cls.model_validate(envelope.data)  # type: ignore[return-value]
    except PydanticValidationError as e:
        raise PoisonMessage(f"Некорректные данные события {envelope.type}: {e}") from e


__all__ = [
    "EventEnvelope",
    "EventPayload",
    "generate_event_id",
    "BookingEvent",
    "EVENT_REGISTRY",
    "decode_event",
    "BookingCreated",
    "BookingStatusChanged",
    "DriverAssigned",
    "BookingCancelled",
    "PaymentCompleted",
    "PaymentFailed",
]
