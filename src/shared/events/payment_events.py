# src/shared/events/payment_events.py
"""
События платёжного сервиса, на которые реагирует ядро бронирований.
"""

from __future__ import annotations

from typing import ClassVar

from src.common.constants import RoutingKeys
from src.shared.events.base import EventPayload


class PaymentCompleted(EventPayload):
    """Событие: оплата прошла."""

    EVENT_TYPE: ClassVar[str] = "PAYMENT_COMPLETED"
    ROUTING_KEY: ClassVar[str] = RoutingKeys.PAYMENT_COMPLETED

    booking_id: str
    transaction_id: str | None = None
    amount: float | None = None


class PaymentFailed(EventPayload):
    """Событие: оплата не прошла."""

    EVENT_TYPE: ClassVar[str] = "PAYMENT_FAILED"
    ROUTING_KEY: ClassVar[str] = RoutingKeys.PAYMENT_FAILED

    booking_id: str
    transaction_id: str | None = None
    reason: str | None = None
