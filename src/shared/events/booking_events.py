# src/shared/events/booking_events.py
"""
События жизненного цикла бронирования.
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import Field

from src.common.constants import RoutingKeys
from src.shared.events.base import EventPayload


class BookingCreated(EventPayload):
    """Событие: бронирование создано (статус PENDING)."""

    EVENT_TYPE: ClassVar[str] = "BOOKING_CREATED"
    ROUTING_KEY: ClassVar[str] = RoutingKeys.BOOKING_CREATED

    booking_id: str
    passenger_id: str
    vehicle_type: str
    pickup: dict[str, Any]
    destination: dict[str, Any]
    priority: int = 1
    matching_score: float | None = None
    scheduled: bool = False


class BookingStatusChanged(EventPayload):
    """Событие: статус бронирования изменён."""

    EVENT_TYPE: ClassVar[str] = "BOOKING_STATUS_CHANGED"
    ROUTING_KEY: ClassVar[str] = RoutingKeys.BOOKING_STATUS_PREFIX

    booking_id: str
    old_status: str
    new_status: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def routing_key(self) -> str:
        return RoutingKeys.status(self.new_status)


class DriverAssigned(EventPayload):
    """Событие: водитель назначен."""

    EVENT_TYPE: ClassVar[str] = "DRIVER_ASSIGNED"
    ROUTING_KEY: ClassVar[str] = RoutingKeys.BOOKING_DRIVER_ASSIGNED

    booking_id: str
    driver_id: str
    passenger_id: str
    eta: int


class BookingCancelled(EventPayload):
    """Событие: бронирование отменено."""

    EVENT_TYPE: ClassVar[str] = "BOOKING_CANCELLED"
    ROUTING_KEY: ClassVar[str] = RoutingKeys.BOOKING_CANCELLED

    booking_id: str
    passenger_id: str
    driver_id: str | None = None
    cancelled_by: str
    reason: str | None = None
    cancellation_fee_applied: bool = False
    cancellation_fee: float | None = None
