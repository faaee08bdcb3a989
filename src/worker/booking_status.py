# src/worker/booking_status.py
"""
Потребитель смены статусов: держит кэш бронирований в актуальном состоянии.
"""

from __future__ import annotations

from src.common.constants import QueueNames, RoutingKeys
from src.core.bookings.service import BookingService
from src.infra.event_bus import EventBus
from src.shared.events import BookingEvent, BookingStatusChanged
from src.worker.base import BaseConsumer


class BookingStatusConsumer(BaseConsumer):
    """Перечитывает бронирование в кэш после смены статуса."""

    def __init__(self, event_bus: EventBus, booking_service: BookingService) -> None:
        super().__init__(event_bus)
        self.booking_service = booking_service

    @property
    def name(self) -> str:
        return "BookingStatusConsumer"

    @property
    def queue_name(self) -> str:
        return QueueNames.RIDE_SERVICE

    @property
    def bindings(self) -> list[str]:
        return [f"{RoutingKeys.BOOKING_STATUS_PREFIX}*"]

    async def handle_event(self, event: BookingEvent) -> None:
        if isinstance(event, BookingStatusChanged):
            await self.booking_service.refresh_cache(event.booking_id)
