# src/worker/matching.py
"""
Потребитель новых бронирований: рассылает запрос водителям рядом.
"""

from __future__ import annotations

from src.common.constants import BookingStatus, QueueNames, RoutingKeys
from src.common.logger import log_debug
from src.core.bookings.service import BookingService
from src.core.notifications.service import NotificationDispatcher
from src.infra.event_bus import EventBus
from src.shared.events import BookingCreated, BookingEvent
from src.worker.base import BaseConsumer


class MatchingConsumer(BaseConsumer):
    """Для каждого нового бронирования оповещает свободных водителей в радиусе."""

    def __init__(
        self,
        event_bus: EventBus,
        booking_service: BookingService,
        dispatcher: NotificationDispatcher,
    ) -> None:
        super().__init__(event_bus)
        self.booking_service = booking_service
        self.dispatcher = dispatcher

    @property
    def name(self) -> str:
        return "MatchingConsumer"

    @property
    def queue_name(self) -> str:
        return QueueNames.MATCHING

    @property
    def bindings(self) -> list[str]:
        return [RoutingKeys.BOOKING_CREATED]

    async def handle_event(self, event: BookingEvent) -> None:
        if not isinstance(event, BookingCreated):
            return

        booking = await self.booking_service.get_booking_internal(event.booking_id)
        if booking.status != BookingStatus.PENDING:
            await log_debug(f"{booking.booking_id} уже {booking.status.value}, рассылка не нужна")
            return

        await self.dispatcher.notify_nearby_drivers(booking)
