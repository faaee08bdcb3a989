# src/worker/notification.py
"""
Потребитель событий бронирования для рассылки уведомлений.
"""

from __future__ import annotations

from typing import Optional

from src.common.constants import QueueNames, RoutingKeys
from src.core.bookings.service import BookingService
from src.core.notifications.service import NotificationDispatcher
from src.infra.event_bus import EventBus
from src.infra.redis_client import RedisClient
from src.shared.events import (
    BookingCancelled,
    BookingCreated,
    BookingEvent,
    BookingStatusChanged,
    DriverAssigned,
)
from src.worker.base import BaseConsumer


class NotificationConsumer(BaseConsumer):
    """
    Передаёт события жизненного цикла в диспетчер уведомлений.

    Topic-шаблон booking.* покрывает только одно слово после точки,
    поэтому назначение водителя и смены статуса привязаны отдельно.
    """

    deduplicate = True

    def __init__(
        self,
        event_bus: EventBus,
        booking_service: BookingService,
        dispatcher: NotificationDispatcher,
        redis: Optional[RedisClient] = None,
        processed_ttl: int = 3600,
    ) -> None:
        super().__init__(event_bus, redis=redis, processed_ttl=processed_ttl)
        self.booking_service = booking_service
        self.dispatcher = dispatcher

    @property
    def name(self) -> str:
        return "NotificationConsumer"

    @property
    def queue_name(self) -> str:
        return QueueNames.NOTIFICATION

    @property
    def bindings(self) -> list[str]:
        return [
            "booking.*",
            RoutingKeys.BOOKING_DRIVER_ASSIGNED,
            f"{RoutingKeys.BOOKING_STATUS_PREFIX}*",
        ]

    async def handle_event(self, event: BookingEvent) -> None:
        if not isinstance(event, (BookingCreated, DriverAssigned, BookingStatusChanged, BookingCancelled)):
            return

        booking = await self.booking_service.get_booking_internal(event.booking_id)

        if isinstance(event, BookingCreated):
            await self.dispatcher.notify_booking_created(booking)
        elif isinstance(event, DriverAssigned):
            await self.dispatcher.notify_driver_assigned(booking, event.driver_id, event.eta)
        elif isinstance(event, BookingStatusChanged):
            await self.dispatcher.notify_status_changed(booking, event.old_status, event.new_status)
        else:
            await self.dispatcher.notify_cancelled(booking, event.cancelled_by, event.reason)
