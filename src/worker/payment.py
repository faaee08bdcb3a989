# src/worker/payment.py
"""
Потребитель платёжных событий.
"""

from __future__ import annotations

from src.common.constants import PaymentStatus, QueueNames, TypeMsg
from src.common.logger import log_info
from src.core.bookings.service import BookingService
from src.core.notifications.service import NotificationDispatcher
from src.infra.event_bus import EventBus
from src.shared.events import BookingEvent, PaymentCompleted, PaymentFailed
from src.worker.base import BaseConsumer


class PaymentConsumer(BaseConsumer):
    """
    Записывает результат оплаты в бронирование и уведомляет стороны.

    Повторная доставка безопасна: статус оплаты перезаписывается.
    Неизвестное бронирование (NotFound) уходит в dead letter.
    """

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
        return "PaymentConsumer"

    @property
    def queue_name(self) -> str:
        return QueueNames.PAYMENT_SERVICE

    @property
    def bindings(self) -> list[str]:
        return ["payment.*"]

    async def handle_event(self, event: BookingEvent) -> None:
        if isinstance(event, PaymentCompleted):
            status = PaymentStatus.PAID
        elif isinstance(event, PaymentFailed):
            status = PaymentStatus.FAILED
        else:
            return

        booking = await self.booking_service.record_payment(event.booking_id, status, event.transaction_id)
        await self.dispatcher.notify_payment(booking, status)
        await log_info(
            f"Оплата {event.booking_id} обработана: {status.value}",
            type_msg=TypeMsg.INFO,
        )
