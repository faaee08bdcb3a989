# src/core/notifications/service.py
"""
Диспетчер уведомлений.

Превращает доменные события в уведомления по получателям и каналам.
Каждая доставка выполняется отдельной asyncio-задачей: её ошибка
логируется и никогда не доходит до вызывающего (подтверждение сообщения
из очереди от уведомлений не зависит).
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from src.common.constants import (
    AlertSeverity,
    BookingStatus,
    CancelledBy,
    NotificationChannel,
    PaymentStatus,
    TypeMsg,
    VehicleType,
)
from src.common.logger import log_error, log_info, log_warning
from src.config.loader import BookingPolicySettings, RedisTTLSettings
from src.core.bookings.models import Booking
from src.core.notifications.locator import DriverLocator, NearbyDriver
from src.core.notifications.sinks import Notification, NotificationSink
from src.infra.redis_client import RedisClient

ADMIN_ROOM = "admin:alerts"


def passenger_room(passenger_id: str) -> str:
    return f"user:{passenger_id}"


def driver_room(driver_id: str) -> str:
    return f"driver:{driver_id}"


def drivers_notified_key(booking_id: str) -> str:
    return f"notification:booking:{booking_id}:drivers_notified"


def _iso(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


class NotificationDispatcher:
    """Диспетчер уведомлений о бронированиях."""

    def __init__(
        self,
        sink: NotificationSink,
        locator: DriverLocator,
        policy: BookingPolicySettings,
        ttl: RedisTTLSettings,
        redis: RedisClient | None = None,
    ) -> None:
        """
        Args:
            sink: Приёмник уведомлений
            locator: Поиск водителей рядом
            policy: Политики (радиусы, компенсации)
            ttl: Время жизни служебных ключей
            redis: Клиент Redis для маркеров и журнала (необязателен)
        """
        self._sink = sink
        self._locator = locator
        self._policy = policy
        self._ttl = ttl
        self._redis = redis
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    def calculate_search_radius(self, vehicle_type: VehicleType | str) -> int:
        """Радиус поиска водителей (м) по классу ТС."""
        key = vehicle_type.value if isinstance(vehicle_type, VehicleType) else str(vehicle_type)
        return self._policy.SEARCH_RADIUS_M.get(key, self._policy.DEFAULT_NEARBY_RADIUS_M)

    # =========================================================================
    # ВОДИТЕЛИ РЯДОМ
    # =========================================================================

    async def notify_nearby_drivers(self, booking: Booking) -> int:
        """
        Рассылает запрос свободным водителям нужного класса в радиусе.

        Returns:
            Количество водителей, которым отправлен запрос
        """
        radius = self.calculate_search_radius(booking.vehicle_type)
        try:
            drivers = await self._locator.find_nearby(booking.pickup.lng, booking.pickup.lat, radius)
        except Exception as e:
            await log_warning(f"Поиск водителей для {booking.booking_id} не удался: {e}")
            drivers = []

        eligible: list[NearbyDriver] = [
            driver for driver in drivers
            if driver.is_available and driver.vehicle_type == booking.vehicle_type.value
        ]

        for driver in eligible:
            self._dispatch(Notification(
                channel=NotificationChannel.SOCKET,
                recipient=driver_room(driver.driver_id),
                event="new_booking_request",
                data={
                    "bookingId": booking.booking_id,
                    "pickup": booking.pickup.model_dump(mode="json", by_alias=True),
                    "destination": booking.destination.model_dump(mode="json", by_alias=True),
                    "vehicleType": booking.vehicle_type.value,
                    "fare": booking.fare.total_fare,
                    "currency": booking.fare.currency,
                    "distance": driver.distance_m,
                },
            ))

        await self._remember(
            drivers_notified_key(booking.booking_id),
            {"count": len(eligible), "radius": radius, "timestamp": _iso(datetime.now(timezone.utc))},
            self._ttl.DRIVERS_NOTIFIED_TTL,
        )
        await log_info(
            f"Запрос по {booking.booking_id} отправлен {len(eligible)} водителям (радиус {radius} м)",
            type_msg=TypeMsg.INFO,
        )
        return len(eligible)

    # =========================================================================
    # ЖИЗНЕННЫЙ ЦИКЛ
    # =========================================================================

    async def notify_booking_created(self, booking: Booking) -> None:
        self._dispatch(Notification(
            channel=NotificationChannel.SOCKET,
            recipient=passenger_room(booking.passenger_id),
            event="booking_created",
            data={
                "bookingId": booking.booking_id,
                "status": booking.status.value,
                "fare": booking.fare.total_fare,
                "currency": booking.fare.currency,
            },
        ))

    async def notify_driver_assigned(self, booking: Booking, driver_id: str, eta: int) -> None:
        """Пассажиру отправляются водитель и ETA, водителю точка подачи."""
        estimated_arrival = _iso(datetime.now(timezone.utc) + timedelta(minutes=eta))
        passenger_data = {
            "bookingId": booking.booking_id,
            "driverId": driver_id,
            "eta": eta,
            "estimatedArrival": estimated_arrival,
        }

        self._dispatch(Notification(
            channel=NotificationChannel.SOCKET,
            recipient=passenger_room(booking.passenger_id),
            event="driver_assigned",
            data=passenger_data,
        ))
        self._dispatch(Notification(
            channel=NotificationChannel.PUSH,
            recipient=booking.passenger_id,
            event="driver_assigned",
            data=passenger_data,
        ))
        if self._policy.SMS_ON_ASSIGNMENT:
            self._dispatch(Notification(
                channel=NotificationChannel.SMS,
                recipient=booking.passenger_id,
                event="driver_assigned",
                data={"bookingId": booking.booking_id, "eta": eta},
            ))
        self._dispatch(Notification(
            channel=NotificationChannel.SOCKET,
            recipient=driver_room(driver_id),
            event="booking_assigned",
            data={
                "bookingId": booking.booking_id,
                "passengerId": booking.passenger_id,
                "pickup": booking.pickup.model_dump(mode="json", by_alias=True),
                "eta": eta,
            },
        ))

    async def notify_status_changed(
        self,
        booking: Booking,
        old_status: BookingStatus | str,
        new_status: BookingStatus | str,
    ) -> None:
        old_value = BookingStatus(old_status).value
        new_value = BookingStatus(new_status).value
        data = {"bookingId": booking.booking_id, "oldStatus": old_value, "newStatus": new_value}

        self._dispatch(Notification(
            channel=NotificationChannel.SOCKET,
            recipient=passenger_room(booking.passenger_id),
            event="booking_status_changed",
            data=data,
        ))
        if booking.driver_id:
            self._dispatch(Notification(
                channel=NotificationChannel.SOCKET,
                recipient=driver_room(booking.driver_id),
                event="booking_status_changed",
                data=data,
            ))

        push_event = {
            BookingStatus.ARRIVING.value: "driver_arriving",
            BookingStatus.IN_PROGRESS.value: "trip_started",
            BookingStatus.COMPLETED.value: "trip_completed",
            BookingStatus.NO_DRIVER.value: "no_driver_found",
            BookingStatus.TIMEOUT.value: "booking_timeout",
        }.get(new_value)
        if push_event:
            self._dispatch(Notification(
                channel=NotificationChannel.PUSH,
                recipient=booking.passenger_id,
                event=push_event,
                data=data,
            ))

    async def notify_cancelled(
        self,
        booking: Booking,
        cancelled_by: CancelledBy | str,
        reason: Optional[str] = None,
    ) -> None:
        """
        Уведомляет стороны об отмене.

        Отмена водителем: пассажиру возврат и компенсационный ваучер,
        алерт HIGH. Отмена пассажиром с платой: водителю компенсация,
        алерт MEDIUM.
        """
        by = CancelledBy(cancelled_by)
        total = booking.fare.total_fare
        currency = booking.fare.currency
        base = {
            "bookingId": booking.booking_id,
            "cancelledBy": by.value,
            "reason": reason,
            "cancelledAt": _iso(booking.cancelled_at) if booking.cancelled_at else None,
        }

        passenger_data: dict[str, Any] = dict(base)
        if by == CancelledBy.DRIVER:
            passenger_data["refundInfo"] = {
                "eligible": True,
                "amount": round(total * self._policy.DRIVER_CANCEL_REFUND_PERCENT / 100, 2),
                "currency": currency,
            }
        self._dispatch(Notification(
            channel=NotificationChannel.SOCKET,
            recipient=passenger_room(booking.passenger_id),
            event="booking_cancelled",
            data=passenger_data,
        ))

        if booking.driver_id and by != CancelledBy.DRIVER:
            self._dispatch(Notification(
                channel=NotificationChannel.SOCKET,
                recipient=driver_room(booking.driver_id),
                event="booking_cancelled",
                data=base,
            ))

        if by == CancelledBy.DRIVER:
            self._dispatch(Notification(
                channel=NotificationChannel.PUSH,
                recipient=booking.passenger_id,
                event="apology_voucher",
                data={
                    "bookingId": booking.booking_id,
                    "amount": self._policy.APOLOGY_VOUCHER_AMOUNT,
                    "currency": currency,
                },
            ))
        elif booking.driver_id and booking.cancellation and booking.cancellation.fee_applied:
            self._dispatch(Notification(
                channel=NotificationChannel.SOCKET,
                recipient=driver_room(booking.driver_id),
                event="cancellation_fee",
                data={
                    "bookingId": booking.booking_id,
                    "amount": booking.cancellation.fee_amount,
                    "currency": currency,
                },
            ))

        severity = AlertSeverity.HIGH if by == CancelledBy.DRIVER else AlertSeverity.MEDIUM
        self._dispatch(Notification(
            channel=NotificationChannel.SOCKET,
            recipient=ADMIN_ROOM,
            event="booking_cancelled_alert",
            data={**base, "severity": severity.value, "driverId": booking.driver_id},
        ))

    async def notify_payment(self, booking: Booking, status: PaymentStatus | str) -> None:
        payment_status = PaymentStatus(status)
        data = {
            "bookingId": booking.booking_id,
            "status": payment_status.value,
            "amount": booking.fare.total_fare,
            "currency": booking.fare.currency,
            "transactionId": booking.payment.transaction_id,
        }

        self._dispatch(Notification(
            channel=NotificationChannel.SOCKET,
            recipient=passenger_room(booking.passenger_id),
            event="payment_status",
            data=data,
        ))

        if payment_status == PaymentStatus.PAID:
            self._dispatch(Notification(
                channel=NotificationChannel.PUSH,
                recipient=booking.passenger_id,
                event="payment_receipt",
                data=data,
            ))
            if booking.driver_id:
                self._dispatch(Notification(
                    channel=NotificationChannel.SOCKET,
                    recipient=driver_room(booking.driver_id),
                    event="payment_received",
                    data=data,
                ))
        elif payment_status == PaymentStatus.FAILED:
            self._dispatch(Notification(
                channel=NotificationChannel.PUSH,
                recipient=booking.passenger_id,
                event="payment_failed",
                data=data,
            ))

    # =========================================================================
    # ДОСТАВКА
    # =========================================================================

    def _dispatch(self, notification: Notification) -> None:
        """Запускает доставку отдельной задачей и не ждёт её."""
        task = asyncio.create_task(self._deliver(notification))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, notification: Notification) -> None:
        try:
            await self._sink.send(notification)
        except Exception as e:
            await log_error(
                f"Уведомление {notification.event} -> {notification.recipient} не доставлено: {e}",
                extra={"channel": notification.channel.value},
            )
            return

        await self._remember(
            f"log:notification:{notification.notification_id}",
            {
                "channel": notification.channel.value,
                "recipient": notification.recipient,
                "event": notification.event,
                "timestamp": notification.created_at,
            },
            self._ttl.NOTIFICATION_LOG_TTL,
        )

    async def _remember(self, key: str, value: dict[str, Any], ttl: int) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.set_json(key, value, ttl=ttl)
        except Exception as e:
            await log_warning(f"Не удалось записать {key} в Redis: {e}")

    async def drain(self) -> None:
        """Дожидается всех запущенных доставок (остановка, тесты)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
