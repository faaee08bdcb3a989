# src/core/bookings/service.py
"""
Сервис бронирований: единственная точка создания бронирований
и смены их статуса.

Каждый переход читает текущий статус из хранилища и выполняет условный
UPDATE по этому статусу. Гонка проявляется как InvalidTransition, а не как
порча данных. Событие публикуется после записи. Недоступность брокера
не откатывает изменение: событие логируется как потерянное.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from src.common.constants import (
    BookingStatus,
    CancelledBy,
    PaymentStatus,
    TypeMsg,
    UserRole,
)
from src.common.exceptions import (
    BrokerUnavailable,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from src.common.logger import log_debug, log_info, log_warning
from src.config.loader import BookingPolicySettings
from src.core.bookings.cache import BookingCache
from src.core.bookings.geo import calculate_eta_minutes, haversine_km
from src.core.bookings.models import (
    Booking,
    BookingCreateDTO,
    BookingFilters,
    BookingMetadata,
    BookingPage,
    CoordinatesDTO,
    Location,
    NearbyBooking,
    PaymentInfo,
    UserBookingStats,
)
from src.core.bookings.pricing import FareCalculator, calculate_matching_score, calculate_priority
from src.core.bookings.repository import BookingRepository
from src.core.bookings.state_machine import BookingStateMachine
from src.infra.event_bus import EventBus
from src.shared.events import (
    BookingCancelled,
    BookingCreated,
    BookingStatusChanged,
    DriverAssigned,
    EventPayload,
)

MAX_PAGE_SIZE = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _first_error(exc: PydanticValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error.get('msg')}" if location else str(error.get("msg"))


class BookingService:
    """Сервис бронирований."""

    def __init__(
        self,
        repository: BookingRepository,
        cache: BookingCache,
        event_bus: EventBus,
        fare_calculator: FareCalculator,
        policy: BookingPolicySettings,
    ) -> None:
        self._repo = repository
        self._cache = cache
        self._event_bus = event_bus
        self._fares = fare_calculator
        self._policy = policy

    # =========================================================================
    # СОЗДАНИЕ
    # =========================================================================

    async def create_booking(
        self,
        data: BookingCreateDTO | Mapping[str, Any],
        passenger_id: str,
    ) -> Booking:
        """
        Создаёт бронирование в статусе PENDING.

        Args:
            data: pickup, destination ({address, coordinates: {lat, lng}}), vehicleType
            passenger_id: ID пассажира

        Returns:
            Сохранённое бронирование

        Raises:
            ValidationError: нет обязательных полей или координаты вне диапазона
        """
        if not passenger_id:
            raise ValidationError("Не указан пассажир")

        try:
            dto = data if isinstance(data, BookingCreateDTO) else BookingCreateDTO.model_validate(data)
            pickup = dto.pickup.to_location()
            destination = dto.destination.to_location()
        except PydanticValidationError as e:
            raise ValidationError(f"Некорректные данные бронирования: {_first_error(e)}") from e

        now = _utcnow()
        distance_km = round(haversine_km(pickup.lng, pickup.lat, destination.lng, destination.lat), 3)
        duration_min = calculate_eta_minutes(
            pickup.coordinates,
            destination.coordinates,
            self._policy.AVERAGE_SPEED_KMH,
        )

        booking = Booking(
            passenger_id=passenger_id,
            pickup=pickup,
            destination=destination,
            vehicle_type=dto.vehicle_type,
            status=BookingStatus.PENDING,
            fare=self._fares.estimate(distance_km, duration_min, dto.vehicle_type),
            payment=PaymentInfo(method=dto.payment_method),
            estimated_distance_km=distance_km,
            estimated_duration_minutes=duration_min,
            schedule_time=dto.schedule_time,
            requested_at=now,
            metadata=BookingMetadata(
                matching_score=calculate_matching_score(now, dto.vehicle_type),
                priority=calculate_priority(dto.schedule_time is not None, dto.vehicle_type),
                notes=dto.notes,
            ),
            created_at=now,
            updated_at=now,
        )

        saved = await self._repo.create(booking)
        await self._cache.put(saved)

        await self._publish(BookingCreated(
            booking_id=saved.booking_id,
            passenger_id=saved.passenger_id,
            vehicle_type=saved.vehicle_type.value,
            pickup=saved.pickup.model_dump(mode="json", by_alias=True),
            destination=saved.destination.model_dump(mode="json", by_alias=True),
            priority=saved.metadata.priority,
            matching_score=saved.metadata.matching_score,
            scheduled=saved.schedule_time is not None,
        ))

        await log_info(
            f"Бронирование {saved.booking_id} создано пассажиром {passenger_id}",
            type_msg=TypeMsg.INFO,
            extra={"booking_id": saved.booking_id},
        )
        return saved

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_booking(self, booking_id: str, user_id: str) -> Booking:
        """
        Бронирование для участника поездки.

        Чужое и несуществующее бронирование неразличимы (NotFound).
        """
        cached = await self._cache.get(booking_id)
        if cached is not None and cached.is_participant(user_id):
            return cached

        booking = await self._repo.get_for_participant(booking_id, user_id)
        if booking is None:
            raise NotFound("Бронирование не найдено")

        await self._cache.put(booking)
        return booking

    async def get_booking_internal(self, booking_id: str) -> Booking:
        """Бронирование без проверки доступа (для потребителей событий)."""
        cached = await self._cache.get(booking_id)
        if cached is not None:
            return cached
        return await self._load_current(booking_id, warm_cache=True)

    async def refresh_cache(self, booking_id: str) -> Booking:
        """Перечитывает бронирование из хранилища в кэш."""
        return await self._load_current(booking_id, warm_cache=True)

    async def search_bookings(
        self,
        filters: BookingFilters,
        page: int = 1,
        limit: int = 10,
    ) -> BookingPage:
        if page < 1:
            raise ValidationError("page должен быть >= 1")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit должен быть в диапазоне 1..{MAX_PAGE_SIZE}")
        if filters.start_date and filters.end_date and filters.start_date > filters.end_date:
            raise ValidationError("startDate позже endDate")

        items, total = await self._repo.search(filters, page=page, limit=limit)
        return BookingPage(items=items, page=page, limit=limit, total=total)

    async def get_nearby_bookings(
        self,
        coordinates: tuple[float, float],
        max_distance_m: float | None = None,
    ) -> list[NearbyBooking]:
        """
        Ожидающие бронирования рядом с точкой.

        Args:
            coordinates: [lng, lat]
            max_distance_m: Радиус в метрах (по умолчанию из политики)
        """
        radius = self._policy.DEFAULT_NEARBY_RADIUS_M if max_distance_m is None else max_distance_m
        if radius <= 0:
            raise ValidationError("maxDistance должен быть положительным")
        try:
            center = Location(address="search", coordinates=coordinates)
        except PydanticValidationError as e:
            raise ValidationError(f"Некорректные координаты: {_first_error(e)}") from e

        found = await self._repo.find_nearby_pending(center.lng, center.lat, radius)
        return [NearbyBooking(booking=booking, distance_m=round(distance, 1)) for booking, distance in found]

    async def get_user_stats(self, user_id: str, role: UserRole) -> UserBookingStats:
        return await self._repo.get_user_stats(user_id, role)

    # =========================================================================
    # ПЕРЕХОДЫ СТАТУСА
    # =========================================================================

    async def assign_driver(
        self,
        booking_id: str,
        driver_id: str,
        driver_location: CoordinatesDTO | Mapping[str, Any],
    ) -> Booking:
        """
        Назначает водителя (только из PENDING) и рассчитывает ETA.

        Raises:
            ValidationError: нет driver_id или координаты вне диапазона
            InvalidTransition: бронирование уже не в PENDING
        """
        if not driver_id:
            raise ValidationError("Не указан водитель")
        try:
            location = (
                driver_location
                if isinstance(driver_location, CoordinatesDTO)
                else CoordinatesDTO.model_validate(driver_location)
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Некорректное местоположение водителя: {_first_error(e)}") from e

        booking = await self._load_current(booking_id)
        if booking.status != BookingStatus.PENDING:
            raise InvalidTransition(
                "Водителя можно назначить только на бронирование в статусе PENDING",
                current_status=booking.status.value,
                requested_status=BookingStatus.ASSIGNED.value,
            )

        eta = calculate_eta_minutes(
            (location.lng, location.lat),
            booking.pickup.coordinates,
            self._policy.AVERAGE_SPEED_KMH,
        )
        updated = await self._apply_transition(
            booking,
            BookingStatus.ASSIGNED,
            {"driver_id": driver_id, "eta_minutes": eta},
        )

        await self._publish(DriverAssigned(
            booking_id=updated.booking_id,
            driver_id=driver_id,
            passenger_id=updated.passenger_id,
            eta=eta,
        ))
        await log_info(
            f"Водитель {driver_id} назначен на {booking_id}, ETA {eta} мин",
            type_msg=TypeMsg.INFO,
            extra={"booking_id": booking_id},
        )
        return updated

    async def update_status(
        self,
        booking_id: str,
        new_status: BookingStatus | str,
        metadata: Mapping[str, Any] | None = None,
    ) -> Booking:
        """
        Переводит бронирование в новый статус по таблице переходов.

        ASSIGNED выставляется только через assign_driver, CANCELLED
        делегируется в cancel_booking (metadata: cancelledBy, reason).
        Для COMPLETED из metadata берутся paymentStatus и transactionId.
        """
        metadata = dict(metadata or {})
        try:
            status = BookingStatus(new_status)
        except ValueError as e:
            raise ValidationError(f"Неизвестный статус: {new_status}") from e

        if status == BookingStatus.ASSIGNED:
            raise ValidationError("Для назначения водителя используйте assign-driver")
        if status == BookingStatus.CANCELLED:
            try:
                cancelled_by = CancelledBy(metadata.get("cancelledBy", CancelledBy.SYSTEM.value))
            except ValueError as e:
                raise ValidationError(f"Неизвестный инициатор отмены: {metadata.get('cancelledBy')}") from e
            return await self.cancel_booking(booking_id, cancelled_by, metadata.get("reason"))

        booking = await self._load_current(booking_id)

        fields: dict[str, Any] = {}
        if status == BookingStatus.COMPLETED:
            fields.update(self._payment_fields(metadata))

        updated = await self._apply_transition(booking, status, fields)

        await self._publish(BookingStatusChanged(
            booking_id=updated.booking_id,
            old_status=booking.status.value,
            new_status=status.value,
            metadata=metadata,
        ))
        await log_info(
            f"Статус {booking_id}: {booking.status.value} -> {status.value}",
            type_msg=TypeMsg.INFO,
            extra={"booking_id": booking_id},
        )
        return updated

    async def cancel_booking(
        self,
        booking_id: str,
        cancelled_by: CancelledBy,
        reason: Optional[str] = None,
    ) -> Booking:
        """
        Отменяет активное бронирование.

        Пассажир, отменивший поездку в пределах окна после назначения
        водителя, получает флаг платы за отмену (процент от стоимости).
        """
        booking = await self._load_current(booking_id)
        if not booking.is_active:
            raise InvalidTransition(
                "Отменить можно только активное бронирование",
                current_status=booking.status.value,
                requested_status=BookingStatus.CANCELLED.value,
            )
        if booking.status == BookingStatus.PENDING and cancelled_by == CancelledBy.DRIVER:
            raise InvalidTransition(
                "Водитель не назначен на это бронирование",
                current_status=booking.status.value,
                requested_status=BookingStatus.CANCELLED.value,
            )

        now = _utcnow()
        fee_applied = self.cancellation_fee_applies(booking, cancelled_by, now)
        fee = (
            round(booking.fare.total_fare * self._policy.CANCELLATION_FEE_PERCENT / 100, 2)
            if fee_applied
            else None
        )

        updated = await self._apply_transition(
            booking,
            BookingStatus.CANCELLED,
            {
                "cancelled_at": now,
                "cancelled_by": cancelled_by,
                "cancellation_reason": reason,
                "cancellation_fee_applied": fee_applied,
                "cancellation_fee": fee,
            },
        )

        await self._publish(BookingCancelled(
            booking_id=updated.booking_id,
            passenger_id=updated.passenger_id,
            driver_id=updated.driver_id,
            cancelled_by=cancelled_by.value,
            reason=reason,
            cancellation_fee_applied=fee_applied,
            cancellation_fee=fee,
        ))
        await log_info(
            f"Бронирование {booking_id} отменено ({cancelled_by.value}), плата: {fee_applied}",
            type_msg=TypeMsg.INFO,
            extra={"booking_id": booking_id},
        )
        return updated

    def cancellation_fee_applies(
        self,
        booking: Booking,
        cancelled_by: CancelledBy,
        at: datetime,
    ) -> bool:
        """Плата берётся с пассажира, если с назначения прошло строго меньше окна."""
        if cancelled_by != CancelledBy.PASSENGER or booking.assigned_at is None:
            return False
        grace = timedelta(minutes=self._policy.CANCELLATION_GRACE_MINUTES)
        return at - booking.assigned_at < grace

    async def record_payment(
        self,
        booking_id: str,
        status: PaymentStatus,
        transaction_id: Optional[str] = None,
    ) -> Booking:
        """Идемпотентно перезаписывает статус оплаты."""
        updated = await self._repo.set_payment_status(booking_id, status, transaction_id)
        if updated is None:
            raise NotFound(f"Бронирование {booking_id} не найдено")

        await self._cache.put(updated)
        await log_info(
            f"Оплата {booking_id}: {status.value}",
            type_msg=TypeMsg.INFO,
            extra={"booking_id": booking_id},
        )
        return updated

    async def expire_pending(self, older_than: datetime, limit: int = 100) -> int:
        """
        Переводит зависшие PENDING-бронирования в NO_DRIVER.

        Returns:
            Количество переведённых бронирований
        """
        expired = 0
        for booking in await self._repo.find_stale_pending(older_than, limit=limit):
            try:
                updated = await self._apply_transition(booking, BookingStatus.NO_DRIVER, {})
            except InvalidTransition:
                await log_debug(f"{booking.booking_id} уже вышло из PENDING, пропуск")
                continue

            expired += 1
            await self._publish(BookingStatusChanged(
                booking_id=updated.booking_id,
                old_status=BookingStatus.PENDING.value,
                new_status=BookingStatus.NO_DRIVER.value,
                metadata={"reason": "pending_timeout"},
            ))

        if expired:
            await log_info(f"Переведено в NO_DRIVER по таймауту: {expired}", type_msg=TypeMsg.INFO)
        return expired

    # =========================================================================
    # ВНУТРЕННЕЕ
    # =========================================================================

    async def _load_current(self, booking_id: str, warm_cache: bool = False) -> Booking:
        """Читает бронирование из хранилища (источник истины для переходов)."""
        booking = await self._repo.get_by_id(booking_id)
        if booking is None:
            raise NotFound(f"Бронирование {booking_id} не найдено")
        if warm_cache:
            await self._cache.put(booking)
        return booking

    async def _apply_transition(
        self,
        booking: Booking,
        new_status: BookingStatus,
        fields: dict[str, Any],
    ) -> Booking:
        BookingStateMachine.ensure_transition(booking.status, new_status)

        timestamp_field = BookingStateMachine.timestamp_field(new_status)
        if timestamp_field:
            fields.setdefault(timestamp_field, _utcnow())

        updated = await self._repo.transition(booking.booking_id, booking.status, new_status, fields)
        if updated is None:
            # Статус изменился между чтением и записью
            await self._cache.invalidate(booking.booking_id)
            raise InvalidTransition(
                f"Бронирование {booking.booking_id} изменено параллельно, повторите чтение",
                current_status=booking.status.value,
                requested_status=new_status.value,
            )

        await self._cache.put(updated)
        return updated

    @staticmethod
    def _payment_fields(metadata: Mapping[str, Any]) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        if metadata.get("paymentStatus"):
            try:
                fields["payment_status"] = PaymentStatus(metadata["paymentStatus"])
            except ValueError as e:
                raise ValidationError(f"Неизвестный статус оплаты: {metadata['paymentStatus']}") from e
        if metadata.get("transactionId"):
            fields["transaction_id"] = str(metadata["transactionId"])
        return fields

    async def _publish(self, event: EventPayload) -> Optional[str]:
        try:
            return await self._event_bus.publish(event)
        except BrokerUnavailable as e:
            await log_warning(
                f"Событие {event.routing_key} потеряно: брокер недоступен",
                extra={"event": event.to_data(), "error": str(e)},
            )
            return None
