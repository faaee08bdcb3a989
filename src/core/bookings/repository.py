# src/core/bookings/repository.py
"""
Репозиторий бронирований (PostgreSQL).

Все изменения статуса идут через transition(): один условный UPDATE,
совпадающий по ожидаемому статусу (compare-and-swap). Колонки времени
пишутся через COALESCE и после установки не меняются.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from src.common.constants import ACTIVE_STATUSES, BookingStatus, PaymentStatus, UserRole
from src.core.bookings.geo import EARTH_RADIUS_KM, bounding_box
from src.core.bookings.models import (
    Booking,
    BookingFilters,
    BookingMetadata,
    CancellationInfo,
    FareBreakdown,
    Location,
    PaymentInfo,
    UserBookingStats,
)
from src.infra.database import DatabaseManager

BOOKING_COLUMNS = """
    booking_id, passenger_id, driver_id,
    pickup_address, pickup_lng, pickup_lat,
    destination_address, destination_lng, destination_lat,
    vehicle_type, status,
    base_fare, distance_fare, time_fare, surge_multiplier, total_fare, currency,
    payment_method, payment_status, transaction_id,
    estimated_distance_km, estimated_duration_minutes, eta_minutes, schedule_time,
    requested_at, assigned_at, started_at, completed_at, cancelled_at,
    cancelled_by, cancellation_reason, cancellation_fee_applied, cancellation_fee,
    matching_score, priority, notes,
    created_at, updated_at
"""

# Колонки, которые можно менять вместе со статусом
_TRANSITION_COLUMNS = frozenset({
    "driver_id",
    "eta_minutes",
    "estimated_duration_minutes",
    "assigned_at",
    "started_at",
    "completed_at",
    "cancelled_at",
    "cancelled_by",
    "cancellation_reason",
    "cancellation_fee_applied",
    "cancellation_fee",
    "payment_status",
    "transaction_id",
})

# Устанавливаются один раз
_SET_ONCE_COLUMNS = frozenset({
    "driver_id",
    "assigned_at",
    "started_at",
    "completed_at",
    "cancelled_at",
})


def _db_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class BookingRepository:
    """Репозиторий бронирований."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_by_id(self, booking_id: str) -> Optional[Booking]:
        row = await self._db.fetchrow(
            f"SELECT {BOOKING_COLUMNS} FROM bookings WHERE booking_id = $1",
            booking_id,
        )
        return self._row_to_booking(row) if row else None

    async def get_for_participant(self, booking_id: str, user_id: str) -> Optional[Booking]:
        """Бронирование, если пользователь его пассажир или водитель."""
        row = await self._db.fetchrow(
            f"""
            SELECT {BOOKING_COLUMNS} FROM bookings
            WHERE booking_id = $1 AND (passenger_id = $2 OR driver_id = $2)
            """,
            booking_id,
            user_id,
        )
        return self._row_to_booking(row) if row else None

    async def search(
        self,
        filters: BookingFilters,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Booking], int]:
        """
        Поиск с фильтрами и пагинацией, новые первыми.

        Returns:
            (страница бронирований, общее количество)
        """
        conditions: list[str] = []
        params: list[Any] = []

        def add(condition: str, value: Any) -> None:
            params.append(_db_value(value))
            conditions.append(condition.format(idx=len(params)))

        if filters.passenger_id:
            add("passenger_id = ${idx}", filters.passenger_id)
        if filters.driver_id:
            add("driver_id = ${idx}", filters.driver_id)
        if filters.status:
            add("status = ${idx}", filters.status)
        if filters.vehicle_type:
            add("vehicle_type = ${idx}", filters.vehicle_type)
        if filters.start_date:
            add("requested_at >= ${idx}", filters.start_date)
        if filters.end_date:
            add("requested_at <= ${idx}", filters.end_date)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        total = await self._db.fetchval(f"SELECT COUNT(*) FROM bookings {where}", *params)

        offset = (page - 1) * limit
        rows = await self._db.fetch(
            f"""
            SELECT {BOOKING_COLUMNS} FROM bookings {where}
            ORDER BY created_at DESC
            LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
            """,
            *params,
            limit,
            offset,
        )
        return [self._row_to_booking(row) for row in rows], int(total or 0)

    async def find_nearby_pending(
        self,
        lng: float,
        lat: float,
        max_distance_m: float,
        limit: int = 50,
    ) -> list[tuple[Booking, float]]:
        """
        Ожидающие бронирования в радиусе от точки, ближайшие первыми.

        Прямоугольник отсекает строки по индексу, гаверсинус уточняет.

        Returns:
            Список (бронирование, расстояние в метрах)
        """
        min_lng, max_lng, min_lat, max_lat = bounding_box(lng, lat, max_distance_m)
        rows = await self._db.fetch(
            f"""
            SELECT * FROM (
                SELECT {BOOKING_COLUMNS},
                       2 * {EARTH_RADIUS_KM * 1000} * ASIN(LEAST(1.0, SQRT(
                           POWER(SIN(RADIANS(pickup_lat - $2) / 2), 2)
                           + COS(RADIANS($2)) * COS(RADIANS(pickup_lat))
                             * POWER(SIN(RADIANS(pickup_lng - $1) / 2), 2)
                       ))) AS distance_m
                FROM bookings
                WHERE status = $4
                  AND pickup_lng BETWEEN $5 AND $6
                  AND pickup_lat BETWEEN $7 AND $8
            ) AS candidates
            WHERE distance_m <= $3
            ORDER BY distance_m ASC
            LIMIT $9
            """,
            lng,
            lat,
            float(max_distance_m),
            BookingStatus.PENDING.value,
            min_lng,
            max_lng,
            min_lat,
            max_lat,
            limit,
        )
        return [(self._row_to_booking(row), float(row["distance_m"])) for row in rows]

    async def find_stale_pending(self, older_than: datetime, limit: int = 100) -> list[Booking]:
        """PENDING-брони, запрошенные раньше older_than (запланированные по schedule_time)."""
        rows = await self._db.fetch(
            f"""
            SELECT {BOOKING_COLUMNS} FROM bookings
            WHERE status = $1
              AND COALESCE(schedule_time, requested_at) < $2
            ORDER BY requested_at ASC
            LIMIT $3
            """,
            BookingStatus.PENDING.value,
            older_than,
            limit,
        )
        return [self._row_to_booking(row) for row in rows]

    async def get_user_stats(self, user_id: str, role: UserRole) -> UserBookingStats:
        column = "driver_id" if role == UserRole.DRIVER else "passenger_id"
        active = [status.value for status in ACTIVE_STATUSES]
        row = await self._db.fetchrow(
            f"""
            SELECT COUNT(*) AS total_bookings,
                   COUNT(*) FILTER (WHERE status = $2) AS completed_bookings,
                   COUNT(*) FILTER (WHERE status = $3) AS cancelled_bookings,
                   COUNT(*) FILTER (WHERE status = ANY($4::text[])) AS active_bookings,
                   COALESCE(SUM(total_fare) FILTER (WHERE status = $2), 0) AS total_fare
            FROM bookings
            WHERE {column} = $1
            """,
            user_id,
            BookingStatus.COMPLETED.value,
            BookingStatus.CANCELLED.value,
            active,
        )
        if row is None:
            return UserBookingStats()
        return UserBookingStats(
            total_bookings=row["total_bookings"],
            completed_bookings=row["completed_bookings"],
            cancelled_bookings=row["cancelled_bookings"],
            active_bookings=row["active_bookings"],
            total_fare=float(row["total_fare"]),
        )

    # =========================================================================
    # ЗАПИСЬ
    # =========================================================================

    async def create(self, booking: Booking) -> Booking:
        """Сохраняет новое бронирование и возвращает запись из БД."""
        row = await self._db.execute_returning(
            f"""
            INSERT INTO bookings (
                booking_id, passenger_id, driver_id,
                pickup_address, pickup_lng, pickup_lat,
                destination_address, destination_lng, destination_lat,
                vehicle_type, status,
                base_fare, distance_fare, time_fare, surge_multiplier, total_fare, currency,
                payment_method, payment_status, transaction_id,
                estimated_distance_km, estimated_duration_minutes, schedule_time,
                requested_at, matching_score, priority, notes,
                created_at, updated_at
            ) VALUES (
                $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15,
                $16, $17, $18, $19, $20, $21, $22, $23, $24, $25, $26, $27, $28, $29
            )
            RETURNING {BOOKING_COLUMNS}
            """,
            booking.booking_id,
            booking.passenger_id,
            booking.driver_id,
            booking.pickup.address,
            booking.pickup.lng,
            booking.pickup.lat,
            booking.destination.address,
            booking.destination.lng,
            booking.destination.lat,
            booking.vehicle_type.value,
            booking.status.value,
            booking.fare.base_fare,
            booking.fare.distance_fare,
            booking.fare.time_fare,
            booking.fare.surge_multiplier,
            booking.fare.total_fare,
            booking.fare.currency,
            booking.payment.method.value,
            booking.payment.status.value,
            booking.payment.transaction_id,
            booking.estimated_distance_km,
            booking.estimated_duration_minutes,
            booking.schedule_time,
            booking.requested_at,
            booking.metadata.matching_score,
            booking.metadata.priority,
            booking.metadata.notes,
            booking.created_at,
            booking.updated_at,
        )
        return self._row_to_booking(row) if row else booking

    async def transition(
        self,
        booking_id: str,
        expected_status: BookingStatus,
        new_status: BookingStatus,
        fields: Mapping[str, Any] | None = None,
    ) -> Optional[Booking]:
        """
        Атомарно меняет статус, если текущий статус равен ожидаемому.

        Args:
            booking_id: ID бронирования
            expected_status: Статус, прочитанный перед переходом
            new_status: Целевой статус
            fields: Дополнительные колонки (только из разрешённого набора)

        Returns:
            Обновлённое бронирование или None, если статус уже другой
        """
        set_parts = ["status = $3", "updated_at = NOW()"]
        params: list[Any] = [booking_id, expected_status.value, new_status.value]

        for column, value in (fields or {}).items():
            if column not in _TRANSITION_COLUMNS:
                raise ValueError(f"Колонку {column} нельзя менять при переходе статуса")
            params.append(_db_value(value))
            placeholder = f"${len(params)}"
            if column in _SET_ONCE_COLUMNS:
                set_parts.append(f"{column} = COALESCE({column}, {placeholder})")
            else:
                set_parts.append(f"{column} = {placeholder}")

        row = await self._db.execute_returning(
            f"""
            UPDATE bookings SET {', '.join(set_parts)}
            WHERE booking_id = $1 AND status = $2
            RETURNING {BOOKING_COLUMNS}
            """,
            *params,
        )
        return self._row_to_booking(row) if row else None

    async def set_payment_status(
        self,
        booking_id: str,
        status: PaymentStatus,
        transaction_id: str | None = None,
    ) -> Optional[Booking]:
        """Перезаписывает статус оплаты (идемпотентно). None, если брони нет."""
        row = await self._db.execute_returning(
            f"""
            UPDATE bookings
            SET payment_status = $2,
                transaction_id = COALESCE($3, transaction_id),
                updated_at = NOW()
            WHERE booking_id = $1
            RETURNING {BOOKING_COLUMNS}
            """,
            booking_id,
            status.value,
            transaction_id,
        )
        return self._row_to_booking(row) if row else None

    # =========================================================================
    # МАППИНГ
    # =========================================================================

    @staticmethod
    def _row_to_booking(row: Mapping[str, Any]) -> Booking:
        cancellation = None
        if row["cancelled_by"]:
            cancellation = CancellationInfo(
                cancelled_by=row["cancelled_by"],
                reason=row["cancellation_reason"],
                fee_applied=row["cancellation_fee_applied"],
                fee_amount=row["cancellation_fee"],
            )

        return Booking(
            booking_id=row["booking_id"],
            passenger_id=row["passenger_id"],
            driver_id=row["driver_id"],
            pickup=Location(
                address=row["pickup_address"],
                coordinates=(row["pickup_lng"], row["pickup_lat"]),
            ),
            destination=Location(
                address=row["destination_address"],
                coordinates=(row["destination_lng"], row["destination_lat"]),
            ),
            vehicle_type=row["vehicle_type"],
            status=row["status"],
            fare=FareBreakdown(
                base_fare=row["base_fare"],
                distance_fare=row["distance_fare"],
                time_fare=row["time_fare"],
                surge_multiplier=row["surge_multiplier"],
                currency=row["currency"],
            ),
            payment=PaymentInfo(
                method=row["payment_method"],
                status=row["payment_status"],
                transaction_id=row["transaction_id"],
            ),
            estimated_distance_km=row["estimated_distance_km"],
            estimated_duration_minutes=row["estimated_duration_minutes"],
            eta_minutes=row["eta_minutes"],
            schedule_time=row["schedule_time"],
            requested_at=row["requested_at"],
            assigned_at=row["assigned_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            cancelled_at=row["cancelled_at"],
            cancellation=cancellation,
            metadata=BookingMetadata(
                matching_score=row["matching_score"] if row["matching_score"] is not None else 0.5,
                priority=row["priority"],
                notes=row["notes"],
            ),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
