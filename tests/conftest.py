# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("SERVICE_TOKEN", "test-service-token")

from src.common.constants import BookingStatus, PaymentStatus, VehicleType  # noqa: E402
from src.config.loader import (  # noqa: E402
    BookingPolicySettings,
    FareSettings,
    RedisTTLSettings,
)
from src.core.bookings.models import (  # noqa: E402
    Booking,
    BookingFilters,
    CancellationInfo,
    FareBreakdown,
    Location,
    UserBookingStats,
)

PICKUP = (106.6602, 10.7626)
DESTINATION = (106.7003, 10.7720)


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "Системные настройки",
        "PROJECT_NAME": "booking_core_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "ENVIRONMENT": "test",
        "LOG_LEVEL": "DEBUG",
        "LOG_FORMAT": "json",
        "LOG_TO_FILE": False,
        "DB_HOST": "db.local",
        "DB_PORT": 5433,
        "DB_NAME": "bookings_test",
        "DB_USER": "booking",
        "REDIS_HOST": "cache.local",
        "REDIS_DB": 1,
        "BOOKING_TTL": 120,
        "EXCHANGE_NAME": "booking_events_test",
        "PREFETCH_COUNT": 5,
        "CANCELLATION_FEE_PERCENT": 40.0,
        "SEARCH_RADIUS_M": {"BIKE": 1000, "STANDARD": 3000},
        "HEALTH_CHECK_INTERVAL": 15,
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2), encoding="utf-8")
    return config_file


@pytest.fixture
def policy() -> BookingPolicySettings:
    """Политики бронирования по умолчанию."""
    return BookingPolicySettings()


@pytest.fixture
def fares() -> FareSettings:
    return FareSettings()


@pytest.fixture
def ttl_settings() -> RedisTTLSettings:
    return RedisTTLSettings()


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_db() -> AsyncMock:
    """Мок менеджера базы данных."""
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="UPDATE 1")
    db.execute_returning = AsyncMock(return_value=None)
    db.fetchval = AsyncMock(return_value=None)
    return db


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Мок клиента Redis."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.set_nx = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    redis.exists = AsyncMock(return_value=False)
    redis.get_model = AsyncMock(return_value=None)
    redis.set_model = AsyncMock(return_value=True)
    redis.get_json = AsyncMock(return_value=None)
    redis.set_json = AsyncMock(return_value=True)
    redis.publish = AsyncMock(return_value=1)
    redis.hgetall = AsyncMock(return_value={})
    redis.geosearch = AsyncMock(return_value=[])
    return redis


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Мок шины событий."""
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value="evt_1")
    event_bus.subscribe = AsyncMock(return_value="ctag-1")
    event_bus.unsubscribe = AsyncMock(return_value=None)
    event_bus.is_consuming = MagicMock(return_value=True)
    event_bus.is_connected = True
    return event_bus


# =============================================================================
# ФИКСТУРЫ МОДЕЛЕЙ
# =============================================================================

@pytest.fixture
def sample_create_data() -> dict[str, Any]:
    """Тело запроса на создание бронирования (форма API)."""
    return {
        "pickup": {
            "address": "227 Nguyen Van Cu, District 5",
            "coordinates": {"lat": PICKUP[1], "lng": PICKUP[0]},
        },
        "destination": {
            "address": "Ben Thanh Market, District 1",
            "coordinates": {"lat": DESTINATION[1], "lng": DESTINATION[0]},
        },
        "vehicleType": "STANDARD",
    }


@pytest.fixture
def make_booking() -> Callable[..., Booking]:
    """Фабрика бронирований с переопределяемыми полями."""

    def factory(**overrides: Any) -> Booking:
        now = datetime.now(timezone.utc)
        data: dict[str, Any] = {
            "booking_id": "BKG-TEST-1",
            "passenger_id": "passenger-1",
            "pickup": Location(address="227 Nguyen Van Cu", coordinates=PICKUP),
            "destination": Location(address="Ben Thanh Market", coordinates=DESTINATION),
            "vehicle_type": VehicleType.STANDARD,
            "status": BookingStatus.PENDING,
            "fare": FareBreakdown(base_fare=10000, distance_fare=36000, time_fare=5000),
            "estimated_distance_km": 4.5,
            "estimated_duration_minutes": 10,
            "requested_at": now,
            "created_at": now,
            "updated_at": now,
        }
        data.update(overrides)
        return Booking(**data)

    return factory


def booking_to_row(booking: Booking, **extra: Any) -> dict[str, Any]:
    """Строка таблицы bookings для заданного бронирования."""
    cancellation = booking.cancellation
    row = {
        "booking_id": booking.booking_id,
        "passenger_id": booking.passenger_id,
        "driver_id": booking.driver_id,
        "pickup_address": booking.pickup.address,
        "pickup_lng": booking.pickup.lng,
        "pickup_lat": booking.pickup.lat,
        "destination_address": booking.destination.address,
        "destination_lng": booking.destination.lng,
        "destination_lat": booking.destination.lat,
        "vehicle_type": booking.vehicle_type.value,
        "status": booking.status.value,
        "base_fare": booking.fare.base_fare,
        "distance_fare": booking.fare.distance_fare,
        "time_fare": booking.fare.time_fare,
        "surge_multiplier": booking.fare.surge_multiplier,
        "total_fare": booking.fare.total_fare,
        "currency": booking.fare.currency,
        "payment_method": booking.payment.method.value,
        "payment_status": booking.payment.status.value,
        "transaction_id": booking.payment.transaction_id,
        "estimated_distance_km": booking.estimated_distance_km,
        "estimated_duration_minutes": booking.estimated_duration_minutes,
        "eta_minutes": booking.eta_minutes,
        "schedule_time": booking.schedule_time,
        "requested_at": booking.requested_at,
        "assigned_at": booking.assigned_at,
        "started_at": booking.started_at,
        "completed_at": booking.completed_at,
        "cancelled_at": booking.cancelled_at,
        "cancelled_by": cancellation.cancelled_by.value if cancellation else None,
        "cancellation_reason": cancellation.reason if cancellation else None,
        "cancellation_fee_applied": cancellation.fee_applied if cancellation else False,
        "cancellation_fee": cancellation.fee_amount if cancellation else None,
        "matching_score": booking.metadata.matching_score,
        "priority": booking.metadata.priority,
        "notes": booking.metadata.notes,
        "created_at": booking.created_at,
        "updated_at": booking.updated_at,
    }
    row.update(extra)
    return row


@pytest.fixture
def booking_row() -> Callable[..., dict[str, Any]]:
    return booking_to_row


# =============================================================================
# IN-MEMORY РЕПОЗИТОРИЙ
# =============================================================================

class FakeBookingRepository:
    """
    Репозиторий в памяти с той же семантикой compare-and-swap,
    что и SQL-реализация: переход проходит, только если статус совпал.
    """

    _SET_ONCE = ("driver_id", "assigned_at", "started_at", "completed_at", "cancelled_at")

    def __init__(self) -> None:
        self.bookings: dict[str, Booking] = {}
        self.transition_calls: list[tuple[str, BookingStatus, BookingStatus]] = []

    async def create(self, booking: Booking) -> Booking:
        self.bookings[booking.booking_id] = booking
        return booking

    async def get_by_id(self, booking_id: str) -> Optional[Booking]:
        return self.bookings.get(booking_id)

    async def get_for_participant(self, booking_id: str, user_id: str) -> Optional[Booking]:
        booking = self.bookings.get(booking_id)
        return booking if booking is not None and booking.is_participant(user_id) else None

    async def search(self, filters: BookingFilters, page: int = 1, limit: int = 10) -> tuple[list[Booking], int]:
        items = [
            b for b in self.bookings.values()
            if (not filters.passenger_id or b.passenger_id == filters.passenger_id)
            and (not filters.driver_id or b.driver_id == filters.driver_id)
            and (not filters.status or b.status == filters.status)
        ]
        start = (page - 1) * limit
        return items[start:start + limit], len(items)

    async def find_nearby_pending(self, lng: float, lat: float, max_distance_m: float, limit: int = 50) -> list:
        return []

    async def find_stale_pending(self, older_than: datetime, limit: int = 100) -> list[Booking]:
        stale = [
            b for b in self.bookings.values()
            if b.status == BookingStatus.PENDING and b.requested_at < older_than
        ]
        return stale[:limit]

    async def get_user_stats(self, user_id: str, role: Any) -> UserBookingStats:
        return UserBookingStats(total_bookings=len(self.bookings))

    async def transition(
        self,
        booking_id: str,
        expected_status: BookingStatus,
        new_status: BookingStatus,
        fields: Mapping[str, Any] | None = None,
    ) -> Optional[Booking]:
        self.transition_calls.append((booking_id, expected_status, new_status))
        booking = self.bookings.get(booking_id)
        if booking is None or booking.status != expected_status:
            return None

        fields = dict(fields or {})
        update: dict[str, Any] = {"status": new_status, "updated_at": datetime.now(timezone.utc)}
        for column in self._SET_ONCE:
            if column in fields and getattr(booking, column) is None:
                update[column] = fields[column]
        for column in ("eta_minutes", "estimated_duration_minutes"):
            if column in fields:
                update[column] = fields[column]

        payment_update = {}
        if fields.get("payment_status") is not None:
            payment_update["status"] = fields["payment_status"]
        if fields.get("transaction_id") is not None:
            payment_update["transaction_id"] = fields["transaction_id"]
        if payment_update:
            update["payment"] = booking.payment.model_copy(update=payment_update)

        if fields.get("cancelled_by") is not None:
            update["cancellation"] = CancellationInfo(
                cancelled_by=fields["cancelled_by"],
                reason=fields.get("cancellation_reason"),
                fee_applied=bool(fields.get("cancellation_fee_applied")),
                fee_amount=fields.get("cancellation_fee"),
            )

        updated = booking.model_copy(update=update)
        self.bookings[booking_id] = updated
        return updated

    async def set_payment_status(
        self,
        booking_id: str,
        status: PaymentStatus,
        transaction_id: str | None = None,
    ) -> Optional[Booking]:
        booking = self.bookings.get(booking_id)
        if booking is None:
            return None
        payment = booking.payment.model_copy(update={
            "status": status,
            "transaction_id": transaction_id or booking.payment.transaction_id,
        })
        updated = booking.model_copy(update={"payment": payment})
        self.bookings[booking_id] = updated
        return updated


@pytest.fixture
def fake_repository() -> FakeBookingRepository:
    return FakeBookingRepository()
