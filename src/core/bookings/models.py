# src/core/bookings/models.py
"""
Модели данных бронирований.

Координаты хранятся строго в порядке [lng, lat] (совместимость с geo-индексами).
Итоговая стоимость всегда вычисляется из компонентов тарифа.
"""

from __future__ import annotations

import math
import secrets
import string
import time
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

from src.common.constants import (
    ACTIVE_STATUSES,
    BookingStatus,
    CancelledBy,
    PaymentMethod,
    PaymentStatus,
    VehicleType,
)

_BASE36 = string.digits + string.ascii_uppercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_booking_id() -> str:
    """BKG + время в base36 + случайный суффикс: читаемо, но не последовательно."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(5))
    return f"BKG{_to_base36(int(time.time() * 1000))}{suffix}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Базовая модель: camelCase наружу, snake_case внутри."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class Location(CamelModel):
    """Точка маршрута: адрес и координаты [lng, lat]."""

    address: str = Field(..., min_length=1, description="Адрес")
    coordinates: tuple[float, float] = Field(..., description="[долгота, широта]")

    @field_validator("coordinates")
    @classmethod
    def check_bounds(cls, value: tuple[float, float]) -> tuple[float, float]:
        lng, lat = value
        if not (math.isfinite(lng) and math.isfinite(lat)):
            raise ValueError("Координаты должны быть конечными числами")
        if not -180.0 <= lng <= 180.0:
            raise ValueError(f"Долгота вне диапазона [-180, 180]: {lng}")
        if not -90.0 <= lat <= 90.0:
            raise ValueError(f"Широта вне диапазона [-90, 90]: {lat}")
        return value

    @property
    def lng(self) -> float:
        return self.coordinates[0]

    @property
    def lat(self) -> float:
        return self.coordinates[1]

    @classmethod
    def from_lat_lng(cls, address: str, lat: float, lng: float) -> "Location":
        """Создаёт точку из пары (lat, lng) API, сохраняя порядок [lng, lat]."""
        return cls(address=address, coordinates=(lng, lat))


class FareBreakdown(CamelModel):
    """Разбивка стоимости поездки."""

    base_fare: float = Field(0.0, ge=0.0, description="Базовая стоимость")
    distance_fare: float = Field(0.0, ge=0.0, description="Стоимость за расстояние")
    time_fare: float = Field(0.0, ge=0.0, description="Стоимость за время")
    surge_multiplier: float = Field(1.0, ge=1.0, description="Коэффициент спроса")
    currency: str = Field("VND", description="Валюта")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_fare(self) -> float:
        """Итог = (база + расстояние + время) * коэффициент."""
        subtotal = self.base_fare + self.distance_fare + self.time_fare
        return round(subtotal * self.surge_multiplier, 2)


class PaymentInfo(CamelModel):
    """Платёжная часть бронирования."""

    method: PaymentMethod = PaymentMethod.CASH
    status: PaymentStatus = PaymentStatus.PENDING
    transaction_id: Optional[str] = None


class CancellationInfo(CamelModel):
    """Сведения об отмене (только для CANCELLED)."""

    cancelled_by: CancelledBy
    reason: Optional[str] = None
    fee_applied: bool = False
    fee_amount: Optional[float] = None


class BookingMetadata(CamelModel):
    """Служебные атрибуты: подсказка приоритета для матчинга."""

    matching_score: float = Field(0.5, ge=0.0, le=1.0)
    priority: int = Field(1, ge=1)
    notes: Optional[str] = None


class Booking(CamelModel):
    """Бронирование поездки."""

    booking_id: str = Field(default_factory=generate_booking_id, description="ID бронирования")
    passenger_id: str = Field(..., min_length=1, description="ID пассажира")
    driver_id: Optional[str] = Field(None, description="ID водителя")

    pickup: Location
    destination: Location
    vehicle_type: VehicleType = VehicleType.STANDARD
    status: BookingStatus = BookingStatus.PENDING

    fare: FareBreakdown = Field(default_factory=FareBreakdown)
    payment: PaymentInfo = Field(default_factory=PaymentInfo)

    estimated_distance_km: Optional[float] = Field(None, ge=0.0)
    estimated_duration_minutes: Optional[int] = Field(None, ge=0)
    eta_minutes: Optional[int] = Field(None, ge=1, description="ETA водителя к точке подачи")
    schedule_time: Optional[datetime] = None

    requested_at: datetime = Field(default_factory=utcnow)
    assigned_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    cancellation: Optional[CancellationInfo] = None
    metadata: BookingMetadata = Field(default_factory=BookingMetadata)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        """PENDING, ASSIGNED, ARRIVING или IN_PROGRESS."""
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return not self.is_active

    @property
    def duration_minutes(self) -> Optional[int]:
        """Длительность поездки (completed_at - started_at) в минутах."""
        if self.started_at is None or self.completed_at is None:
            return None
        return round((self.completed_at - self.started_at).total_seconds() / 60)

    def is_participant(self, user_id: str) -> bool:
        """Является ли пользователь пассажиром или назначенным водителем."""
        return user_id == self.passenger_id or (self.driver_id is not None and user_id == self.driver_id)


class BookingFilters(BaseModel):
    """Фильтры поиска бронирований."""

    passenger_id: Optional[str] = None
    driver_id: Optional[str] = None
    status: Optional[BookingStatus] = None
    vehicle_type: Optional[VehicleType] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class BookingPage(CamelModel):
    """Страница результатов поиска."""

    items: list[Booking]
    page: int
    limit: int
    total: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class NearbyBooking(CamelModel):
    """Ожидающее бронирование рядом с водителем."""

    booking: Booking
    distance_m: float


class UserBookingStats(CamelModel):
    """Сводная статистика пользователя."""

    total_bookings: int = 0
    completed_bookings: int = 0
    cancelled_bookings: int = 0
    active_bookings: int = 0
    total_fare: float = 0.0


# =============================================================================
# ВХОДНЫЕ DTO
# =============================================================================

class CoordinatesDTO(CamelModel):
    """Пара координат в форме API: {lat, lng}."""

    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)


class PointDTO(CamelModel):
    """Точка маршрута в форме API."""

    address: str = Field(..., min_length=1)
    coordinates: CoordinatesDTO

    def to_location(self) -> Location:
        return Location.from_lat_lng(self.address, self.coordinates.lat, self.coordinates.lng)


class BookingCreateDTO(CamelModel):
    """DTO для создания бронирования."""

    pickup: PointDTO
    destination: PointDTO
    vehicle_type: VehicleType
    payment_method: PaymentMethod = PaymentMethod.CASH
    schedule_time: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=500)
