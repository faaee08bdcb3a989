# tests/core/test_booking_models.py
"""
Тесты моделей бронирования.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest
from pydantic import ValidationError

from src.common.constants import BookingStatus, PaymentMethod, VehicleType
from src.core.bookings.models import (
    Booking,
    BookingCreateDTO,
    BookingPage,
    CoordinatesDTO,
    FareBreakdown,
    Location,
    generate_booking_id,
)


class TestLocation:
    """Тесты для Location."""

    def test_coordinates_order(self) -> None:
        """Проверяет хранение в порядке [lng, lat]."""
        location = Location.from_lat_lng("Test", lat=10.7626, lng=106.6602)

        assert location.coordinates == (106.6602, 10.7626)
        assert location.lng == 106.6602
        assert location.lat == 10.7626

    @pytest.mark.parametrize(
        "coordinates",
        [(181.0, 10.0), (-180.5, 10.0), (106.0, 91.0), (106.0, -90.1), (float("nan"), 10.0)],
    )
    def test_out_of_range_rejected(self, coordinates: tuple[float, float]) -> None:
        with pytest.raises(ValidationError):
            Location(address="Test", coordinates=coordinates)

    def test_bounds_inclusive(self) -> None:
        location = Location(address="Edge", coordinates=(-180.0, 90.0))

        assert location.lng == -180.0

    def test_empty_address_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Location(address="", coordinates=(106.0, 10.0))


class TestFareBreakdown:
    """Тесты для FareBreakdown."""

    def test_total_derived_from_components(self) -> None:
        fare = FareBreakdown(base_fare=10000, distance_fare=20000, time_fare=5000, surge_multiplier=1.5)

        assert fare.total_fare == 52500.0

    def test_total_serialized(self) -> None:
        fare = FareBreakdown(base_fare=100, distance_fare=50)

        dumped = fare.model_dump(by_alias=True)

        assert dumped["baseFare"] == 100
        assert fare.total_fare == 150.0

    def test_surge_below_one_rejected(self) -> None:
        with pytest.raises(ValidationError):
            FareBreakdown(surge_multiplier=0.5)


class TestBooking:
    """Тесты для Booking."""

    def test_generated_id(self) -> None:
        booking_id = generate_booking_id()

        assert booking_id.startswith("BKG")
        assert booking_id != generate_booking_id()

    def test_defaults(self, make_booking: Callable[..., Booking]) -> None:
        booking = make_booking()

        assert booking.status == BookingStatus.PENDING
        assert booking.is_active
        assert not booking.is_terminal
        assert booking.driver_id is None
        assert booking.cancellation is None

    @pytest.mark.parametrize(
        "status",
        [BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.NO_DRIVER, BookingStatus.TIMEOUT],
    )
    def test_terminal(self, make_booking: Callable[..., Booking], status: BookingStatus) -> None:
        booking = make_booking(status=status)

        assert booking.is_terminal

    def test_is_participant(self, make_booking: Callable[..., Booking]) -> None:
        booking = make_booking(driver_id="driver-1")

        assert booking.is_participant("passenger-1")
        assert booking.is_participant("driver-1")
        assert not booking.is_participant("stranger")

    def test_duration_minutes(self, make_booking: Callable[..., Booking]) -> None:
        started = datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)
        booking = make_booking(started_at=started, completed_at=started + timedelta(minutes=17, seconds=20))

        assert booking.duration_minutes == 17
        assert make_booking().duration_minutes is None

    def test_camel_case_dump(self, make_booking: Callable[..., Booking]) -> None:
        dumped = make_booking().model_dump(mode="json", by_alias=True)

        assert dumped["bookingId"] == "BKG-TEST-1"
        assert dumped["passengerId"] == "passenger-1"
        assert dumped["pickup"]["coordinates"] == [106.6602, 10.7626]
        assert dumped["vehicleType"] == "STANDARD"

    def test_json_roundtrip_for_cache(self, make_booking: Callable[..., Booking]) -> None:
        """Проверяет, что кэшированный JSON читается обратно (итог вычисляемый)."""
        booking = make_booking()

        restored = Booking.model_validate_json(booking.model_dump_json())

        assert restored.model_dump() == booking.model_dump()
        assert restored.fare.total_fare == booking.fare.total_fare


class TestBookingCreateDTO:
    """Тесты для BookingCreateDTO."""

    def test_from_api_payload(self, sample_create_data: dict[str, Any]) -> None:
        dto = BookingCreateDTO.model_validate(sample_create_data)

        assert dto.vehicle_type == VehicleType.STANDARD
        assert dto.payment_method == PaymentMethod.CASH
        assert dto.pickup.to_location().coordinates == (106.6602, 10.7626)

    def test_unknown_vehicle_type(self, sample_create_data: dict[str, Any]) -> None:
        sample_create_data["vehicleType"] = "ROCKET"

        with pytest.raises(ValidationError):
            BookingCreateDTO.model_validate(sample_create_data)

    def test_missing_destination(self, sample_create_data: dict[str, Any]) -> None:
        del sample_create_data["destination"]

        with pytest.raises(ValidationError):
            BookingCreateDTO.model_validate(sample_create_data)

    def test_coordinates_bounds(self) -> None:
        with pytest.raises(ValidationError):
            CoordinatesDTO(lat=95.0, lng=10.0)


class TestBookingPage:
    def test_pages(self, make_booking: Callable[..., Booking]) -> None:
        page = BookingPage(items=[make_booking()], page=1, limit=10, total=21)

        assert page.pages == 3
        assert page.model_dump(by_alias=True)["pages"] == 3
