# tests/core/test_geo_pricing.py
"""
Тесты расстояний, ETA и оценки стоимости.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from src.common.constants import VehicleType
from src.config.loader import FareSettings
from src.core.bookings.geo import bounding_box, calculate_eta_minutes, haversine_km
from src.core.bookings.pricing import FareCalculator, calculate_matching_score, calculate_priority

PICKUP = (106.6602, 10.7626)
DESTINATION = (106.7003, 10.7720)


class TestHaversine:
    """Тесты для haversine_km."""

    def test_zero_distance(self) -> None:
        assert haversine_km(*PICKUP, *PICKUP) == 0.0

    def test_symmetric(self) -> None:
        forward = haversine_km(*PICKUP, *DESTINATION)
        backward = haversine_km(*DESTINATION, *PICKUP)

        assert forward == pytest.approx(backward)

    def test_known_distance(self) -> None:
        """Один градус широты около 111.2 км."""
        assert haversine_km(0.0, 0.0, 0.0, 1.0) == pytest.approx(111.19, abs=0.01)

    def test_district_distance(self) -> None:
        assert haversine_km(*PICKUP, *DESTINATION) == pytest.approx(4.5, abs=0.2)


class TestCalculateEta:
    """Тесты для calculate_eta_minutes."""

    def test_minimum_one_minute(self) -> None:
        assert calculate_eta_minutes(PICKUP, PICKUP) == 1

    def test_symmetric(self) -> None:
        assert calculate_eta_minutes(PICKUP, DESTINATION) == calculate_eta_minutes(DESTINATION, PICKUP)

    def test_thirty_kmh(self) -> None:
        """10 км при 30 км/ч = 20 минут (округление вверх)."""
        target = (0.0, 10.0 / 111.195)

        assert calculate_eta_minutes((0.0, 0.0), target) == 20

    def test_grows_with_distance(self) -> None:
        etas = [calculate_eta_minutes((0.0, 0.0), (0.0, lat)) for lat in (0.05, 0.1, 0.2, 0.4)]

        assert etas == sorted(etas)
        assert etas[0] < etas[-1]

    def test_custom_speed(self) -> None:
        slow = calculate_eta_minutes(PICKUP, DESTINATION, speed_kmh=15)
        fast = calculate_eta_minutes(PICKUP, DESTINATION, speed_kmh=60)

        assert slow > fast

    def test_invalid_speed(self) -> None:
        with pytest.raises(ValueError):
            calculate_eta_minutes(PICKUP, DESTINATION, speed_kmh=0)


class TestBoundingBox:
    def test_contains_point(self) -> None:
        min_lng, max_lng, min_lat, max_lat = bounding_box(*PICKUP, 5000)

        assert min_lng < PICKUP[0] < max_lng
        assert min_lat < PICKUP[1] < max_lat
        assert max_lat - min_lat == pytest.approx(2 * 5 / 111.195, rel=0.01)

    def test_clamped_near_pole(self) -> None:
        min_lng, max_lng, _, max_lat = bounding_box(0.0, 90.0, 1000)

        assert (min_lng, max_lng) == (-180.0, 180.0)
        assert max_lat == 90.0


class TestFareCalculator:
    """Тесты для FareCalculator."""

    def test_standard_estimate(self) -> None:
        calculator = FareCalculator(FareSettings(), currency="VND")

        fare = calculator.estimate(4.5, 10, VehicleType.STANDARD)

        assert fare.base_fare == 10000.0
        assert fare.distance_fare == 36000.0
        assert fare.time_fare == 5000.0
        assert fare.total_fare == 51000.0
        assert fare.currency == "VND"

    def test_vehicle_multiplier(self) -> None:
        calculator = FareCalculator(FareSettings())

        standard = calculator.estimate(4.5, 10, VehicleType.STANDARD)
        luxury = calculator.estimate(4.5, 10, VehicleType.LUXURY)

        assert luxury.total_fare == pytest.approx(standard.total_fare * 2.2)

    def test_surge_never_below_one(self) -> None:
        fare = FareCalculator(FareSettings()).estimate(1.0, 2, VehicleType.BIKE, surge_multiplier=0.3)

        assert fare.surge_multiplier == 1.0


class TestPriorityHints:
    def test_matching_score_peak_hours(self) -> None:
        peak = calculate_matching_score(datetime(2026, 1, 1, 8, tzinfo=timezone.utc), VehicleType.STANDARD)
        calm = calculate_matching_score(datetime(2026, 1, 1, 14, tzinfo=timezone.utc), VehicleType.STANDARD)

        assert peak == 0.4
        assert calm == 0.5

    def test_score_in_range(self) -> None:
        for vehicle_type in VehicleType:
            score = calculate_matching_score(datetime.now(timezone.utc), vehicle_type)
            assert 0.0 <= score <= 1.0

    def test_priority(self) -> None:
        assert calculate_priority(False, VehicleType.STANDARD) == 1
        assert calculate_priority(True, VehicleType.STANDARD) == 3
        assert calculate_priority(True, VehicleType.LUXURY) == 4
