# src/core/bookings/pricing.py
"""
Оценка стоимости и приоритета бронирования.
"""

from __future__ import annotations

from datetime import datetime

from src.common.constants import VehicleType
from src.config.loader import FareSettings
from src.core.bookings.models import FareBreakdown

# Часы пик (включительно) понижают оценку подбора
PEAK_HOURS = range(7, 10)

_TIER_SCORE: dict[VehicleType, float] = {
    VehicleType.BIKE: 0.4,
    VehicleType.STANDARD: 0.5,
    VehicleType.PREMIUM: 0.6,
    VehicleType.LUXURY: 0.7,
}


class FareCalculator:
    """Калькулятор оценочной стоимости поездки."""

    def __init__(self, fares: FareSettings, currency: str = "VND") -> None:
        self._fares = fares
        self._currency = currency

    def estimate(
        self,
        distance_km: float,
        duration_minutes: int,
        vehicle_type: VehicleType,
        surge_multiplier: float = 1.0,
    ) -> FareBreakdown:
        """
        Рассчитывает разбивку стоимости.

        Компоненты умножаются на коэффициент класса ТС,
        итог вычисляет сама модель FareBreakdown.
        """
        multiplier = self._fares.MULTIPLIERS.get(vehicle_type.value, 1.0)
        return FareBreakdown(
            base_fare=round(self._fares.BASE_FARE * multiplier, 2),
            distance_fare=round(distance_km * self._fares.FARE_PER_KM * multiplier, 2),
            time_fare=round(duration_minutes * self._fares.FARE_PER_MINUTE * multiplier, 2),
            surge_multiplier=max(surge_multiplier, 1.0),
            currency=self._currency,
        )


def calculate_matching_score(requested_at: datetime, vehicle_type: VehicleType) -> float:
    """Подсказка для очереди подбора: зависит от часа запроса и класса ТС."""
    score = _TIER_SCORE.get(vehicle_type, 0.5)
    if requested_at.hour in PEAK_HOURS:
        score *= 0.8
    return round(score, 3)


def calculate_priority(scheduled: bool, vehicle_type: VehicleType) -> int:
    """Вес приоритета: запланированные и премиальные брони выше."""
    priority = 1
    if scheduled:
        priority += 2
    if vehicle_type in (VehicleType.PREMIUM, VehicleType.LUXURY):
        priority += 1
    return priority
