# src/core/bookings/geo.py
"""
Геометрия на сфере: расстояние по формуле гаверсинуса и ETA водителя.
"""

from __future__ import annotations

import math

EARTH_RADIUS_KM = 6371.0


def haversine_km(lng1: float, lat1: float, lng2: float, lat2: float) -> float:
    """
    Расстояние по большой окружности между двумя точками (км).

    Аргументы в порядке [lng, lat], как в хранилище.
    """
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (math.sin(dlat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlng / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def calculate_eta_minutes(
    origin: tuple[float, float],
    target: tuple[float, float],
    speed_kmh: float = 30.0,
) -> int:
    """
    ETA в минутах при постоянной средней скорости.

    Args:
        origin: [lng, lat] водителя
        target: [lng, lat] точки подачи
        speed_kmh: Средняя скорость

    Returns:
        Округлённое вверх число минут, не меньше 1
    """
    if speed_kmh <= 0:
        raise ValueError("speed_kmh должна быть положительной")
    distance_km = haversine_km(origin[0], origin[1], target[0], target[1])
    minutes = distance_km / speed_kmh * 60
    return max(math.ceil(minutes), 1)


def bounding_box(lng: float, lat: float, radius_m: float) -> tuple[float, float, float, float]:
    """
    Прямоугольник, гарантированно содержащий круг радиуса radius_m.

    Returns:
        (min_lng, max_lng, min_lat, max_lat)
    """
    radius_km = radius_m / 1000.0
    dlat = math.degrees(radius_km / EARTH_RADIUS_KM)
    cos_lat = math.cos(math.radians(lat))
    # Около полюса долгота вырождается: берём весь диапазон
    dlng = 180.0 if cos_lat < 1e-6 else min(math.degrees(radius_km / (EARTH_RADIUS_KM * cos_lat)), 180.0)
    return (
        max(lng - dlng, -180.0),
        min(lng + dlng, 180.0),
        max(lat - dlat, -90.0),
        min(lat + dlat, 90.0),
    )
