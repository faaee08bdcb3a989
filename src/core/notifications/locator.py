# src/core/notifications/locator.py
"""
Поиск водителей рядом с точкой подачи.

Геолокация водителей является внешней системой, ядро зависит только
от интерфейса DriverLocator.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Protocol, runtime_checkable

import httpx

from src.common.constants import DriverStatus
from src.core.bookings.geo import haversine_km
from src.infra.redis_client import RedisClient


@dataclass
class NearbyDriver:
    """Водитель рядом с точкой."""

    driver_id: str
    status: str
    vehicle_type: str
    coordinates: tuple[float, float]  # [lng, lat]
    distance_m: float | None = None
    name: str | None = None

    @property
    def is_available(self) -> bool:
        return self.status == DriverStatus.AVAILABLE.value


@runtime_checkable
class DriverLocator(Protocol):
    """Возвращает водителей в радиусе radius_m от точки (lng, lat)."""

    async def find_nearby(self, lng: float, lat: float, radius_m: float) -> list[NearbyDriver]: ...


class StaticDriverLocator:
    """Фиксированный список водителей (тесты, локальный запуск)."""

    def __init__(self, drivers: Iterable[NearbyDriver] = ()) -> None:
        self.drivers = list(drivers)
        self.calls: list[tuple[float, float, float]] = []

    async def find_nearby(self, lng: float, lat: float, radius_m: float) -> list[NearbyDriver]:
        self.calls.append((lng, lat, radius_m))
        found = []
        for driver in self.drivers:
            distance_m = haversine_km(lng, lat, driver.coordinates[0], driver.coordinates[1]) * 1000
            if distance_m <= radius_m:
                found.append(NearbyDriver(
                    driver_id=driver.driver_id,
                    status=driver.status,
                    vehicle_type=driver.vehicle_type,
                    coordinates=driver.coordinates,
                    distance_m=round(distance_m, 1),
                    name=driver.name,
                ))
        return sorted(found, key=lambda d: d.distance_m or 0.0)


class RedisGeoDriverLocator:
    """
    Читает geo-индекс позиций водителей в Redis.

    Индекс drivers:locations и хеши driver:{id} (status, vehicle_type, name)
    поддерживает сервис геолокации водителей.
    """

    def __init__(
        self,
        redis: RedisClient,
        geo_key: str = "drivers:locations",
        max_count: int = 50,
    ) -> None:
        self._redis = redis
        self._geo_key = geo_key
        self._max_count = max_count

    async def find_nearby(self, lng: float, lat: float, radius_m: float) -> list[NearbyDriver]:
        results = await self._redis.geosearch(self._geo_key, lng, lat, radius_m, count=self._max_count)

        drivers = []
        for driver_id, distance_m, coordinates in results:
            info = await self._redis.hgetall(f"driver:{driver_id}")
            drivers.append(NearbyDriver(
                driver_id=driver_id,
                status=info.get("status", DriverStatus.OFFLINE.value),
                vehicle_type=info.get("vehicle_type", ""),
                coordinates=coordinates,
                distance_m=round(distance_m, 1),
                name=info.get("name"),
            ))
        return drivers


class HttpDriverLocator:
    """Запрашивает водителей у сервиса водителей: GET /drivers/nearby."""

    def __init__(self, base_url: str, timeout: float = 3.0, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def find_nearby(self, lng: float, lat: float, radius_m: float) -> list[NearbyDriver]:
        response = await self._client.get(
            "/drivers/nearby",
            params={"lat": lat, "lng": lng, "radius": radius_m},
        )
        response.raise_for_status()
        payload = response.json()
        items: list[dict[str, Any]] = payload.get("data", []) if isinstance(payload, dict) else payload
        return [self._to_driver(item) for item in items]

    @staticmethod
    def _to_driver(item: dict[str, Any]) -> NearbyDriver:
        location = item.get("location") or {}
        return NearbyDriver(
            driver_id=str(item["driverId"]),
            status=item.get("status", DriverStatus.OFFLINE.value),
            vehicle_type=item.get("vehicleType", ""),
            coordinates=(float(location.get("lng", 0.0)), float(location.get("lat", 0.0))),
            distance_m=item.get("distance"),
            name=item.get("name"),
        )
