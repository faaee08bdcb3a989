# src/core/bookings/cache.py
"""
Кэш бронирований в Redis.

Кэш вспомогательный: любой сбой Redis логируется и проглатывается,
промах всегда означает чтение из хранилища.
"""

from __future__ import annotations

from typing import Optional

from src.common.logger import log_warning
from src.core.bookings.models import Booking
from src.infra.redis_client import RedisClient


def booking_key(booking_id: str) -> str:
    return f"booking:{booking_id}"


class BookingCache:
    """Write-through кэш бронирований с коротким TTL."""

    def __init__(self, redis: RedisClient, ttl: int = 300) -> None:
        self._redis = redis
        self._ttl = ttl

    async def get(self, booking_id: str) -> Optional[Booking]:
        try:
            return await self._redis.get_model(booking_key(booking_id), Booking)
        except Exception as e:
            await log_warning(f"Кэш недоступен при чтении {booking_id}: {e}")
            return None

    async def put(self, booking: Booking) -> None:
        try:
            await self._redis.set_model(booking_key(booking.booking_id), booking, ttl=self._ttl)
        except Exception as e:
            await log_warning(f"Не удалось записать {booking.booking_id} в кэш: {e}")

    async def invalidate(self, booking_id: str) -> None:
        try:
            await self._redis.delete(booking_key(booking_id))
        except Exception as e:
            await log_warning(f"Не удалось сбросить кэш {booking_id}: {e}")
