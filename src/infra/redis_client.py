# src/infra/redis_client.py
"""
Клиент Redis: кэш бронирований, служебные маркеры уведомлений,
Pub/Sub для realtime-шлюза и Geo-чтение позиций водителей.
"""

from __future__ import annotations

import json
from typing import Any, Type, TypeVar

import redis.asyncio as redis
from pydantic import BaseModel

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info

T = TypeVar("T", bound=BaseModel)


class RedisClient:
    """
    Асинхронный клиент Redis.

    Поддерживает:
    - строковые и JSON операции с TTL
    - типизированные get/set с Pydantic моделями
    - SET NX для маркеров идемпотентности
    - Pub/Sub публикацию
    - Geo-поиск (GEOSEARCH) и чтение хешей
    """

    def __init__(self, url: str, *, namespace: str = "", max_connections: int = 50) -> None:
        self._url = url
        self._namespace = namespace
        self._max_connections = max_connections
        self._client: redis.Redis | None = None

    @property
    def client(self) -> redis.Redis:
        """Возвращает клиент Redis."""
        if self._client is None:
            raise RuntimeError("Redis клиент не инициализирован. Вызовите connect() сначала.")
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    def _make_key(self, key: str) -> str:
        """Добавляет namespace к ключу (если задан)."""
        return f"{self._namespace}:{key}" if self._namespace else key

    async def connect(self) -> None:
        """Подключается к Redis и проверяет соединение."""
        if self._client is not None:
            return

        await log_info("Подключение к Redis...", type_msg=TypeMsg.INFO)
        self._client = redis.from_url(
            self._url,
            max_connections=self._max_connections,
            decode_responses=True,
        )
        await self._client.ping()
        await log_info("Подключение к Redis установлено", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Закрывает соединение с Redis."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            await log_info("Соединение с Redis закрыто", type_msg=TypeMsg.INFO)

    # =========================================================================
    # БАЗОВЫЕ ОПЕРАЦИИ
    # =========================================================================

    async def get(self, key: str) -> str | None:
        return await self.client.get(self._make_key(key))

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        """
        Устанавливает значение.

        Args:
            key: Ключ
            value: Значение
            ttl: Время жизни в секундах
        """
        result = await self.client.set(self._make_key(key), value, ex=ttl)
        return bool(result)

    async def set_nx(self, key: str, value: str, ttl: int | None = None) -> bool:
        """Устанавливает значение, только если ключа ещё нет. True, если ключ создан."""
        result = await self.client.set(self._make_key(key), value, ex=ttl, nx=True)
        return bool(result)

    async def delete(self, key: str) -> int:
        return await self.client.delete(self._make_key(key))

    async def exists(self, key: str) -> bool:
        return await self.client.exists(self._make_key(key)) > 0

    # =========================================================================
    # ТИПИЗИРОВАННЫЕ ОПЕРАЦИИ (PYDANTIC)
    # =========================================================================

    async def get_model(self, key: str, model_class: Type[T]) -> T | None:
        """
        Получает и десериализует Pydantic модель.

        Повреждённое значение считается промахом кэша.
        """
        data = await self.get(key)
        if data is None:
            return None

        try:
            return model_class.model_validate_json(data)
        except ValueError as e:
            await log_error(f"Ошибка десериализации модели {model_class.__name__}: {e}")
            return None

    async def set_model(self, key: str, model: BaseModel, ttl: int | None = None) -> bool:
        """Сериализует и сохраняет Pydantic модель."""
        return await self.set(key, model.model_dump_json(), ttl=ttl)

    # =========================================================================
    # JSON ОПЕРАЦИИ
    # =========================================================================

    async def set_json(self, key: str, data: dict | list, ttl: int | None = None) -> bool:
        return await self.set(key, json.dumps(data, ensure_ascii=False, default=str), ttl=ttl)

    # =========================================================================
    # PUB/SUB
    # =========================================================================

    async def publish(self, channel: str, message: dict[str, Any]) -> int:
        """
        Публикует JSON-сообщение в канал.

        Returns:
            Количество подписчиков, получивших сообщение
        """
        payload = json.dumps(message, ensure_ascii=False, default=str)
        return await self.client.publish(self._make_key(channel), payload)

    # =========================================================================
    # HASH И GEO (позиции водителей)
    # =========================================================================

    async def hgetall(self, name: str) -> dict[str, str]:
        return await self.client.hgetall(self._make_key(name))

    async def geosearch(
        self,
        key: str,
        longitude: float,
        latitude: float,
        radius_m: float,
        count: int | None = None,
    ) -> list[tuple[str, float, tuple[float, float]]]:
        """
        Ищет участников geo-индекса в радиусе от точки.

        Args:
            key: Ключ (например, "drivers:locations")
            longitude: Долгота центра
            latitude: Широта центра
            radius_m: Радиус в метрах
            count: Максимальное количество результатов

        Returns:
            Список (member, distance_m, (lng, lat)), ближайшие первыми
        """
        results = await self.client.geosearch(
            self._make_key(key),
            longitude=longitude,
            latitude=latitude,
            radius=radius_m,
            unit="m",
            sort="ASC",
            count=count,
            withdist=True,
            withcoord=True,
        )
        return [(member, float(dist), (float(coord[0]), float(coord[1]))) for member, dist, coord in results]

    async def health_check(self) -> bool:
        """Проверяет доступность Redis (PING)."""
        if self._client is None:
            return False
        try:
            return bool(await self._client.ping())
        except Exception as e:
            await log_error(f"Health check Redis failed: {e}")
            return False
