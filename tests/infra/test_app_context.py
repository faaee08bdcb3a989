# tests/infra/test_app_context.py
"""
Тесты контейнера ресурсов процесса.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.config.loader import ServiceSettings, Settings
from src.core.notifications.locator import HttpDriverLocator, RedisGeoDriverLocator, StaticDriverLocator
from src.infra.context import SCHEMA_PATH, AppContext, build_locator
from src.infra.event_bus import QueueStats


class TestBuildLocator:
    """Тесты выбора источника позиций водителей."""

    def test_default_redis(self) -> None:
        locator = build_locator(Settings(), MagicMock())

        assert isinstance(locator, RedisGeoDriverLocator)

    def test_static(self) -> None:
        settings = Settings(service=ServiceSettings(DRIVER_LOCATOR="static"))

        assert isinstance(build_locator(settings, MagicMock()), StaticDriverLocator)

    def test_http(self) -> None:
        settings = Settings(service=ServiceSettings(DRIVER_LOCATOR="HTTP", DRIVER_SERVICE_URL="http://drivers.local"))

        assert isinstance(build_locator(settings, MagicMock()), HttpDriverLocator)

    def test_http_requires_url(self) -> None:
        settings = Settings(service=ServiceSettings(DRIVER_LOCATOR="http"))

        with pytest.raises(ValueError):
            build_locator(settings, MagicMock())


class TestAppContext:
    """Тесты для AppContext."""

    def test_wiring(self) -> None:
        context = AppContext(Settings())

        assert context.repository._db is context.db
        assert context.booking_service._event_bus is context.event_bus
        assert context.cache._ttl == 300
        assert not context.db.is_connected

    @pytest.mark.asyncio
    async def test_startup_order(self) -> None:
        context = AppContext(Settings())
        calls: list[str] = []
        context.db.connect = AsyncMock(side_effect=lambda: calls.append("db"))
        context.db.apply_schema = AsyncMock(side_effect=lambda path: calls.append("schema"))
        context.redis.connect = AsyncMock(side_effect=lambda: calls.append("redis"))
        context.event_bus.connect = AsyncMock(side_effect=lambda: calls.append("rabbitmq"))

        await context.startup()

        assert calls == ["db", "schema", "redis", "rabbitmq"]
        context.db.apply_schema.assert_awaited_once_with(SCHEMA_PATH)

    @pytest.mark.asyncio
    async def test_shutdown_drains_first(self) -> None:
        context = AppContext(Settings())
        calls: list[str] = []
        context.dispatcher.drain = AsyncMock(side_effect=lambda: calls.append("drain"))
        context.event_bus.disconnect = AsyncMock(side_effect=lambda: calls.append("rabbitmq"))
        context.redis.disconnect = AsyncMock(side_effect=lambda: calls.append("redis"))
        context.db.disconnect = AsyncMock(side_effect=lambda: calls.append("db"))

        await context.shutdown()

        assert calls == ["drain", "rabbitmq", "redis", "db"]

    @pytest.mark.asyncio
    async def test_health_not_connected(self) -> None:
        context = AppContext(Settings())

        assert await context.health() == {"database": False, "redis": False, "rabbitmq": False}

    @pytest.mark.asyncio
    async def test_dead_letter_depth(self) -> None:
        context = AppContext(Settings())
        context.event_bus.dead_letter_stats = AsyncMock(return_value=QueueStats("dlx.queue", 2, 0))

        assert await context.dead_letter_depth() == 2

    @pytest.mark.asyncio
    async def test_dead_letter_depth_without_broker(self) -> None:
        context = AppContext(Settings())

        assert await context.dead_letter_depth() is None
