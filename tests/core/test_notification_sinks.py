# tests/core/test_notification_sinks.py
"""
Тесты приёмников уведомлений и поиска водителей.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest

from src.common.constants import NotificationChannel
from src.core.notifications.locator import (
    DriverLocator,
    HttpDriverLocator,
    NearbyDriver,
    RedisGeoDriverLocator,
    StaticDriverLocator,
)
from src.core.notifications.sinks import (
    CompositeSink,
    InMemorySink,
    LoggingSink,
    Notification,
    NotificationSink,
    RedisPubSubSink,
    mask_sensitive_data,
)


class TestMaskSensitiveData:
    """Тесты для mask_sensitive_data."""

    def test_phone_masked(self) -> None:
        masked = mask_sensitive_data({"phone": "+84901234567"})

        assert masked["phone"].endswith("4567")
        assert "90123" not in masked["phone"]

    def test_email_masked(self) -> None:
        assert mask_sensitive_data({"email": "ivan@example.com"})["email"] == "i***@example.com"

    def test_token_hidden(self) -> None:
        assert mask_sensitive_data({"deviceToken": "abc.def"})["deviceToken"] == "***"

    def test_nested_and_plain(self) -> None:
        masked = mask_sensitive_data({"bookingId": "BKG1", "contact": {"phone": "0901234567"}})

        assert masked["bookingId"] == "BKG1"
        assert masked["contact"]["phone"] == "******4567"


class TestSinks:
    """Тесты приёмников."""

    @pytest.mark.asyncio
    async def test_redis_pubsub_channel(self, mock_redis: AsyncMock) -> None:
        sink = RedisPubSubSink(mock_redis)
        notification = Notification(NotificationChannel.SOCKET, "user:x", "booking_created", {"bookingId": "B1"})

        await sink.send(notification)

        channel, message = mock_redis.publish.call_args.args
        assert channel == "notifications:user:x"
        assert message["event"] == "booking_created"
        assert message["data"] == {"bookingId": "B1"}
        assert message["id"] == notification.notification_id

    @pytest.mark.asyncio
    async def test_composite_routes_by_channel(self) -> None:
        socket, default = InMemorySink(), InMemorySink()
        sink = CompositeSink({NotificationChannel.SOCKET: socket}, default=default)

        await sink.send(Notification(NotificationChannel.SOCKET, "user:x", "a"))
        await sink.send(Notification(NotificationChannel.SMS, "x", "b"))

        assert [n.event for n in socket.sent] == ["a"]
        assert [n.event for n in default.sent] == ["b"]

    @pytest.mark.asyncio
    async def test_logging_sink(self) -> None:
        await LoggingSink().send(Notification(NotificationChannel.PUSH, "x", "trip_started", {"phone": "0901234567"}))

    def test_protocol(self, mock_redis: AsyncMock) -> None:
        assert isinstance(RedisPubSubSink(mock_redis), NotificationSink)
        assert isinstance(InMemorySink(), NotificationSink)

    def test_unique_ids(self) -> None:
        first = Notification(NotificationChannel.PUSH, "x", "e")
        second = Notification(NotificationChannel.PUSH, "x", "e")

        assert first.notification_id != second.notification_id


class TestLocators:
    """Тесты поиска водителей."""

    @pytest.mark.asyncio
    async def test_static_sorted_by_distance(self) -> None:
        locator = StaticDriverLocator([
            NearbyDriver("far", "AVAILABLE", "STANDARD", (106.6700, 10.7626)),
            NearbyDriver("near", "AVAILABLE", "STANDARD", (106.6610, 10.7626)),
        ])

        found = await locator.find_nearby(106.6602, 10.7626, 5000)

        assert [d.driver_id for d in found] == ["near", "far"]
        assert isinstance(locator, DriverLocator)

    @pytest.mark.asyncio
    async def test_redis_geo(self, mock_redis: AsyncMock) -> None:
        mock_redis.geosearch.return_value = [("d1", 812.34, (106.661, 10.77))]
        mock_redis.hgetall.return_value = {"status": "AVAILABLE", "vehicle_type": "BIKE", "name": "Minh"}
        locator = RedisGeoDriverLocator(mock_redis, max_count=10)

        found = await locator.find_nearby(106.66, 10.76, 2000)

        assert found == [NearbyDriver("d1", "AVAILABLE", "BIKE", (106.661, 10.77), 812.3, "Minh")]
        mock_redis.geosearch.assert_awaited_once_with("drivers:locations", 106.66, 10.76, 2000, count=10)
        mock_redis.hgetall.assert_awaited_once_with("driver:d1")

    @pytest.mark.asyncio
    async def test_redis_geo_missing_info(self, mock_redis: AsyncMock) -> None:
        mock_redis.geosearch.return_value = [("d2", 10.0, (106.66, 10.76))]

        found = await RedisGeoDriverLocator(mock_redis).find_nearby(106.66, 10.76, 2000)

        assert found[0].status == "OFFLINE"
        assert not found[0].is_available

    @pytest.mark.asyncio
    async def test_http_locator(self) -> None:
        seen: dict[str, str] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(request.url.params)
            seen["path"] = request.url.path
            return httpx.Response(200, json={"data": [{
                "driverId": 7,
                "status": "AVAILABLE",
                "vehicleType": "STANDARD",
                "location": {"lat": 10.77, "lng": 106.66},
                "distance": 350.0,
            }]})

        client = httpx.AsyncClient(base_url="http://drivers.local", transport=httpx.MockTransport(handler))
        locator = HttpDriverLocator("http://drivers.local", client=client)

        found = await locator.find_nearby(106.66, 10.76, 3000)
        await locator.close()

        assert seen["path"] == "/drivers/nearby"
        assert seen["radius"] == "3000"
        assert found[0].driver_id == "7"
        assert found[0].coordinates == (106.66, 10.77)
        assert found[0].is_available

    @pytest.mark.asyncio
    async def test_http_locator_error(self) -> None:
        client = httpx.AsyncClient(
            base_url="http://drivers.local",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        locator = HttpDriverLocator("http://drivers.local", client=client)

        with pytest.raises(httpx.HTTPStatusError):
            await locator.find_nearby(106.66, 10.76, 3000)

        await locator.close()
