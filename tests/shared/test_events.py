# tests/shared/test_events.py
"""
Тесты схем событий и конверта сообщения.
"""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError as PydanticValidationError

from src.common.constants import RoutingKeys
from src.common.exceptions import PoisonMessage
from src.shared.events import (
    EVENT_REGISTRY,
    BookingCancelled,
    BookingCreated,
    BookingStatusChanged,
    DriverAssigned,
    EventEnvelope,
    PaymentCompleted,
    decode_event,
    generate_event_id,
)


class TestEventEnvelope:
    """Тесты конверта {eventId, type, timestamp, data}."""

    def test_wrap_camel_case(self) -> None:
        event = DriverAssigned(booking_id="B1", driver_id="D1", passenger_id="P1", eta=4)

        payload = json.loads(EventEnvelope.wrap(event).to_json())

        assert set(payload) == {"eventId", "type", "timestamp", "data"}
        assert payload["type"] == "DRIVER_ASSIGNED"
        assert payload["data"] == {"bookingId": "B1", "driverId": "D1", "passengerId": "P1", "eta": 4}

    def test_fresh_event_id_per_wrap(self) -> None:
        event = PaymentCompleted(booking_id="B1")

        first = EventEnvelope.wrap(event)
        second = EventEnvelope.wrap(event)

        assert first.event_id != second.event_id
        assert first.event_id.startswith("evt_")

    def test_from_json(self) -> None:
        raw = json.dumps({
            "eventId": "evt_1_abc",
            "type": "PAYMENT_FAILED",
            "timestamp": "2026-01-01T10:00:00Z",
            "data": {"bookingId": "B1", "reason": "declined"},
        })

        envelope = EventEnvelope.from_json(raw)

        assert envelope.event_id == "evt_1_abc"
        assert envelope.data["reason"] == "declined"

    def test_generated_id_format(self) -> None:
        event_id = generate_event_id()

        prefix, millis, suffix = event_id.split("_")
        assert prefix == "evt"
        assert millis.isdigit()
        assert len(suffix) == 9


class TestRoutingKeys:
    def test_fixed_keys(self) -> None:
        assert BookingCreated.ROUTING_KEY == "booking.created"
        assert BookingCancelled.ROUTING_KEY == "booking.cancelled"
        assert DriverAssigned.ROUTING_KEY == "booking.driver.assigned"

    @pytest.mark.parametrize(
        "status, key",
        [("ARRIVING", "booking.status.arriving"), ("NO_DRIVER", "booking.status.no_driver")],
    )
    def test_status_key(self, status: str, key: str) -> None:
        event = BookingStatusChanged(booking_id="B1", old_status="ASSIGNED", new_status=status)

        assert event.routing_key == key
        assert RoutingKeys.status(status) == key


class TestDecodeEvent:
    """Тесты для decode_event."""

    def test_registry_complete(self) -> None:
        assert set(EVENT_REGISTRY) == {
            "BOOKING_CREATED",
            "BOOKING_STATUS_CHANGED",
            "DRIVER_ASSIGNED",
            "BOOKING_CANCELLED",
            "PAYMENT_COMPLETED",
            "PAYMENT_FAILED",
        }

    def test_decodes_variant(self) -> None:
        envelope = EventEnvelope(
            type="BOOKING_CANCELLED",
            data={"bookingId": "B1", "passengerId": "P1", "cancelledBy": "DRIVER", "cancellationFeeApplied": False},
        )

        event = decode_event(envelope)

        assert isinstance(event, BookingCancelled)
        assert event.cancelled_by == "DRIVER"
        assert event.driver_id is None

    def test_unknown_type_ignored(self) -> None:
        assert decode_event(EventEnvelope(type="SURGE_UPDATED", data={})) is None

    def test_bad_data_is_poison(self) -> None:
        """Проверяет, что известный тип с неверными данными отклоняется."""
        with pytest.raises(PoisonMessage):
            decode_event(EventEnvelope(type="DRIVER_ASSIGNED", data={"bookingId": "B1"}))

    def test_payload_immutable(self) -> None:
        event = PaymentCompleted(booking_id="B1")

        with pytest.raises(PydanticValidationError):
            event.booking_id = "B2"  # type: ignore[misc]
