# tests/core/test_state_machine.py
"""
Тесты таблицы переходов статусов бронирования.
"""

from __future__ import annotations

import itertools

import pytest

from src.common.constants import BookingStatus
from src.common.exceptions import InvalidTransition
from src.core.bookings.state_machine import BookingStateMachine

TERMINAL = (
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.NO_DRIVER,
    BookingStatus.TIMEOUT,
)

ALLOWED = {
    (BookingStatus.PENDING, BookingStatus.ASSIGNED),
    (BookingStatus.PENDING, BookingStatus.CANCELLED),
    (BookingStatus.PENDING, BookingStatus.NO_DRIVER),
    (BookingStatus.PENDING, BookingStatus.TIMEOUT),
    (BookingStatus.ASSIGNED, BookingStatus.ARRIVING),
    (BookingStatus.ASSIGNED, BookingStatus.CANCELLED),
    (BookingStatus.ASSIGNED, BookingStatus.TIMEOUT),
    (BookingStatus.ARRIVING, BookingStatus.IN_PROGRESS),
    (BookingStatus.ARRIVING, BookingStatus.CANCELLED),
    (BookingStatus.ARRIVING, BookingStatus.TIMEOUT),
    (BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED),
    (BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED),
    (BookingStatus.IN_PROGRESS, BookingStatus.TIMEOUT),
}


class TestBookingStateMachine:
    """Тесты для BookingStateMachine."""

    def test_table_is_exhaustive(self) -> None:
        """Проверяет, что разрешены ровно перечисленные переходы."""
        for current, new in itertools.product(BookingStatus, repeat=2):
            assert BookingStateMachine.can_transition(current, new) == ((current, new) in ALLOWED), (current, new)

    @pytest.mark.parametrize("status", TERMINAL)
    def test_terminal_statuses(self, status: BookingStatus) -> None:
        assert BookingStateMachine.is_terminal(status)

    def test_active_statuses_not_terminal(self) -> None:
        for status in (BookingStatus.PENDING, BookingStatus.ASSIGNED, BookingStatus.ARRIVING, BookingStatus.IN_PROGRESS):
            assert not BookingStateMachine.is_terminal(status)

    def test_ensure_transition_allowed(self) -> None:
        BookingStateMachine.ensure_transition(BookingStatus.ARRIVING, BookingStatus.IN_PROGRESS)

    def test_ensure_transition_from_terminal(self) -> None:
        """Проверяет ошибку при переходе из терминального статуса."""
        with pytest.raises(InvalidTransition) as exc_info:
            BookingStateMachine.ensure_transition(BookingStatus.COMPLETED, BookingStatus.ARRIVING)

        assert "терминальном" in exc_info.value.message
        assert exc_info.value.details == {"currentStatus": "COMPLETED", "requestedStatus": "ARRIVING"}

    def test_ensure_transition_skipping_step(self) -> None:
        """Проверяет запрет перепрыгивания через статус."""
        with pytest.raises(InvalidTransition) as exc_info:
            BookingStateMachine.ensure_transition(BookingStatus.PENDING, BookingStatus.IN_PROGRESS)

        assert "запрещён" in exc_info.value.message

    def test_timestamp_fields(self) -> None:
        assert BookingStateMachine.timestamp_field(BookingStatus.ASSIGNED) == "assigned_at"
        assert BookingStateMachine.timestamp_field(BookingStatus.IN_PROGRESS) == "started_at"
        assert BookingStateMachine.timestamp_field(BookingStatus.COMPLETED) == "completed_at"
        assert BookingStateMachine.timestamp_field(BookingStatus.CANCELLED) == "cancelled_at"
        assert BookingStateMachine.timestamp_field(BookingStatus.ARRIVING) is None
