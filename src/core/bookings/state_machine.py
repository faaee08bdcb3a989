# src/core/bookings/state_machine.py
from __future__ import annotations

from src.common.constants import BookingStatus
from src.common.exceptions import InvalidTransition


class BookingStateMachine:
    ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
        BookingStatus.PENDING: frozenset({
            BookingStatus.ASSIGNED,
            BookingStatus.CANCELLED,
            BookingStatus.NO_DRIVER,
            BookingStatus.TIMEOUT,
        }),
        BookingStatus.ASSIGNED: frozenset({
            BookingStatus.ARRIVING,
            BookingStatus.CANCELLED,
            BookingStatus.TIMEOUT,
        }),
        BookingStatus.ARRIVING: frozenset({
            BookingStatus.IN_PROGRESS,
            BookingStatus.CANCELLED,
            BookingStatus.TIMEOUT,
        }),
        BookingStatus.IN_PROGRESS: frozenset({
            BookingStatus.COMPLETED,
            BookingStatus.CANCELLED,
            BookingStatus.TIMEOUT,
        }),
        BookingStatus.COMPLETED: frozenset(),
        BookingStatus.CANCELLED: frozenset(),
        BookingStatus.NO_DRIVER: frozenset(),
        BookingStatus.TIMEOUT: frozenset(),
    }

    # Колонка времени, которую выставляет переход (один раз)
    TIMESTAMP_FIELDS: dict[BookingStatus, str] = {
        BookingStatus.ASSIGNED: "assigned_at",
        BookingStatus.IN_PROGRESS: "started_at",
        BookingStatus.COMPLETED: "completed_at",
        BookingStatus.CANCELLED: "cancelled_at",
    }

    @staticmethod
    def can_transition(current: BookingStatus, new: BookingStatus) -> bool:
        return new in BookingStateMachine.ALLOWED_TRANSITIONS.get(current, frozenset())

    @staticmethod
    def is_terminal(status: BookingStatus) -> bool:
        return not BookingStateMachine.ALLOWED_TRANSITIONS.get(status)

    @staticmethod
    def ensure_transition(current: BookingStatus, new: BookingStatus) -> None:
        if BookingStateMachine.is_terminal(current):
            raise InvalidTransition(
                f"Бронирование в терминальном статусе {current.value}",
                current_status=current.value,
                requested_status=new.value,
            )
        if not BookingStateMachine.can_transition(current, new):
            raise InvalidTransition(
                f"Переход {current.value} -> {new.value} запрещён",
                current_status=current.value,
                requested_status=new.value,
            )

    @staticmethod
    def timestamp_field(status: BookingStatus) -> str | None:
        return BookingStateMachine.TIMESTAMP_FIELDS.get(status)
