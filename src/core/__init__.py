# src/core/__init__.py
"""
Доменный слой (Core Domain).
Бизнес-логика бронирований и уведомлений поверх инфраструктуры.
"""

from src.core.bookings import Booking, BookingService, BookingStateMachine
from src.core.notifications import NotificationDispatcher

__all__ = [
    "Booking",
    "BookingService",
    "BookingStateMachine",
    "NotificationDispatcher",
]
