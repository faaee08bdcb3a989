# src/core/bookings/__init__.py
"""
Домен бронирований: модели, машина состояний, хранилище, кэш и сервис.
"""

from src.core.bookings.models import Booking, BookingCreateDTO, BookingFilters, Location
from src.core.bookings.service import BookingService
from src.core.bookings.state_machine import BookingStateMachine

__all__ = [
    "Booking",
    "BookingCreateDTO",
    "BookingFilters",
    "Location",
    "BookingService",
    "BookingStateMachine",
]
