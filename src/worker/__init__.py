# src/worker/__init__.py
"""
Потребители событий из RabbitMQ.
"""

from src.worker.base import BaseConsumer
from src.worker.booking_status import BookingStatusConsumer
from src.worker.matching import MatchingConsumer
from src.worker.notification import NotificationConsumer
from src.worker.payment import PaymentConsumer
from src.worker.registry import ConsumerRegistry

__all__ = [
    "BaseConsumer",
    "BookingStatusConsumer",
    "MatchingConsumer",
    "NotificationConsumer",
    "PaymentConsumer",
    "ConsumerRegistry",
]
