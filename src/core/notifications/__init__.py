# src/core/notifications/__init__.py
"""
Уведомления: диспетчер, приёмники доставки и поиск водителей рядом.
"""

from src.core.notifications.locator import DriverLocator, NearbyDriver
from src.core.notifications.service import NotificationDispatcher
from src.core.notifications.sinks import Notification, NotificationSink

__all__ = [
    "DriverLocator",
    "NearbyDriver",
    "NotificationDispatcher",
    "Notification",
    "NotificationSink",
]
