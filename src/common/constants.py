# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class UserRole(str, Enum):
    """Роли пользователей (заголовок X-User-Role)."""
    PASSENGER = "passenger"
    DRIVER = "driver"
    ADMIN = "admin"


class BookingStatus(str, Enum):
    """Статусы бронирования."""
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    ARRIVING = "ARRIVING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_DRIVER = "NO_DRIVER"
    TIMEOUT = "TIMEOUT"


ACTIVE_STATUSES = frozenset({
    BookingStatus.PENDING,
    BookingStatus.ASSIGNED,
    BookingStatus.ARRIVING,
    BookingStatus.IN_PROGRESS,
})


class VehicleType(str, Enum):
    """Классы транспорта."""
    BIKE = "BIKE"
    STANDARD = "STANDARD"
    PREMIUM = "PREMIUM"
    LUXURY = "LUXURY"


class DriverStatus(str, Enum):
    """Статусы водителя (как их отдаёт сервис геолокации)."""
    AVAILABLE = "AVAILABLE"
    BUSY = "BUSY"
    OFFLINE = "OFFLINE"


class PaymentStatus(str, Enum):
    """Статусы оплаты."""
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentMethod(str, Enum):
    """Способы оплаты."""
    CASH = "CASH"
    CARD = "CARD"
    WALLET = "WALLET"
    BANKING = "BANKING"


class CancelledBy(str, Enum):
    """Инициатор отмены."""
    PASSENGER = "PASSENGER"
    DRIVER = "DRIVER"
    SYSTEM = "SYSTEM"


class AlertSeverity(str, Enum):
    """Уровни важности алертов для администраторов."""
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class NotificationChannel(str, Enum):
    """Каналы доставки уведомлений."""
    SOCKET = "socket"
    PUSH = "push"
    SMS = "sms"


# =============================================================================
# ОЧЕРЕДИ И КЛЮЧИ МАРШРУТИЗАЦИИ
# =============================================================================

class RoutingKeys:
    """Ключи маршрутизации на topic exchange."""
    BOOKING_CREATED = "booking.created"
    BOOKING_STATUS_PREFIX = "booking.status."
    BOOKING_DRIVER_ASSIGNED = "booking.driver.assigned"
    BOOKING_CANCELLED = "booking.cancelled"
    PAYMENT_COMPLETED = "payment.completed"
    PAYMENT_FAILED = "payment.failed"

    @staticmethod
    def status(status: BookingStatus | str) -> str:
        """booking.status.<статус в нижнем регистре>"""
        value = status.value if isinstance(status, BookingStatus) else str(status)
        return f"{RoutingKeys.BOOKING_STATUS_PREFIX}{value.lower()}"


class QueueNames:
    """Имена durable-очередей потребителей."""
    RIDE_SERVICE = "ride.service.queue"
    PAYMENT_SERVICE = "payment.service.queue"
    NOTIFICATION = "notification.queue"
    MATCHING = "ai.matching.queue"
