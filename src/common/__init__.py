# src/common/__init__.py
"""
Общие утилиты, константы, ошибки и логгер.
"""

from src.common.logger import get_logger, log_info, log_error, log_warning, log_debug
from src.common.constants import TypeMsg
from src.common.exceptions import (
    BookingError,
    BrokerUnavailable,
    Forbidden,
    InvalidTransition,
    NotFound,
    PoisonMessage,
    StorageUnavailable,
    Unauthorized,
    ValidationError,
)

__all__ = [
    "get_logger",
    "log_info",
    "log_error",
    "log_warning",
    "log_debug",
    "TypeMsg",
    "BookingError",
    "BrokerUnavailable",
    "Forbidden",
    "InvalidTransition",
    "NotFound",
    "PoisonMessage",
    "StorageUnavailable",
    "Unauthorized",
    "ValidationError",
]
