# src/common/exceptions.py
"""
Иерархия доменных ошибок ядра бронирований.

Каждая ошибка знает свой HTTP-статус: обработчики FastAPI превращают её
в ответ {success: false, message, data: null}.
"""

from __future__ import annotations

from typing import Any


class BookingError(Exception):
    """Базовая ошибка ядра бронирований."""

    status_code: int = 500

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(BookingError):
    """Некорректные входные данные (координаты, обязательные поля, тип ТС)."""

    status_code = 400


class InvalidTransition(BookingError):
    """Переход статуса не разрешён таблицей переходов или текущим состоянием."""

    status_code = 409

    def __init__(
        self,
        message: str,
        *,
        current_status: str | None = None,
        requested_status: str | None = None,
    ) -> None:
        super().__init__(
            message,
            details={"currentStatus": current_status, "requestedStatus": requested_status},
        )
        self.current_status = current_status
        self.requested_status = requested_status


class NotFound(BookingError):
    """Бронирование не найдено или недоступно вызывающему."""

    status_code = 404


class Unauthorized(BookingError):
    """Запрос без идентификатора пользователя."""

    status_code = 401


class Forbidden(BookingError):
    """Нет сервисного токена или роль не подходит."""

    status_code = 403


class StorageUnavailable(BookingError):
    """Хранилище недоступно после всех повторных попыток."""

    status_code = 503


class BrokerUnavailable(BookingError):
    """Брокер сообщений недоступен."""

    status_code = 503


class PoisonMessage(BookingError):
    """Сообщение из очереди невозможно обработать."""
