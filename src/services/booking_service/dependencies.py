# src/services/booking_service/dependencies.py
"""
Зависимости FastAPI: контекст, сервис, идентичность вызывающего, сервисный токен.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends, Header, Request

from src.common.constants import CancelledBy, UserRole
from src.common.exceptions import Forbidden, Unauthorized
from src.config.loader import Settings, get_settings
from src.core.bookings.service import BookingService
from src.infra.context import AppContext


@dataclass(frozen=True)
class CurrentUser:
    """Вызывающий, как его передал шлюз (X-User-Id / X-User-Role)."""

    user_id: str
    role: UserRole

    @property
    def cancelled_by(self) -> CancelledBy:
        """Инициатор отмены по роли: администратор отменяет от имени системы."""
        return {
            UserRole.PASSENGER: CancelledBy.PASSENGER,
            UserRole.DRIVER: CancelledBy.DRIVER,
        }.get(self.role, CancelledBy.SYSTEM)


def get_context(request: Request) -> AppContext:
    """Контекст приложения, созданный в lifespan."""
    context: Optional[AppContext] = getattr(request.app.state, "context", None)
    if context is None:
        raise RuntimeError("Контекст приложения не инициализирован")
    return context


def get_app_settings(request: Request) -> Settings:
    """Настройки, с которыми создано приложение (create_app)."""
    settings: Optional[Settings] = getattr(request.app.state, "settings", None)
    return settings if settings is not None else get_settings()


def get_booking_service(context: Annotated[AppContext, Depends(get_context)]) -> BookingService:
    return context.booking_service


async def get_current_user(
    x_user_id: Annotated[Optional[str], Header(alias="X-User-Id")] = None,
    x_user_role: Annotated[Optional[str], Header(alias="X-User-Role")] = None,
) -> CurrentUser:
    """
    Идентичность из заголовков шлюза.

    Raises:
        Unauthorized: нет X-User-Id
        Forbidden: неизвестная роль
    """
    if not x_user_id:
        raise Unauthorized("Не передан X-User-Id")
    try:
        role = UserRole((x_user_role or UserRole.PASSENGER.value).lower())
    except ValueError as e:
        raise Forbidden(f"Неизвестная роль: {x_user_role}") from e
    return CurrentUser(user_id=x_user_id, role=role)


async def require_driver(user: Annotated[CurrentUser, Depends(get_current_user)]) -> CurrentUser:
    if user.role != UserRole.DRIVER:
        raise Forbidden("Доступно только водителям")
    return user


async def require_service_token(
    settings: Annotated[Settings, Depends(get_app_settings)],
    x_service_token: Annotated[Optional[str], Header(alias="X-Service-Token")] = None,
) -> None:
    """Межсервисные эндпоинты: X-Service-Token должен совпасть с service.SERVICE_TOKEN."""
    expected = settings.service.SERVICE_TOKEN
    if not expected or not x_service_token or not secrets.compare_digest(x_service_token, expected):
        raise Forbidden("Неверный сервисный токен")


BookingServiceDep = Annotated[BookingService, Depends(get_booking_service)]
CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
