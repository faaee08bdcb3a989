# src/services/booking_service/schemas.py
"""
Схемы запросов и конверт ответа API бронирований.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

from src.common.constants import BookingStatus
from src.core.bookings.models import CamelModel, CoordinatesDTO


class ApiResponse(BaseModel):
    """Конверт любого ответа API."""
    success: bool
    message: str
    data: Any = None


def ok(data: Any = None, message: str = "OK") -> dict[str, Any]:
    return ApiResponse(success=True, message=message, data=data).model_dump()


def fail(message: str, data: Any = None) -> dict[str, Any]:
    return ApiResponse(success=False, message=message, data=data).model_dump()


class UpdateStatusRequest(CamelModel):
    """Смена статуса (межсервисный вызов)."""
    status: BookingStatus
    metadata: dict[str, Any] = Field(default_factory=dict)


class AssignDriverRequest(CamelModel):
    """Назначение водителя (межсервисный вызов)."""
    driver_id: str = Field(..., min_length=1)
    driver_location: CoordinatesDTO


class CancelRequest(CamelModel):
    """Отмена бронирования участником."""
    reason: Optional[str] = Field(None, max_length=500)
