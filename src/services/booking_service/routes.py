# src/services/booking_service/routes.py
"""
Эндпоинты бронирований.

Все ответы в конверте {success, message, data}.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Query, status

from src.common.constants import BookingStatus, UserRole, VehicleType
from src.common.exceptions import ValidationError
from src.core.bookings.models import Booking, BookingCreateDTO, BookingFilters
from src.services.booking_service.dependencies import (
    BookingServiceDep,
    CurrentUser,
    CurrentUserDep,
    require_driver,
    require_service_token,
)
from src.services.booking_service.schemas import (
    AssignDriverRequest,
    CancelRequest,
    UpdateStatusRequest,
    ok,
)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def _dump(booking: Booking) -> dict[str, Any]:
    return booking.model_dump(mode="json", by_alias=True)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_booking(
    request: BookingCreateDTO,
    service: BookingServiceDep,
    user: CurrentUserDep,
) -> dict[str, Any]:
    booking = await service.create_booking(request, user.user_id)
    return ok(_dump(booking), "Бронирование создано")


@router.get("")
async def search_bookings(
    service: BookingServiceDep,
    user: CurrentUserDep,
    page: int = 1,
    limit: int = 10,
    status_filter: Annotated[Optional[BookingStatus], Query(alias="status")] = None,
    vehicle_type: Annotated[Optional[VehicleType], Query(alias="vehicleType")] = None,
    passenger_id: Annotated[Optional[str], Query(alias="passengerId")] = None,
    driver_id: Annotated[Optional[str], Query(alias="driverId")] = None,
    start_date: Annotated[Optional[datetime], Query(alias="startDate")] = None,
    end_date: Annotated[Optional[datetime], Query(alias="endDate")] = None,
) -> dict[str, Any]:
    """Поиск с пагинацией. Пассажир и водитель видят только свои бронирования."""
    filters = BookingFilters(
        passenger_id=passenger_id,
        driver_id=driver_id,
        status=status_filter,
        vehicle_type=vehicle_type,
        start_date=start_date,
        end_date=end_date,
    )
    if user.role == UserRole.PASSENGER:
        filters.passenger_id = user.user_id
    elif user.role == UserRole.DRIVER:
        filters.driver_id = user.user_id

    result = await service.search_bookings(filters, page=page, limit=limit)
    return ok(result.model_dump(mode="json", by_alias=True))


@router.get("/nearby/search")
async def get_nearby_bookings(
    service: BookingServiceDep,
    user: Annotated[CurrentUser, Depends(require_driver)],
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    max_distance: Annotated[Optional[float], Query(alias="maxDistance")] = None,
) -> dict[str, Any]:
    """Ожидающие бронирования рядом с водителем (по возрастанию расстояния)."""
    if lat is None or lng is None:
        raise ValidationError("Параметры lat и lng обязательны")

    nearby = await service.get_nearby_bookings((lng, lat), max_distance)
    return ok([item.model_dump(mode="json", by_alias=True) for item in nearby])


@router.get("/user/stats")
async def get_user_stats(service: BookingServiceDep, user: CurrentUserDep) -> dict[str, Any]:
    stats = await service.get_user_stats(user.user_id, user.role)
    return ok(stats.model_dump(mode="json", by_alias=True))


@router.get("/{booking_id}")
async def get_booking(booking_id: str, service: BookingServiceDep, user: CurrentUserDep) -> dict[str, Any]:
    if user.role == UserRole.ADMIN:
        booking = await service.get_booking_internal(booking_id)
    else:
        booking = await service.get_booking(booking_id, user.user_id)
    return ok(_dump(booking))


@router.patch("/{booking_id}/status", dependencies=[Depends(require_service_token)])
async def update_booking_status(
    booking_id: str,
    request: UpdateStatusRequest,
    service: BookingServiceDep,
) -> dict[str, Any]:
    booking = await service.update_status(booking_id, request.status, request.metadata)
    return ok(_dump(booking), "Статус обновлён")


@router.post("/{booking_id}/assign-driver", dependencies=[Depends(require_service_token)])
async def assign_driver(
    booking_id: str,
    request: AssignDriverRequest,
    service: BookingServiceDep,
) -> dict[str, Any]:
    booking = await service.assign_driver(booking_id, request.driver_id, request.driver_location)
    return ok(_dump(booking), "Водитель назначен")


@router.post("/{booking_id}/cancel")
async def cancel_booking(
    booking_id: str,
    service: BookingServiceDep,
    user: CurrentUserDep,
    request: Optional[CancelRequest] = None,
) -> dict[str, Any]:
    """Отмена участником поездки; администратор отменяет от имени системы."""
    if user.role != UserRole.ADMIN:
        # Чужое бронирование неотличимо от несуществующего
        await service.get_booking(booking_id, user.user_id)

    reason = request.reason if request else None
    booking = await service.cancel_booking(booking_id, user.cancelled_by, reason)
    return ok(_dump(booking), "Бронирование отменено")
