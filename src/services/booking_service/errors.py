# src/services/booking_service/errors.py
"""
Обработчики ошибок: доменные ошибки и ошибки валидации превращаются
в конверт {success: false, message, data}.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.common.exceptions import BookingError
from src.common.logger import log_error, log_warning
from src.services.booking_service.schemas import fail


def _validation_details(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {"field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"), "message": error.get("msg")}
        for error in exc.errors()
    ]


def register_exception_handlers(app: FastAPI, debug: bool = False) -> None:
    """Регистрирует обработчики. debug=True добавляет текст исключения в ответ 500."""

    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
        if exc.status_code >= 500:
            await log_error(f"{request.method} {request.url.path}: {exc.message}")
        else:
            await log_warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")

        content = fail(exc.message)
        if exc.details:
            content["details"] = exc.details
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        content = fail("Ошибка валидации запроса")
        content["details"] = _validation_details(exc)
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=content)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        await log_error(f"Необработанная ошибка {request.method} {request.url.path}: {exc}", exc_info=True)
        content = fail("Внутренняя ошибка сервера")
        if debug:
            content["details"] = {"error": str(exc), "type": type(exc).__name__}
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)
