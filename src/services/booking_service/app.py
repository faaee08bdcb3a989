# src/services/booking_service/app.py
"""
FastAPI приложение ядра бронирований.

Endpoints:
- POST /api/v1/bookings - создать бронирование
- GET /api/v1/bookings - поиск с пагинацией
- GET /api/v1/bookings/nearby/search - ожидающие рядом (водитель)
- GET /api/v1/bookings/user/stats - статистика пользователя
- GET /api/v1/bookings/{id} - бронирование участника
- PATCH /api/v1/bookings/{id}/status - смена статуса (сервисный токен)
- POST /api/v1/bookings/{id}/assign-driver - назначить водителя (сервисный токен)
- POST /api/v1/bookings/{id}/cancel - отменить
- GET /health - состояние хранилища, кэша и брокера
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Annotated, AsyncIterator, Optional

from fastapi import Depends, FastAPI, status
from fastapi.responses import JSONResponse

from src.common.constants import TypeMsg
from src.common.logger import log_info, setup_logging
from src.config.loader import Settings, get_settings
from src.infra.context import AppContext
from src.services.booking_service.dependencies import get_context
from src.services.booking_service.errors import register_exception_handlers
from src.services.booking_service.routes import router
from src.services.booking_service.schemas import fail, ok


def create_app(settings: Optional[Settings] = None, context: Optional[AppContext] = None) -> FastAPI:
    """
    Создаёт приложение.

    Если context не передан, lifespan создаёт AppContext из настроек
    и закрывает его при остановке. Переданный контекст принадлежит вызывающему.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        setup_logging()
        owned = app.state.context is None
        if owned:
            app.state.context = AppContext(settings)
            await app.state.context.startup()
        await log_info("Booking API запущен", type_msg=TypeMsg.INFO)

        yield

        await log_info("Booking API останавливается...", type_msg=TypeMsg.INFO)
        if owned:
            await app.state.context.shutdown()
            app.state.context = None

    app = FastAPI(
        title="Booking Service",
        version=settings.system.VERSION,
        debug=settings.system.DEBUG,
        lifespan=lifespan,
    )
    app.state.context = context
    app.state.settings = settings

    register_exception_handlers(app, debug=settings.system.DEBUG)
    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health_check(ctx: Annotated[AppContext, Depends(get_context)]) -> JSONResponse:
        components = await ctx.health()
        # Глубина dead letter на статус не влияет
        dead_letters = await ctx.dead_letter_depth()
        if all(components.values()):
            return JSONResponse(
                content=ok({"status": "healthy", **components, "deadLetterMessages": dead_letters})
            )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=fail(
                "Сервис деградирован",
                {"status": "unhealthy", **components, "deadLetterMessages": dead_letters},
            ),
        )

    return app


app = create_app()
