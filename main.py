#!/usr/bin/env python3
# main.py
"""
Главная точка входа ядра бронирований.
Запускает HTTP API, потребителей событий или всё вместе.

Использование:
    python main.py --mode api
    python main.py --mode workers
    python main.py --mode all
"""

from __future__ import annotations

import argparse
import asyncio
import signal
from typing import Optional

import uvicorn

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info, setup_logging
from src.config import settings
from src.infra.context import AppContext

MODES = ("api", "workers", "all")

# Флаг для graceful shutdown
_shutdown_event: Optional[asyncio.Event] = None


def setup_signal_handlers() -> asyncio.Event:
    """Настраивает обработчики SIGINT и SIGTERM."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
            _shutdown_event.set()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))

    return _shutdown_event


async def run_api(context: AppContext, stop_event: asyncio.Event) -> None:
    """Запускает Booking API поверх уже запущенного контекста."""
    from src.services.booking_service.app import create_app

    await log_info(
        f"Запуск Booking API на {settings.service.HOST}:{settings.service.PORT}...",
        type_msg=TypeMsg.INFO,
    )
    config = uvicorn.Config(
        create_app(settings, context=context),
        host=settings.service.HOST,
        port=settings.service.PORT,
        log_level="debug" if settings.system.DEBUG else "info",
    )
    server = uvicorn.Server(config)

    serve_task = asyncio.create_task(server.serve())
    stop_task = asyncio.create_task(stop_event.wait())
    await asyncio.wait({serve_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

    # Сервер мог остановиться сам (сигнал перехватил uvicorn)
    stop_event.set()
    server.should_exit = True
    await serve_task
    stop_task.cancel()


async def run_workers_mode(context: AppContext, stop_event: asyncio.Event) -> None:
    from src.worker.runner import run_workers

    await run_workers(context, stop_event)


async def main(mode: str = "all") -> None:
    """
    Главная функция запуска.

    Args:
        mode: api, workers или all
    """
    if mode not in MODES:
        raise ValueError(f"Неизвестный режим: {mode}. Допустимо: {', '.join(MODES)}")

    setup_logging()
    stop_event = setup_signal_handlers()

    await log_info(
        f"{settings.system.PROJECT_NAME} v{settings.system.VERSION}: запуск в режиме '{mode}'",
        type_msg=TypeMsg.INFO,
    )

    context = AppContext(settings)
    try:
        await context.startup()

        if mode == "api":
            await run_api(context, stop_event)
        elif mode == "workers":
            await run_workers_mode(context, stop_event)
        else:
            await asyncio.gather(
                run_api(context, stop_event),
                run_workers_mode(context, stop_event),
            )
    except asyncio.CancelledError:
        await log_info("Получен сигнал остановки", type_msg=TypeMsg.INFO)
    except Exception as e:
        await log_error(f"Критическая ошибка: {e}", exc_info=True)
        raise
    finally:
        await context.shutdown()
        await log_info("Приложение остановлено", type_msg=TypeMsg.INFO)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ядро бронирований поездок")
    parser.add_argument("--mode", choices=MODES, default="all", help="Что запускать")
    return parser.parse_args()


if __name__ == "__main__":
    try:
        asyncio.run(main(parse_args().mode))
    except KeyboardInterrupt:
        pass
