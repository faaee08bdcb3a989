# src/worker/registry.py
"""
Реестр потребителей: совместный запуск, остановка, перезапуск и мониторинг.
"""

from __future__ import annotations

import asyncio
from typing import Any, Iterable, Optional

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info, log_warning
from src.infra.event_bus import EventBus
from src.worker.base import BaseConsumer


class ConsumerRegistry:
    """Управляет набором потребителей одного процесса."""

    def __init__(self, consumers: Iterable[BaseConsumer], event_bus: Optional[EventBus] = None) -> None:
        """
        Args:
            consumers: Потребители процесса
            event_bus: Шина для проверки соединения и метрик очередей
        """
        self.consumers: list[BaseConsumer] = list(consumers)
        self._event_bus = event_bus
        self._lock = asyncio.Lock()
        self._monitor_task: Optional[asyncio.Task[None]] = None

    async def start_all(self) -> None:
        for consumer in self.consumers:
            await consumer.start()
        await log_info(f"Запущено потребителей: {len(self.consumers)}", type_msg=TypeMsg.INFO)

    async def stop_all(self) -> None:
        for consumer in self.consumers:
            await consumer.stop()
        await log_info("Потребители остановлены", type_msg=TypeMsg.INFO)

    async def restart_all(self) -> None:
        """Останавливает и снова запускает всех потребителей (под блокировкой)."""
        async with self._lock:
            await self.stop_all()
            await self.start_all()

    def status(self) -> dict[str, bool]:
        """Имя потребителя -> активен ли он."""
        return {consumer.name: consumer.is_active for consumer in self.consumers}

    @property
    def all_active(self) -> bool:
        return all(consumer.is_active for consumer in self.consumers)

    # =========================================================================
    # МОНИТОРИНГ
    # =========================================================================

    def start_monitoring(self, interval: float = 60.0) -> None:
        """Запускает фоновую проверку: при неактивном потребителе перезапускает всех."""
        if self._monitor_task is not None and not self._monitor_task.done():
            return
        self._monitor_task = asyncio.create_task(self._monitor(interval))

    async def stop_monitoring(self) -> None:
        if self._monitor_task is None:
            return
        self._monitor_task.cancel()
        try:
            await self._monitor_task
        except asyncio.CancelledError:
            pass
        self._monitor_task = None

    async def check_and_restart(self) -> bool:
        """
        Одна итерация мониторинга.

        Пока соединение с брокером разорвано, перезапуск откладывается:
        robust-соединение само восстановит потребителей.

        Returns:
            True, если понадобился перезапуск
        """
        if self.all_active:
            return False

        if self._event_bus is not None and not self._event_bus.is_connected:
            await log_warning("RabbitMQ недоступен, перезапуск потребителей отложен")
            return False

        inactive = [name for name, active in self.status().items() if not active]
        await log_warning(f"Неактивные потребители: {', '.join(inactive)}, перезапуск")
        try:
            await self.restart_all()
        except Exception as e:
            await log_error(f"Перезапуск потребителей не удался: {e}", exc_info=True)
        return True

    async def collect_metrics(self) -> dict[str, Any]:
        """
        Состояние потребителей и глубина их очередей, включая dead letter.

        Returns:
            {"consumers", "active", "queues": {имя: QueueStats.to_dict()}}
        """
        metrics: dict[str, Any] = {
            "consumers": len(self.consumers),
            "active": sum(1 for consumer in self.consumers if consumer.is_active),
            "queues": {},
        }
        if self._event_bus is None or not self._event_bus.is_connected:
            return metrics

        names = [consumer.queue_name for consumer in self.consumers]
        names.append(self._event_bus.dlx_queue_name)
        for name in names:
            stats = await self._event_bus.queue_stats(name)
            if stats is not None:
                metrics["queues"][name] = stats.to_dict()
        return metrics

    async def log_metrics(self) -> dict[str, Any]:
        metrics = await self.collect_metrics()
        await log_info(
            f"Потребители: {metrics['active']}/{metrics['consumers']} активны",
            type_msg=TypeMsg.DEBUG,
            extra={"metrics": metrics},
        )

        if self._event_bus is not None:
            dead = metrics["queues"].get(self._event_bus.dlx_queue_name)
            if dead and dead["messageCount"]:
                await log_warning(
                    f"В {dead['queue']} ждут разбора сообщений: {dead['messageCount']}",
                    extra={"queue": dead["queue"]},
                )
        return metrics

    async def _monitor(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.check_and_restart()
            try:
                await self.log_metrics()
            except Exception as e:
                await log_error(f"Сбор метрик очередей не удался: {e}")
