# src/infra/database.py
"""
Менеджер базы данных PostgreSQL (хранилище бронирований).
Реализует пул соединений, повтор чтений с экспоненциальной задержкой и транзакции.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from functools import wraps
from pathlib import Path
from typing import Any, AsyncGenerator, Awaitable, Callable, TypeVar

import asyncpg
from asyncpg import Connection, Pool, Record

from src.common.constants import TypeMsg
from src.common.exceptions import StorageUnavailable
from src.common.logger import log_error, log_info

T = TypeVar("T")

# Ошибки, после которых имеет смысл повторить запрос
CONNECTION_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    asyncpg.CannotConnectNowError,
    ConnectionError,
    OSError,
    asyncio.TimeoutError,
)

SCHEMA_LOCK_ID = 424242


def retry_on_connection_error(
    func: Callable[..., Awaitable[T]],
) -> Callable[..., Awaitable[T]]:
    """
    Декоратор чтений и подключения: повторяет вызов при ошибках соединения.

    Число попыток и базовая задержка берутся из экземпляра
    (retry_attempts, retry_delay). Задержка растёт как delay * 2^(n-1).
    После исчерпания попыток поднимается StorageUnavailable.
    """
    @wraps(func)
    async def wrapper(self: "DatabaseManager", *args: Any, **kwargs: Any) -> T:
        attempts = max(1, self.retry_attempts)
        last_error: BaseException | None = None

        for attempt in range(1, attempts + 1):
            try:
                return await func(self, *args, **kwargs)
            except CONNECTION_ERRORS as e:
                last_error = e
                if attempt < attempts:
                    await log_info(
                        f"Ошибка подключения к БД (попытка {attempt}/{attempts}): {e}",
                        type_msg=TypeMsg.WARNING,
                    )
                    await asyncio.sleep(self.retry_delay * (2 ** (attempt - 1)))

        await log_error(f"БД недоступна после {attempts} попыток: {last_error}")
        raise StorageUnavailable("Хранилище бронирований недоступно") from last_error

    return wrapper


def fail_fast_on_connection_error(
    func: Callable[..., Awaitable[T]],
) -> Callable[..., Awaitable[T]]:
    """
    Декоратор записей: ошибка соединения сразу поднимается как StorageUnavailable.

    Запись не повторяется: при обрыве после отправки запроса неизвестно,
    применил ли его сервер.
    """
    @wraps(func)
    async def wrapper(self: "DatabaseManager", *args: Any, **kwargs: Any) -> T:
        try:
            return await func(self, *args, **kwargs)
        except CONNECTION_ERRORS as e:
            await log_error(f"Запись в БД не выполнена: {e}")
            raise StorageUnavailable("Хранилище бронирований недоступно") from e

    return wrapper


class DatabaseManager:
    """
    Пул соединений к PostgreSQL.

    Создаётся один раз на процесс (см. AppContext) и передаётся
    репозиториям явно.
    """

    def __init__(
        self,
        dsn: str,
        *,
        min_size: int = 2,
        max_size: int = 10,
        command_timeout: int = 30,
        retry_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._command_timeout = command_timeout
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._pool: Pool | None = None

    @property
    def pool(self) -> Pool:
        """Возвращает пул соединений."""
        if self._pool is None:
            raise StorageUnavailable("Пул соединений не инициализирован")
        return self._pool

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    @retry_on_connection_error
    async def connect(self) -> None:
        """Создаёт пул соединений к PostgreSQL."""
        if self._pool is not None:
            return

        await log_info("Подключение к PostgreSQL...", type_msg=TypeMsg.INFO)
        self._pool = await asyncpg.create_pool(
            dsn=self._dsn,
            min_size=self._min_size,
            max_size=self._max_size,
            command_timeout=self._command_timeout,
        )
        await log_info("Подключение к PostgreSQL установлено", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Закрывает пул соединений."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            await log_info("Соединение с PostgreSQL закрыто", type_msg=TypeMsg.INFO)

    @asynccontextmanager
    async def acquire(self) -> AsyncGenerator[Connection, None]:
        """
        Контекстный менеджер для получения соединения из пула.

        Example:
            async with db.acquire() as conn:
                rows = await conn.fetch("SELECT * FROM bookings")
        """
        async with self.pool.acquire() as connection:
            yield connection

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[Connection, None]:
        """Соединение внутри транзакции: commit при успехе, rollback при ошибке."""
        async with self.pool.acquire() as connection:
            async with connection.transaction():
                yield connection

    # Чтения повторяются при ошибках соединения, записи нет

    @fail_fast_on_connection_error
    async def execute(self, query: str, *args: Any) -> str:
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    @fail_fast_on_connection_error
    async def execute_returning(self, query: str, *args: Any) -> Record | None:
        """INSERT/UPDATE ... RETURNING: первая строка результата или None."""
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    @retry_on_connection_error
    async def fetch(self, query: str, *args: Any) -> list[Record]:
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    @retry_on_connection_error
    async def fetchrow(self, query: str, *args: Any) -> Record | None:
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    @retry_on_connection_error
    async def fetchval(self, query: str, *args: Any, column: int = 0) -> Any:
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args, column=column)

    async def health_check(self) -> bool:
        """
        Проверяет доступность БД.

        Returns:
            True если SELECT 1 выполнился
        """
        if self._pool is None:
            return False
        try:
            async with self.acquire() as conn:
                return await conn.fetchval("SELECT 1") == 1
        except Exception as e:
            await log_error(f"Health check PostgreSQL failed: {e}")
            return False

    async def apply_schema(self, schema_path: Path) -> None:
        """
        Применяет SQL-схему под advisory lock.

        Несколько процессов могут стартовать одновременно; лок
        сериализует миграцию, а сама схема идемпотентна (IF NOT EXISTS).
        """
        if not schema_path.exists():
            raise FileNotFoundError(f"Файл схемы БД не найден: {schema_path}")

        schema_sql = schema_path.read_text(encoding="utf-8")
        await log_info("Применение схемы БД...", type_msg=TypeMsg.INFO)
        async with self.transaction() as conn:
            await conn.execute("SELECT pg_advisory_xact_lock($1)", SCHEMA_LOCK_ID)
            await conn.execute(schema_sql)
        await log_info("Схема БД успешно применена", type_msg=TypeMsg.INFO)
