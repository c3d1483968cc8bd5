"""Database adapter для PostgreSQL и SQLite

Один интерфейс для asyncpg (production) и aiosqlite (разработка, тесты).
Тип БД берётся из конфигурации или передаётся в init_pool().

Examples:
    >>> await db_adapter.init_pool()

    >>> rows = await db_adapter.fetch(
    ...     "SELECT * FROM appointments WHERE profile_id = $1 AND appointment_date = $2",
    ...     profile_id, "2026-03-02",
    ... )

    >>> # Проверка и вставка в одной транзакции
    >>> async with db_adapter.acquire() as conn:
    ...     async with conn.transaction():
    ...         await conn.fetch("SELECT ...")
    ...         await conn.execute("INSERT ...")
"""

import logging
import re
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import aiosqlite
import asyncpg

logger = logging.getLogger(__name__)

_PG_PLACEHOLDER = re.compile(r"\$\d+")


class DatabaseAdapter:
    """Unified interface для работы с PostgreSQL и SQLite"""

    def __init__(self):
        self.pool: Optional[asyncpg.Pool] = None
        self.db_type: Optional[str] = None
        self.database_path: Optional[str] = None
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def init_pool(
        self,
        db_type: Optional[str] = None,
        dsn: Optional[str] = None,
        database_path: Optional[str] = None,
    ) -> None:
        """Инициализация connection pool

        Параметры по умолчанию читаются из config (импорт внутри,
        чтобы избежать circular imports).
        """
        if self._initialized:
            logger.warning("DatabaseAdapter already initialized")
            return

        from config import (
            DATABASE_PATH,
            DATABASE_URL,
            DB_COMMAND_TIMEOUT,
            DB_POOL_MAX_SIZE,
            DB_POOL_MIN_SIZE,
            DB_POOL_TIMEOUT,
            DB_TYPE,
        )

        self.db_type = (db_type or DB_TYPE).lower()

        if self.db_type == "postgresql":
            try:
                self.pool = await asyncpg.create_pool(
                    dsn=dsn or DATABASE_URL,
                    min_size=DB_POOL_MIN_SIZE,
                    max_size=DB_POOL_MAX_SIZE,
                    timeout=DB_POOL_TIMEOUT,
                    command_timeout=DB_COMMAND_TIMEOUT,
                    server_settings={"application_name": "looktime_booking"},
                )
                logger.info(
                    f"✅ PostgreSQL pool created: "
                    f"{DB_POOL_MIN_SIZE}-{DB_POOL_MAX_SIZE} connections"
                )
            except Exception as e:
                logger.critical(f"❌ Failed to create PostgreSQL pool: {e}")
                raise
        else:
            self.database_path = database_path or DATABASE_PATH
            logger.info(f"SQLite mode - direct connections to {self.database_path}")

        self._initialized = True

    async def close_pool(self) -> None:
        """Закрытие connection pool"""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("PostgreSQL pool closed")
        self._initialized = False

    @asynccontextmanager
    async def acquire(self):
        """Получение connection

        Yields:
            PostgreSQLConnection или SQLiteConnection
        """
        if not self._initialized:
            raise RuntimeError("DatabaseAdapter not initialized. Call init_pool() first.")

        if self.db_type == "postgresql":
            async with self.pool.acquire() as conn:
                yield PostgreSQLConnection(conn)
        else:
            async with aiosqlite.connect(self.database_path) as conn:
                conn.row_factory = aiosqlite.Row
                await conn.execute("PRAGMA foreign_keys = ON")
                yield SQLiteConnection(conn)

    async def execute(self, query: str, *args, timeout: Optional[float] = None) -> str:
        """INSERT/UPDATE/DELETE, возвращает статус вида "UPDATE 1" """
        async with self.acquire() as conn:
            return await conn.execute(query, *args, timeout=timeout)

    async def fetch(
        self, query: str, *args, timeout: Optional[float] = None
    ) -> List[Dict[str, Any]]:
        async with self.acquire() as conn:
            return await conn.fetch(query, *args, timeout=timeout)

    async def fetchrow(
        self, query: str, *args, timeout: Optional[float] = None
    ) -> Optional[Dict[str, Any]]:
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args, timeout=timeout)

    async def fetchval(
        self, query: str, *args, column: int = 0, timeout: Optional[float] = None
    ) -> Any:
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args, column=column, timeout=timeout)


def affected_rows(status: Optional[str]) -> int:
    """'UPDATE 3' -> 3, 'INSERT 0 1' -> 1"""
    if not status:
        return 0
    try:
        return int(status.split()[-1])
    except ValueError:
        return 0


class PostgreSQLConnection:
    """Wrapper для asyncpg connection"""

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def execute(self, query: str, *args, timeout: Optional[float] = None) -> str:
        return await self.conn.execute(query, *args, timeout=timeout)

    async def fetch(self, query: str, *args, timeout: Optional[float] = None) -> List[Dict]:
        rows = await self.conn.fetch(query, *args, timeout=timeout)
        return [dict(row) for row in rows]

    async def fetchrow(self, query: str, *args, timeout: Optional[float] = None) -> Optional[Dict]:
        row = await self.conn.fetchrow(query, *args, timeout=timeout)
        return dict(row) if row else None

    async def fetchval(
        self, query: str, *args, column: int = 0, timeout: Optional[float] = None
    ) -> Any:
        return await self.conn.fetchval(query, *args, column=column, timeout=timeout)

    def transaction(self):
        return self.conn.transaction()


class SQLiteConnection:
    """Wrapper для aiosqlite connection

    Внутри transaction() коммит откладывается до выхода из блока.
    """

    def __init__(self, conn: aiosqlite.Connection):
        self.conn = conn
        self._in_transaction = False

    async def execute(self, query: str, *args, timeout: Optional[float] = None) -> str:
        cursor = await self.conn.execute(self._convert_placeholders(query), args)
        if not self._in_transaction:
            await self.conn.commit()
        verb = query.strip().split(None, 1)[0].upper()
        return f"{verb} {cursor.rowcount}"

    async def fetch(self, query: str, *args, timeout: Optional[float] = None) -> List[Dict]:
        cursor = await self.conn.execute(self._convert_placeholders(query), args)
        rows = await cursor.fetchall()
        if not self._in_transaction:
            # INSERT ... RETURNING тоже проходит через fetch
            await self.conn.commit()
        return [dict(row) for row in rows]

    async def fetchrow(self, query: str, *args, timeout: Optional[float] = None) -> Optional[Dict]:
        rows = await self.fetch(query, *args)
        return rows[0] if rows else None

    async def fetchval(
        self, query: str, *args, column: int = 0, timeout: Optional[float] = None
    ) -> Any:
        row = await self.fetchrow(query, *args)
        return list(row.values())[column] if row else None

    @asynccontextmanager
    async def transaction(self):
        """BEGIN IMMEDIATE: писатели сериализуются на уровне файла БД"""
        await self.conn.execute("BEGIN IMMEDIATE")
        self._in_transaction = True
        try:
            yield
        except BaseException:
            await self.conn.rollback()
            raise
        else:
            await self.conn.commit()
        finally:
            self._in_transaction = False

    @staticmethod
    def _convert_placeholders(query: str) -> str:
        """$1, $2 (PostgreSQL) -> ? (SQLite)"""
        return _PG_PLACEHOLDER.sub("?", query)


# Global instance
db_adapter = DatabaseAdapter()


def executor(conn=None):
    """Соединение внутри транзакции или глобальный адаптер

    Репозитории принимают conn=None: без транзакции запрос идёт через пул.
    """
    return conn if conn is not None else db_adapter
