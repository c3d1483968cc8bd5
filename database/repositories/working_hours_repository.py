"""Репозиторий рабочих часов

Не больше одной строки на (profile_id, day_of_week). Замена недели
выполняется одной транзакцией: читатели видят либо старый, либо новый
набор, но не пустой промежуток между удалением и вставкой.
"""

import logging
from typing import Dict, Iterable, Optional

from config import DB_MAX_RETRIES, DB_RETRY_BACKOFF, DB_RETRY_DELAY
from database.db_adapter import db_adapter, executor
from database.models import WorkingHours
from utils.error_handler import RETRYABLE_DB_ERRORS, async_retry_on_error

logger = logging.getLogger(__name__)

_retry = async_retry_on_error(
    max_attempts=DB_MAX_RETRIES,
    delay=DB_RETRY_DELAY,
    backoff=DB_RETRY_BACKOFF,
    exceptions=RETRYABLE_DB_ERRORS,
)


class WorkingHoursRepository:
    """Рабочие часы профиля по дням недели (0 = воскресенье)"""

    @staticmethod
    @_retry
    async def get_week(profile_id: str) -> Dict[int, WorkingHours]:
        """Все заданные дни недели; отсутствующий день = выходной"""
        rows = await db_adapter.fetch(
            """SELECT profile_id, day_of_week, start_time, end_time, is_working
            FROM working_hours
            WHERE profile_id = $1
            ORDER BY day_of_week""",
            profile_id,
        )
        week = {}
        for row in rows:
            wh = WorkingHours.from_row(row)
            week[wh.day_of_week] = wh
        return week

    @staticmethod
    @_retry
    async def get_for_day(profile_id: str, day_of_week: int, conn=None) -> Optional[WorkingHours]:
        row = await executor(conn).fetchrow(
            """SELECT profile_id, day_of_week, start_time, end_time, is_working
            FROM working_hours
            WHERE profile_id = $1 AND day_of_week = $2""",
            profile_id,
            day_of_week,
        )
        return WorkingHours.from_row(row) if row else None

    @staticmethod
    async def replace_week(profile_id: str, days: Iterable[WorkingHours]) -> int:
        """Атомарно заменить расписание недели

        Returns:
            Количество записанных дней
        """
        days = list(days)

        async with db_adapter.acquire() as conn:
            async with conn.transaction():
                await conn.execute("DELETE FROM working_hours WHERE profile_id = $1", profile_id)
                for wh in days:
                    await conn.execute(
                        """INSERT INTO working_hours
                        (profile_id, day_of_week, start_time, end_time, is_working)
                        VALUES ($1, $2, $3, $4, $5)""",
                        profile_id,
                        wh.day_of_week,
                        wh.start_time,
                        wh.end_time,
                        wh.is_working,
                    )

        logger.info(f"✅ Working hours replaced for profile {profile_id}: {len(days)} days")
        return len(days)

    @staticmethod
    async def upsert_day(profile_id: str, wh: WorkingHours, conn=None) -> None:
        """Вставить или обновить один день недели"""
        await executor(conn).execute(
            """INSERT INTO working_hours
            (profile_id, day_of_week, start_time, end_time, is_working)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (profile_id, day_of_week) DO UPDATE SET
                start_time = excluded.start_time,
                end_time = excluded.end_time,
                is_working = excluded.is_working""",
            profile_id,
            wh.day_of_week,
            wh.start_time,
            wh.end_time,
            wh.is_working,
        )
        logger.info(f"Working hours for day {wh.day_of_week} saved (profile {profile_id})")
