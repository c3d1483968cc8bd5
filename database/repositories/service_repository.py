"""Репозиторий для работы с услугами"""

import logging
import uuid
from typing import List, Optional

from config import DB_MAX_RETRIES, DB_RETRY_BACKOFF, DB_RETRY_DELAY
from database.db_adapter import affected_rows, executor
from database.models import BLOCKING_SERVICE_NAME, Service
from utils.error_handler import RETRYABLE_DB_ERRORS, async_retry_on_error

logger = logging.getLogger(__name__)

_COLUMNS = "id, profile_id, name, description, duration_minutes, price, is_active"

_retry = async_retry_on_error(
    max_attempts=DB_MAX_RETRIES,
    delay=DB_RETRY_DELAY,
    backoff=DB_RETRY_BACKOFF,
    exceptions=RETRYABLE_DB_ERRORS,
)


def blocking_service_name(duration_minutes: int) -> str:
    return f"{BLOCKING_SERVICE_NAME} ({duration_minutes} мин)"


def _check_duration(duration_minutes: Optional[int]) -> None:
    if duration_minutes is not None and duration_minutes <= 0:
        raise ValueError(f"Service duration must be positive: {duration_minutes}")


class ServiceRepository:
    """Репозиторий для управления услугами"""

    @staticmethod
    @_retry
    async def get_service(profile_id: str, service_id: str, conn=None) -> Optional[Service]:
        """Услуга профиля по ID (активная или нет)"""
        row = await executor(conn).fetchrow(
            f"SELECT {_COLUMNS} FROM services WHERE id = $1 AND profile_id = $2",
            service_id,
            profile_id,
        )
        return Service.from_row(row) if row else None

    @staticmethod
    @_retry
    async def list_services(profile_id: str, active_only: bool = True) -> List[Service]:
        query = f"SELECT {_COLUMNS} FROM services WHERE profile_id = $1"
        if active_only:
            query += " AND is_active = TRUE"
        query += " ORDER BY name"

        rows = await executor().fetch(query, profile_id)
        return [Service.from_row(row) for row in rows]

    @staticmethod
    async def create_service(
        profile_id: str,
        name: str,
        duration_minutes: Optional[int],
        price: float = 0,
        description: Optional[str] = None,
        is_active: bool = True,
        conn=None,
    ) -> str:
        """Создать услугу

        Returns:
            ID новой услуги
        """
        _check_duration(duration_minutes)
        service_id = str(uuid.uuid4())
        await executor(conn).execute(
            """INSERT INTO services (id, profile_id, name, description, duration_minutes, price, is_active)
            VALUES ($1, $2, $3, $4, $5, $6, $7)""",
            service_id,
            profile_id,
            name,
            description,
            duration_minutes,
            price,
            is_active,
        )
        logger.info(f"Service created: {service_id} - {name}")
        return service_id

    @staticmethod
    async def update_service(
        profile_id: str,
        service_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        duration_minutes: Optional[int] = None,
        price: Optional[float] = None,
        is_active: Optional[bool] = None,
    ) -> bool:
        """Обновить переданные поля услуги"""
        _check_duration(duration_minutes)
        fields = {
            "name": name,
            "description": description,
            "duration_minutes": duration_minutes,
            "price": price,
            "is_active": is_active,
        }
        updates = []
        params = []
        for column, value in fields.items():
            if value is None:
                continue
            params.append(value)
            updates.append(f"{column} = ${len(params)}")

        if not updates:
            return False

        params.extend([service_id, profile_id])
        status = await executor().execute(
            f"UPDATE services SET {', '.join(updates)} "
            f"WHERE id = ${len(params) - 1} AND profile_id = ${len(params)}",
            *params,
        )
        updated = affected_rows(status) > 0
        if updated:
            logger.info(f"Service updated: {service_id}")
        return updated

    @staticmethod
    async def get_or_create_blocking_service(
        profile_id: str, duration_minutes: int, conn=None
    ) -> Service:
        """Служебная услуга для блокировки времени на duration_minutes

        Неактивна и бесплатна, поэтому не видна клиентам. Отдельная услуга
        на каждую длительность: длительность записи берётся из услуги.
        """
        name = blocking_service_name(duration_minutes)
        db = executor(conn)

        row = await db.fetchrow(
            f"""SELECT {_COLUMNS} FROM services
            WHERE profile_id = $1 AND name = $2 AND is_active = FALSE
            LIMIT 1""",
            profile_id,
            name,
        )
        if row:
            return Service.from_row(row)

        service_id = await ServiceRepository.create_service(
            profile_id,
            name,
            duration_minutes,
            price=0,
            is_active=False,
            conn=conn,
        )
        return Service(
            id=service_id,
            profile_id=profile_id,
            name=name,
            duration_minutes=duration_minutes,
            price=0,
            is_active=False,
        )
