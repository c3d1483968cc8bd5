"""Репозиторий записей

Длительность записи не хранится в appointments: она берётся из услуги
через LEFT JOIN. NULL остаётся NULL, значение по умолчанию подставляет
Appointment.from_row.

Методы с параметром conn работают внутри транзакции вызывающего кода
(проверка пересечений и вставка в одной транзакции).
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from config import DB_MAX_RETRIES, DB_RETRY_BACKOFF, DB_RETRY_DELAY
from database.db_adapter import affected_rows, executor
from database.models import Appointment, AppointmentStatus, resolve_duration
from utils.error_handler import RETRYABLE_DB_ERRORS, async_retry_on_error
from utils.time_utils import normalize_time, to_db_time

logger = logging.getLogger(__name__)

_SELECT = """SELECT a.id, a.profile_id, a.service_id, a.client_id, a.client_name,
    a.client_phone, a.appointment_date, a.appointment_time, a.status, a.notes,
    a.cancellation_reason, a.notification_sent_1h, a.notification_sent_24h,
    a.created_at, s.name AS service_name, s.duration_minutes
FROM appointments a
LEFT JOIN services s ON s.id = a.service_id"""

# Поля, которые можно менять через update_fields
UPDATABLE_FIELDS = (
    "appointment_date",
    "appointment_time",
    "service_id",
    "status",
    "notes",
    "client_name",
    "client_phone",
    "cancellation_reason",
    "notification_sent_1h",
    "notification_sent_24h",
)

_retry = async_retry_on_error(
    max_attempts=DB_MAX_RETRIES,
    delay=DB_RETRY_DELAY,
    backoff=DB_RETRY_BACKOFF,
    exceptions=RETRYABLE_DB_ERRORS,
)


class AppointmentRepository:
    """Чтение и изменение записей"""

    @staticmethod
    @_retry
    async def list_for_date(
        profile_id: str,
        date_str: str,
        include_cancelled: bool = False,
        conn=None,
    ) -> List[Appointment]:
        """Записи профиля на дату, по времени начала"""
        query = f"{_SELECT} WHERE a.profile_id = $1 AND a.appointment_date = $2"
        if not include_cancelled:
            query += f" AND a.status <> '{AppointmentStatus.CANCELLED}'"
        query += " ORDER BY a.appointment_time"

        rows = await executor(conn).fetch(query, profile_id, date_str)
        return [Appointment.from_row(row) for row in rows]

    @staticmethod
    @_retry
    async def list_for_range(
        profile_id: str,
        start_date: str,
        end_date: str,
        include_cancelled: bool = False,
    ) -> List[Appointment]:
        """Записи за диапазон дат (включительно) одним запросом"""
        query = (
            f"{_SELECT} WHERE a.profile_id = $1 "
            "AND a.appointment_date >= $2 AND a.appointment_date <= $3"
        )
        if not include_cancelled:
            query += f" AND a.status <> '{AppointmentStatus.CANCELLED}'"
        query += " ORDER BY a.appointment_date, a.appointment_time"

        rows = await executor().fetch(query, profile_id, start_date, end_date)
        return [Appointment.from_row(row) for row in rows]

    @staticmethod
    @_retry
    async def count_by_date(profile_id: str, start_date: str, end_date: str) -> Dict[str, int]:
        """{дата: число неотменённых записей} за диапазон, GROUP BY в БД"""
        rows = await executor().fetch(
            f"""SELECT appointment_date, COUNT(*) AS cnt
            FROM appointments
            WHERE profile_id = $1
              AND appointment_date >= $2 AND appointment_date <= $3
              AND status <> '{AppointmentStatus.CANCELLED}'
            GROUP BY appointment_date""",
            profile_id,
            start_date,
            end_date,
        )
        return {str(row["appointment_date"]): int(row["cnt"]) for row in rows}

    @staticmethod
    @_retry
    async def get_by_id(profile_id: str, appointment_id: str, conn=None) -> Optional[Appointment]:
        row = await executor(conn).fetchrow(
            f"{_SELECT} WHERE a.id = $1 AND a.profile_id = $2",
            appointment_id,
            profile_id,
        )
        return Appointment.from_row(row) if row else None

    @staticmethod
    @_retry
    async def get_busy_slots(profile_id: str, date_str: str) -> List[Dict[str, Any]]:
        """Занятые интервалы дня без персональных данных клиента"""
        rows = await executor().fetch(
            f"""SELECT a.appointment_time, a.service_id, a.status, s.duration_minutes
            FROM appointments a
            LEFT JOIN services s ON s.id = a.service_id
            WHERE a.profile_id = $1 AND a.appointment_date = $2
              AND a.status <> '{AppointmentStatus.CANCELLED}'
            ORDER BY a.appointment_time""",
            profile_id,
            date_str,
        )
        return [
            {
                "appointment_time": normalize_time(str(row["appointment_time"])),
                "service_id": None if row["service_id"] is None else str(row["service_id"]),
                "status": row["status"],
                "duration_minutes": resolve_duration(row["duration_minutes"]),
            }
            for row in rows
        ]

    @staticmethod
    async def insert(appointment: Appointment, conn=None) -> str:
        """Вставить запись

        Returns:
            ID новой записи
        """
        appointment_id = appointment.id or str(uuid.uuid4())
        await executor(conn).execute(
            """INSERT INTO appointments (
                id, profile_id, service_id, client_id, client_name, client_phone,
                appointment_date, appointment_time, status, notes
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)""",
            appointment_id,
            appointment.profile_id,
            appointment.service_id,
            appointment.client_id,
            appointment.client_name or "",
            appointment.client_phone or "",
            appointment.appointment_date,
            to_db_time(appointment.appointment_time),
            appointment.status,
            appointment.notes,
        )
        logger.info(
            f"Appointment {appointment_id} inserted: {appointment.appointment_date} "
            f"{appointment.appointment_time} ({appointment.status})"
        )
        return appointment_id

    @staticmethod
    async def update_fields(
        profile_id: str,
        appointment_id: str,
        fields: Dict[str, Any],
        conn=None,
    ) -> bool:
        """Обновить разрешённые поля записи

        Raises:
            ValueError: Поле не входит в UPDATABLE_FIELDS
        """
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        if not fields:
            return False
        if "appointment_time" in fields:
            fields = {**fields, "appointment_time": to_db_time(fields["appointment_time"])}

        params = list(fields.values())
        assignments = [f"{column} = ${i}" for i, column in enumerate(fields, start=1)]
        assignments.append("updated_at = CURRENT_TIMESTAMP")
        params.extend([appointment_id, profile_id])

        status = await executor(conn).execute(
            f"UPDATE appointments SET {', '.join(assignments)} "
            f"WHERE id = ${len(params) - 1} AND profile_id = ${len(params)}",
            *params,
        )
        return affected_rows(status) > 0

    @staticmethod
    async def set_status(
        profile_id: str,
        appointment_id: str,
        status: str,
        cancellation_reason: Optional[str] = None,
        conn=None,
    ) -> bool:
        fields: Dict[str, Any] = {"status": status}
        if cancellation_reason is not None:
            fields["cancellation_reason"] = cancellation_reason
        return await AppointmentRepository.update_fields(profile_id, appointment_id, fields, conn=conn)

    @staticmethod
    @_retry
    async def list_for_reminders(start_date: str, end_date: str) -> List[Dict[str, Any]]:
        """Ожидающие записи с настройками уведомлений профиля

        Returns:
            Строки записи + timezone, business_name, address, notify_* профиля
            и telegram_chat_id клиента
        """
        rows = await executor().fetch(
            f"""SELECT a.id, a.profile_id, a.service_id, a.client_name, a.client_phone,
                a.appointment_date, a.appointment_time, a.status,
                a.notification_sent_1h, a.notification_sent_24h,
                s.name AS service_name, s.duration_minutes,
                p.timezone, p.business_name, p.address,
                p.notify_1h_before, p.notify_24h_before,
                c.telegram_chat_id AS client_chat_id
            FROM appointments a
            JOIN profiles p ON p.id = a.profile_id
            LEFT JOIN services s ON s.id = a.service_id
            LEFT JOIN clients c ON c.id = a.client_id
            WHERE a.status = '{AppointmentStatus.PENDING}'
              AND a.appointment_date >= $1 AND a.appointment_date <= $2
            ORDER BY a.appointment_date, a.appointment_time""",
            start_date,
            end_date,
        )
        return rows

    @staticmethod
    async def mark_notification_sent(appointment_id: str, kind: str) -> None:
        """Отметить отправку напоминания ("1h" или "24h")"""
        if kind not in ("1h", "24h"):
            raise ValueError(f"Unknown reminder kind: {kind}")
        await executor().execute(
            f"UPDATE appointments SET notification_sent_{kind} = TRUE WHERE id = $1",
            appointment_id,
        )
