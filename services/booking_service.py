"""Сервис управления бронированием

Все изменения записей проходят через этот сервис. Проверка пересечений
повторяется внутри транзакции непосредственно перед записью: значение
из кэша или со страницы записи могло устареть.

Методы возвращают (success, code, appointment_id), где code - "success"
или один из ERROR_* из config.
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional, Tuple

from config import (
    DB_TRANSACTION_TIMEOUT,
    ERROR_NOT_FOUND,
    ERROR_SLOT_IN_PAST,
    ERROR_TIMEOUT,
    ERROR_UNKNOWN,
)
from database.db_adapter import db_adapter
from database.models import Appointment, AppointmentStatus, Service, WorkingHours
from database.repositories.appointment_repository import AppointmentRepository
from database.repositories.client_repository import ClientRepository
from database.repositories.profile_repository import ProfileRepository
from database.repositories.service_repository import ServiceRepository
from database.repositories.working_hours_repository import WorkingHoursRepository
from services.cache import BookingCache
from services.notification_service import NotificationService
from services.slot_calculator import (
    filter_past_slots,
    has_overlap,
    is_slot_in_working_hours,
)
from utils.error_handler import (
    INTEGRITY_DB_ERRORS,
    RETRYABLE_DB_ERRORS,
    AppointmentNotFound,
    BookingError,
    InvalidStatusTransition,
    OutsideWorkingHoursError,
    ServiceUnavailableError,
    SlotUnavailableError,
    handle_database_error,
)
from utils.helpers import day_of_week, normalize_phone, now_local
from utils.time_utils import time_to_minutes
from validation.schemas import (
    AppointmentUpdateInput,
    BookingCreateInput,
    ServiceUpdateInput,
    TimeBlockInput,
    WeekScheduleInput,
    WorkingHoursInput,
)

logger = logging.getLogger(__name__)

BookingResult = Tuple[bool, str, Optional[str]]

BLOCK_CLIENT_NAME = "Блокировка"


def ensure_within_working_hours(
    working_hours: Optional[WorkingHours], time_str: str, duration_minutes: int
) -> None:
    """Начало внутри рабочего окна, конец не позже конца рабочего дня

    Raises:
        OutsideWorkingHoursError
    """
    if not is_slot_in_working_hours(working_hours, time_str):
        raise OutsideWorkingHoursError(f"{time_str} is outside working hours")

    if time_to_minutes(time_str) + duration_minutes > working_hours.end_minutes:
        raise OutsideWorkingHoursError(f"{time_str} + {duration_minutes}min ends after working hours")


class BookingService:
    """Создание, перенос, отмена записей и блокировка времени"""

    def __init__(
        self,
        cache: Optional[BookingCache] = None,
        notifier: Optional[NotificationService] = None,
        transaction_timeout: float = DB_TRANSACTION_TIMEOUT,
    ):
        self.cache = cache if cache is not None else BookingCache()
        self.notifier = notifier or NotificationService()
        self.transaction_timeout = transaction_timeout

    async def _guarded(
        self,
        operation: str,
        profile_id: str,
        action: Callable[[], Awaitable[Optional[str]]],
    ) -> BookingResult:
        """Выполнить действие с таймаутом и перевести ошибки в коды

        При успехе кэш профиля сбрасывается.
        """
        try:
            async with asyncio.timeout(self.transaction_timeout):
                result_id = await action()
        except BookingError as e:
            logger.info(f"{operation} rejected for profile {profile_id}: {e.code} ({e})")
            return False, e.code, None
        except asyncio.TimeoutError:
            logger.error(
                f"Transaction timeout ({self.transaction_timeout}s) in {operation} "
                f"for profile {profile_id}"
            )
            return False, ERROR_TIMEOUT, None
        except (INTEGRITY_DB_ERRORS + RETRYABLE_DB_ERRORS) as e:
            handle_database_error(e, {"operation": operation, "profile_id": profile_id})
            return False, ERROR_UNKNOWN, None
        except Exception as e:
            logger.error(f"Error in {operation}: {e}", exc_info=True)
            return False, ERROR_UNKNOWN, None

        self.cache.invalidate_profile(profile_id)
        return True, "success", result_id

    @staticmethod
    async def _check_no_overlap(
        conn,
        profile_id: str,
        date_str: str,
        time_str: str,
        duration_minutes: int,
        exclude_id: Optional[str] = None,
    ) -> None:
        """Проверка пересечений внутри транзакции

        Raises:
            SlotUnavailableError: Интервал пересекается с активной записью
        """
        existing = await AppointmentRepository.list_for_date(profile_id, date_str, conn=conn)
        if has_overlap(date_str, time_str, duration_minutes, existing, exclude_id=exclude_id):
            logger.info(
                f"Slot {date_str} {time_str} ({duration_minutes}min) not available "
                f"for profile {profile_id} (race condition prevented)"
            )
            raise SlotUnavailableError(f"{date_str} {time_str} is taken")

    async def create_booking(
        self, data: BookingCreateInput, now: Optional[datetime] = None
    ) -> BookingResult:
        """Создание записи клиентом с атомарной проверкой

        Args:
            data: Проверенные данные формы записи
            now: Текущее время профиля (для тестов)

        Returns:
            (success, code, appointment_id)
        """
        profile_id = data.profile_id
        created = {}

        async def action() -> str:
            profile = await ProfileRepository.get_by_id(profile_id)
            if profile is None:
                raise BookingError(f"Profile {profile_id} not found", code=ERROR_NOT_FOUND)

            service = await ServiceRepository.get_service(profile_id, data.service_id)
            if service is None or not service.is_active:
                raise ServiceUnavailableError(f"Service {data.service_id} is not available")

            current = now or now_local(profile.timezone)
            if not filter_past_slots(data.date, [data.time], current):
                raise BookingError(f"{data.date} {data.time} is in the past", code=ERROR_SLOT_IN_PAST)

            working_hours = await WorkingHoursRepository.get_for_day(profile_id, day_of_week(data.date))
            ensure_within_working_hours(working_hours, data.time, service.duration_minutes)

            async with db_adapter.acquire() as conn:
                async with conn.transaction():
                    await self._check_no_overlap(
                        conn, profile_id, data.date, data.time, service.duration_minutes
                    )
                    client_id = await ClientRepository.upsert_by_phone(
                        profile_id, data.client_name, data.client_phone, conn=conn
                    )
                    appointment = Appointment(
                        id=None,
                        profile_id=profile_id,
                        service_id=service.id,
                        appointment_date=data.date,
                        appointment_time=data.time,
                        status=AppointmentStatus.PENDING,
                        duration_minutes=service.duration_minutes,
                        client_name=data.client_name,
                        client_phone=data.client_phone,
                        client_id=client_id,
                        notes=data.notes,
                        service_name=service.name,
                    )
                    appointment.id = await AppointmentRepository.insert(appointment, conn=conn)

            created.update(profile=profile, appointment=appointment)
            logger.info(
                f"✅ Booking created: {appointment.id} profile={profile_id} "
                f"{data.date} {data.time} service={service.id} ({service.duration_minutes}min)"
            )
            return appointment.id

        result = await self._guarded("create_booking", profile_id, action)

        if result[0]:
            # Уведомление вне транзакции; сбой Telegram не отменяет запись
            await self.notifier.notify_owner_new_booking(
                created["profile"], created["appointment"], created["appointment"].service_name
            )
        return result

    async def update_appointment(
        self, profile_id: str, appointment_id: str, data: AppointmentUpdateInput
    ) -> BookingResult:
        """Изменение записи владельцем (перенос, смена услуги, статуса, заметки)

        Запись не конфликтует сама с собой: при проверке пересечений она
        исключается по ID.
        """

        async def action() -> str:
            async with db_adapter.acquire() as conn:
                async with conn.transaction():
                    current = await AppointmentRepository.get_by_id(profile_id, appointment_id, conn=conn)
                    if current is None:
                        raise AppointmentNotFound(f"Appointment {appointment_id} not found")

                    fields = {}

                    if data.status is not None and data.status != current.status:
                        if not AppointmentStatus.can_transition(current.status, data.status):
                            raise InvalidStatusTransition(f"{current.status} -> {data.status}")
                        fields["status"] = data.status

                    if data.changes_slot:
                        new_date = data.date or current.appointment_date
                        new_time = data.time or current.appointment_time
                        service = await self._service_for_update(conn, profile_id, current, data.service_id)

                        # Отменённая запись интервал не занимает
                        if fields.get("status", current.status) != AppointmentStatus.CANCELLED:
                            if current.status != AppointmentStatus.BLOCKED:
                                working_hours = await WorkingHoursRepository.get_for_day(
                                    profile_id, day_of_week(new_date), conn=conn
                                )
                                ensure_within_working_hours(working_hours, new_time, service.duration_minutes)

                            await self._check_no_overlap(
                                conn,
                                profile_id,
                                new_date,
                                new_time,
                                service.duration_minutes,
                                exclude_id=appointment_id,
                            )

                        fields.update(
                            appointment_date=new_date,
                            appointment_time=new_time,
                            service_id=service.id,
                        )
                        if (new_date, new_time) != (current.appointment_date, current.appointment_time):
                            # Напоминания для нового времени уходят заново
                            fields.update(notification_sent_1h=False, notification_sent_24h=False)

                    if data.notes is not None:
                        fields["notes"] = data.notes

                    if fields:
                        await AppointmentRepository.update_fields(profile_id, appointment_id, fields, conn=conn)

            logger.info(f"Appointment {appointment_id} updated: {sorted(fields)}")
            return appointment_id

        return await self._guarded("update_appointment", profile_id, action)

    @staticmethod
    async def _service_for_update(
        conn, profile_id: str, current: Appointment, service_id: Optional[str]
    ) -> Service:
        """Услуга после изменения; новая услуга должна быть активной"""
        target_id = service_id or current.service_id
        service = await ServiceRepository.get_service(profile_id, target_id, conn=conn) if target_id else None

        if service is None:
            if service_id:
                raise ServiceUnavailableError(f"Service {service_id} is not available")
            # Услугу удалили: запись держит интервал длительности по умолчанию
            return Service(
                id=current.service_id,
                profile_id=profile_id,
                name=current.service_name or "",
                duration_minutes=current.duration_minutes,
            )

        if service_id and service_id != current.service_id and not service.is_active:
            raise ServiceUnavailableError(f"Service {service_id} is not available")
        return service

    async def change_status(self, profile_id: str, appointment_id: str, new_status: str) -> BookingResult:
        """Смена статуса по правилам AppointmentStatus.TRANSITIONS"""

        async def action() -> str:
            async with db_adapter.acquire() as conn:
                async with conn.transaction():
                    current = await AppointmentRepository.get_by_id(profile_id, appointment_id, conn=conn)
                    if current is None:
                        raise AppointmentNotFound(f"Appointment {appointment_id} not found")
                    if not AppointmentStatus.can_transition(current.status, new_status):
                        raise InvalidStatusTransition(f"{current.status} -> {new_status}")
                    if current.status != new_status:
                        await AppointmentRepository.set_status(profile_id, appointment_id, new_status, conn=conn)

            logger.info(f"Appointment {appointment_id} status: {current.status} -> {new_status}")
            return appointment_id

        return await self._guarded("change_status", profile_id, action)

    async def cancel_appointment(
        self,
        profile_id: str,
        appointment_id: str,
        reason: Optional[str] = None,
        client_phone: Optional[str] = None,
    ) -> BookingResult:
        """Отмена записи (или снятие блокировки); отменённая запись освобождает слот

        Args:
            client_phone: Отмена со стороны клиента: телефон должен совпасть
                с телефоном записи, владелец получает уведомление
        """
        cancelled = {}

        async def action() -> str:
            async with db_adapter.acquire() as conn:
                async with conn.transaction():
                    current = await AppointmentRepository.get_by_id(profile_id, appointment_id, conn=conn)
                    if current is None:
                        raise AppointmentNotFound(f"Appointment {appointment_id} not found")
                    if client_phone is not None and (
                        current.status == AppointmentStatus.BLOCKED
                        or normalize_phone(client_phone) != normalize_phone(current.client_phone)
                    ):
                        raise AppointmentNotFound(f"Appointment {appointment_id} not found")
                    if not AppointmentStatus.can_transition(current.status, AppointmentStatus.CANCELLED):
                        raise InvalidStatusTransition(f"{current.status} -> {AppointmentStatus.CANCELLED}")
                    await AppointmentRepository.set_status(
                        profile_id,
                        appointment_id,
                        AppointmentStatus.CANCELLED,
                        cancellation_reason=reason,
                        conn=conn,
                    )

            cancelled["appointment"] = current
            logger.info(f"Appointment {appointment_id} cancelled (profile {profile_id})")
            return appointment_id

        result = await self._guarded("cancel_appointment", profile_id, action)

        if result[0] and client_phone is not None:
            profile = await ProfileRepository.get_by_id(profile_id)
            await self.notifier.notify_owner_cancelled(profile, cancelled["appointment"])
        return result

    async def block_time(self, profile_id: str, data: TimeBlockInput) -> BookingResult:
        """Блокировка времени владельцем

        Блокировка - запись со статусом blocked на служебную услугу нужной
        длительности. Рабочие часы не проверяются, пересечения - как у записи.
        """

        async def action() -> str:
            async with db_adapter.acquire() as conn:
                async with conn.transaction():
                    service = await ServiceRepository.get_or_create_blocking_service(
                        profile_id, data.duration_minutes, conn=conn
                    )
                    await self._check_no_overlap(
                        conn, profile_id, data.date, data.time, data.duration_minutes
                    )
                    block = Appointment(
                        id=None,
                        profile_id=profile_id,
                        service_id=service.id,
                        appointment_date=data.date,
                        appointment_time=data.time,
                        status=AppointmentStatus.BLOCKED,
                        duration_minutes=data.duration_minutes,
                        client_name=BLOCK_CLIENT_NAME,
                        client_phone="",
                        notes=data.reason,
                    )
                    block_id = await AppointmentRepository.insert(block, conn=conn)

            logger.info(
                f"Time blocked: {data.date} {data.time} ({data.duration_minutes}min) profile={profile_id}"
            )
            return block_id

        return await self._guarded("block_time", profile_id, action)

    async def replace_working_hours(self, profile_id: str, data: WeekScheduleInput) -> BookingResult:
        """Заменить расписание недели целиком (одна транзакция)"""

        async def action() -> None:
            await WorkingHoursRepository.replace_week(profile_id, data.to_models())
            return None

        return await self._guarded("replace_working_hours", profile_id, action)

    async def update_working_day(self, profile_id: str, data: WorkingHoursInput) -> BookingResult:
        """Изменить один день недели, не трогая остальные"""

        async def action() -> None:
            await WorkingHoursRepository.upsert_day(profile_id, data.to_model())
            return None

        return await self._guarded("update_working_day", profile_id, action)

    async def update_service(
        self, profile_id: str, service_id: str, data: ServiceUpdateInput
    ) -> BookingResult:
        """Изменить услугу; новая длительность сразу влияет на свободные слоты"""

        async def action() -> str:
            service = await ServiceRepository.get_service(profile_id, service_id)
            if service is None or service.is_blocking:
                raise BookingError(f"Service {service_id} not found", code=ERROR_NOT_FOUND)
            await ServiceRepository.update_service(
                profile_id,
                service_id,
                name=data.name,
                description=data.description,
                duration_minutes=data.duration_minutes,
                price=data.price,
                is_active=data.is_active,
            )
            logger.info(f"Service {service_id} updated (profile {profile_id})")
            return service_id

        return await self._guarded("update_service", profile_id, action)
