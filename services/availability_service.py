"""Сервис доступности: свободные слоты, занятые дни, занятые интервалы

Читает данные через репозитории, считает чистыми функциями из
slot_calculator / capacity_calculator, кэширует результаты в BookingCache.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from config import CALENDAR_MAX_DAYS_RANGE, CAPACITY_MODE, ERROR_NOT_FOUND, SLOT_STEP_MINUTES
from database.models import Appointment, DayCapacity, Profile, Service
from database.repositories.appointment_repository import AppointmentRepository
from database.repositories.profile_repository import ProfileRepository
from database.repositories.service_repository import ServiceRepository
from database.repositories.working_hours_repository import WorkingHoursRepository
from services.cache import BookingCache
from services.capacity_calculator import (
    MODE_APPOINTMENTS,
    check_mode,
    compute_busy_days,
    count_by_date,
    unavailable_dates,
)
from services.slot_calculator import filter_past_slots, generate_available_slots
from utils.error_handler import BookingError, ServiceUnavailableError
from utils.helpers import day_of_week, now_local, to_date

logger = logging.getLogger(__name__)


def busy_slot_view(apt: Appointment) -> Dict[str, Any]:
    """Занятый интервал без персональных данных клиента"""
    return {
        "appointment_time": apt.appointment_time,
        "service_id": apt.service_id,
        "status": apt.status,
        "duration_minutes": apt.duration_minutes,
    }


class AvailabilityService:
    """Запросы доступности для страницы записи и календаря владельца"""

    def __init__(
        self,
        cache: Optional[BookingCache] = None,
        capacity_mode: str = CAPACITY_MODE,
        step_minutes: int = SLOT_STEP_MINUTES,
    ):
        self.cache = cache if cache is not None else BookingCache()
        self.capacity_mode = check_mode(capacity_mode)
        self.step_minutes = step_minutes

    async def _get_profile(self, profile_id: str) -> Optional[Profile]:
        return await self.cache.get_or_load(
            BookingCache.make_key(profile_id, "profile"),
            lambda: ProfileRepository.get_by_id(profile_id),
        )

    async def get_bookable_service(self, profile_id: str, service_id: str) -> Service:
        """Активная услуга профиля

        Raises:
            ServiceUnavailableError: Услуги нет или она отключена
        """
        service = await ServiceRepository.get_service(profile_id, service_id)
        if service is None or not service.is_active:
            raise ServiceUnavailableError(f"Service {service_id} is not available")
        return service

    async def get_available_slots(
        self,
        profile_id: str,
        date_str: str,
        service_id: str,
        now: Optional[datetime] = None,
    ) -> List[str]:
        """Свободные времена начала услуги на дату

        Args:
            now: Текущее время профиля (по умолчанию - по его часовому поясу)

        Returns:
            ["09:00", "09:30", ...]; пустой список, если день нерабочий
        """
        target = to_date(date_str)
        date_key = target.isoformat()

        async def load() -> List[str]:
            service = await self.get_bookable_service(profile_id, service_id)
            working_hours = await WorkingHoursRepository.get_for_day(profile_id, day_of_week(target))
            appointments = await AppointmentRepository.list_for_date(profile_id, date_key)
            return generate_available_slots(
                target,
                working_hours,
                service.duration_minutes,
                appointments,
                step_minutes=self.step_minutes,
            )

        slots = await self.cache.get_or_load(
            BookingCache.make_key(profile_id, "slots", date_key, service_id),
            load,
        )

        if now is None:
            profile = await self._get_profile(profile_id)
            now = now_local(profile.timezone if profile else None)

        result = filter_past_slots(target, slots, now)
        logger.info(
            f"get_available_slots profile={profile_id} date={date_key} "
            f"service={service_id} count={len(result)}"
        )
        return result

    async def get_busy_day_counts(
        self, profile_id: str, start_date: str, end_date: str
    ) -> Dict[str, int]:
        """{дата: занятые слоты} за диапазон одним запросом"""
        start, end = self._check_range(start_date, end_date)

        async def load() -> Dict[str, int]:
            if self.capacity_mode == MODE_APPOINTMENTS:
                return await AppointmentRepository.count_by_date(profile_id, start, end)
            appointments = await AppointmentRepository.list_for_range(profile_id, start, end)
            return count_by_date(appointments, mode=self.capacity_mode, step_minutes=self.step_minutes)

        return await self.cache.get_or_load(
            BookingCache.make_key(profile_id, "counts", start, end, self.capacity_mode),
            load,
        )

    async def get_busy_days(
        self, profile_id: str, start_date: str, end_date: str
    ) -> Dict[str, DayCapacity]:
        """Занятость каждого дня диапазона (включительно)"""
        start, end = self._check_range(start_date, end_date)
        counts = await self.get_busy_day_counts(profile_id, start, end)
        week = await self.cache.get_or_load(
            BookingCache.make_key(profile_id, "week"),
            lambda: WorkingHoursRepository.get_week(profile_id),
        )
        return compute_busy_days(start, end, week, counts, step_minutes=self.step_minutes)

    async def get_unavailable_dates(
        self, profile_id: str, start_date: str, end_date: str
    ) -> List[str]:
        """Нерабочие и полностью занятые даты для календаря"""
        return unavailable_dates(await self.get_busy_days(profile_id, start_date, end_date))

    async def get_busy_slots(self, profile_id: str, date_str: str) -> List[Dict[str, Any]]:
        """Занятые интервалы дня (время, услуга, статус, длительность)"""
        date_key = to_date(date_str).isoformat()
        return await self.cache.get_or_load(
            BookingCache.make_key(profile_id, "busy_slots", date_key),
            lambda: AppointmentRepository.get_busy_slots(profile_id, date_key),
        )

    async def get_booking_data(
        self, profile_id: str, start_date: str, end_date: str
    ) -> Dict[str, Dict[str, Any]]:
        """Данные календаря за диапазон одним запросом

        Returns:
            {"busyCounts": {дата: занятость}, "slotsByDate": {дата: [интервалы]}}
        """
        start, end = self._check_range(start_date, end_date)

        async def load() -> Dict[str, Dict[str, Any]]:
            appointments = await AppointmentRepository.list_for_range(profile_id, start, end)
            slots_by_date: Dict[str, List[Dict[str, Any]]] = {}
            for apt in appointments:
                slots_by_date.setdefault(apt.appointment_date, []).append(busy_slot_view(apt))
            return {
                "busyCounts": count_by_date(
                    appointments, mode=self.capacity_mode, step_minutes=self.step_minutes
                ),
                "slotsByDate": slots_by_date,
            }

        return await self.cache.get_or_load(
            BookingCache.make_key(profile_id, "booking_data", start, end, self.capacity_mode),
            load,
        )

    async def get_booking_page(self, slug: str) -> Dict[str, Any]:
        """Профиль и активные услуги для публичной страницы /book/<slug>

        Raises:
            BookingError: Профиль не найден (код not_found)
        """
        profile = await ProfileRepository.get_by_slug(slug)
        if profile is None:
            raise BookingError(f"Profile '{slug}' not found", code=ERROR_NOT_FOUND)

        services = await self.cache.get_or_load(
            BookingCache.make_key(profile.id, "services"),
            lambda: ServiceRepository.list_services(profile.id),
        )
        return {
            "profile": {
                "id": profile.id,
                "business_name": profile.business_name,
                "address": profile.address,
                "timezone": profile.timezone,
            },
            "services": [
                {
                    "id": service.id,
                    "name": service.name,
                    "description": service.description,
                    "duration_minutes": service.duration_minutes,
                    "price": float(service.price),
                }
                for service in services
            ],
        }

    def invalidate(self, profile_id: str) -> None:
        self.cache.invalidate_profile(profile_id)

    @staticmethod
    def _check_range(start_date: str, end_date: str):
        """Проверить диапазон и вернуть ISO-строки

        Raises:
            ValueError: Конец раньше начала или диапазон слишком длинный
        """
        start = to_date(start_date)
        end = to_date(end_date)
        if end < start:
            raise ValueError("end_date must not be earlier than start_date")
        if (end - start).days + 1 > CALENDAR_MAX_DAYS_RANGE:
            raise ValueError(f"Date range must not exceed {CALENDAR_MAX_DAYS_RANGE} days")
        return start.isoformat(), end.isoformat()
