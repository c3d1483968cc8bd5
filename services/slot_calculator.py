"""Расчёт свободных слотов и проверка пересечений записей

Чистые функции без обращений к БД: на вход подаются уже загруженные
рабочие часы и записи, на выход - bool или список времени "HH:MM".
Интервалы полуоткрытые [start, start + duration): запись, которая
заканчивается в 11:00, не пересекается со слотом, начинающимся в 11:00.
"""

from datetime import date, datetime
from typing import Any, Iterable, List, Mapping, Optional, Union

from config import SLOT_STEP_MINUTES
from database.models import Appointment, WorkingHours
from utils.helpers import to_date
from utils.time_utils import minutes_to_time, time_to_minutes

AppointmentLike = Union[Appointment, Mapping[str, Any]]


def as_appointment(item: AppointmentLike) -> Appointment:
    if isinstance(item, Appointment):
        return item
    return Appointment.from_row(item)


def intervals_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    """Пересечение полуоткрытых интервалов [a_start, a_end) и [b_start, b_end)"""
    return a_start < b_end and b_start < a_end


def has_overlap(
    slot_date: Union[date, str],
    start_time: str,
    duration_minutes: int,
    appointments: Iterable[AppointmentLike],
    exclude_id: Optional[str] = None,
) -> bool:
    """Пересекается ли слот хотя бы с одной активной записью этой даты

    Args:
        slot_date: Дата слота
        start_time: Начало слота (HH:MM)
        duration_minutes: Длительность услуги
        appointments: Записи профиля (обычно уже отфильтрованы по дате)
        exclude_id: ID записи, которую редактируем (не конфликтует сама с собой)
    """
    date_str = to_date(slot_date).isoformat()
    slot_start = time_to_minutes(start_time)
    slot_end = slot_start + duration_minutes

    for item in appointments:
        apt = as_appointment(item)

        if exclude_id is not None and apt.id == exclude_id:
            continue
        if apt.is_cancelled:
            continue
        if apt.appointment_date[:10] != date_str:
            continue

        if intervals_overlap(slot_start, slot_end, apt.start_minutes, apt.end_minutes):
            return True

    return False


def has_enough_continuous_time(
    slot_date: Union[date, str],
    start_time: str,
    duration_minutes: int,
    appointments: Iterable[AppointmentLike],
    working_end_time: Optional[str] = None,
    exclude_id: Optional[str] = None,
) -> bool:
    """Услуга успевает закончиться до конца рабочего дня и ни с чем не пересекается

    Нижнюю границу (начало рабочего дня) проверяет is_slot_in_working_hours.
    """
    if working_end_time:
        slot_end = time_to_minutes(start_time) + duration_minutes
        if slot_end > time_to_minutes(working_end_time):
            return False

    return not has_overlap(slot_date, start_time, duration_minutes, appointments, exclude_id)


def is_slot_in_working_hours(working_hours: Optional[WorkingHours], start_time: str) -> bool:
    """Начало слота попадает в рабочее окно дня"""
    if working_hours is None or not working_hours.is_working:
        return False

    start = time_to_minutes(start_time)
    return working_hours.start_minutes <= start < working_hours.end_minutes


def is_slot_bookable(
    slot_date: Union[date, str],
    start_time: str,
    duration_minutes: int,
    working_hours: Optional[WorkingHours],
    appointments: Iterable[AppointmentLike],
    exclude_id: Optional[str] = None,
) -> bool:
    """Обе проверки вместе: слот в рабочих часах и есть непрерывное время"""
    if not is_slot_in_working_hours(working_hours, start_time):
        return False

    return has_enough_continuous_time(
        slot_date,
        start_time,
        duration_minutes,
        appointments,
        working_end_time=working_hours.end_time,
        exclude_id=exclude_id,
    )


def generate_available_slots(
    slot_date: Union[date, str],
    working_hours: Optional[WorkingHours],
    duration_minutes: int,
    appointments: Iterable[AppointmentLike],
    step_minutes: int = SLOT_STEP_MINUTES,
) -> List[str]:
    """Все допустимые времена начала услуги на дату, по возрастанию

    Кандидаты идут с шагом step_minutes от начала рабочего дня, пока
    candidate + duration <= конец рабочего дня. Входные данные не изменяются.
    """
    if working_hours is None or not working_hours.is_working:
        return []

    date_str = to_date(slot_date).isoformat()
    busy = [
        (apt.start_minutes, apt.end_minutes)
        for apt in map(as_appointment, appointments)
        if not apt.is_cancelled and apt.appointment_date[:10] == date_str
    ]

    work_start = working_hours.start_minutes
    work_end = working_hours.end_minutes

    slots = []
    candidate = work_start
    while candidate + duration_minutes <= work_end:
        candidate_end = candidate + duration_minutes
        if not any(intervals_overlap(candidate, candidate_end, b_start, b_end) for b_start, b_end in busy):
            slots.append(minutes_to_time(candidate))
        candidate += step_minutes

    return slots


def filter_past_slots(slot_date: Union[date, str], slots: Iterable[str], now: datetime) -> List[str]:
    """Убрать слоты, которые уже начались по местному времени профиля"""
    target = to_date(slot_date)
    today = now.date()

    if target < today:
        return []
    if target > today:
        return list(slots)

    now_seconds = now.hour * 3600 + now.minute * 60 + now.second
    return [slot for slot in slots if time_to_minutes(slot) * 60 >= now_seconds]
