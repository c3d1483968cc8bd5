"""Занятость дней для календаря (серые даты)

Ёмкость дня = длина рабочего окна / 30 минут. По умолчанию занятость
считается числом записей за день, без учёта их длительности: запись на
90 минут занимает "один слот". Режим slot_units считает ceil(duration / 30).
"""

import math
from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional, Union

from config import CAPACITY_MODE, SLOT_STEP_MINUTES
from database.models import DayCapacity, WorkingHours
from services.slot_calculator import AppointmentLike, as_appointment
from utils.helpers import day_of_week, iter_dates

MODE_APPOINTMENTS = "appointments"
MODE_SLOT_UNITS = "slot_units"
CAPACITY_MODES = (MODE_APPOINTMENTS, MODE_SLOT_UNITS)


def check_mode(mode: str) -> str:
    if mode not in CAPACITY_MODES:
        raise ValueError(f"Unknown capacity mode: {mode}")
    return mode


def total_slots(working_hours: Optional[WorkingHours], step_minutes: int = SLOT_STEP_MINUTES) -> int:
    """Сколько 30-минутных слотов помещается в рабочее окно"""
    if working_hours is None or not working_hours.is_working:
        return 0
    return working_hours.span_minutes // step_minutes


def slot_units(duration_minutes: int, step_minutes: int = SLOT_STEP_MINUTES) -> int:
    return max(1, math.ceil(duration_minutes / step_minutes))


def count_by_date(
    appointments: Iterable[AppointmentLike],
    mode: str = CAPACITY_MODE,
    step_minutes: int = SLOT_STEP_MINUTES,
) -> Dict[str, int]:
    """{дата: занятые слоты} по всем неотменённым записям за один проход"""
    check_mode(mode)
    counts: Dict[str, int] = defaultdict(int)

    for apt in map(as_appointment, appointments):
        if apt.is_cancelled:
            continue
        if mode == MODE_SLOT_UNITS:
            counts[apt.appointment_date[:10]] += slot_units(apt.duration_minutes, step_minutes)
        else:
            counts[apt.appointment_date[:10]] += 1

    return dict(counts)


def compute_day_capacity(
    target_date: Union[date, str],
    working_hours: Optional[WorkingHours],
    occupied: int,
    step_minutes: int = SLOT_STEP_MINUTES,
) -> DayCapacity:
    is_working = bool(working_hours and working_hours.is_working)
    return DayCapacity(
        date=str(target_date)[:10],
        occupied=occupied,
        total_slots=total_slots(working_hours, step_minutes),
        is_working=is_working,
    )


def compute_busy_days(
    start_date: Union[date, str],
    end_date: Union[date, str],
    week: Mapping[int, WorkingHours],
    counts: Mapping[str, int],
    step_minutes: int = SLOT_STEP_MINUTES,
) -> Dict[str, DayCapacity]:
    """Занятость каждого дня диапазона

    Args:
        week: Рабочие часы по дню недели (0 = воскресенье); нет строки - выходной
        counts: Результат count_by_date (или уже посчитанный в БД)
    """
    result = {}
    for current in iter_dates(start_date, end_date):
        date_str = current.isoformat()
        result[date_str] = compute_day_capacity(
            date_str,
            week.get(day_of_week(current)),
            counts.get(date_str, 0),
            step_minutes,
        )
    return result


def unavailable_dates(capacities: Mapping[str, DayCapacity]) -> List[str]:
    """Даты, которые календарь должен показать недоступными"""
    return sorted(date_str for date_str, day in capacities.items() if not day.is_bookable)
