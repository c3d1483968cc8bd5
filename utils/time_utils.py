"""Перевод времени HH:MM в минуты от полуночи и обратно"""

import re

from utils.error_handler import InvalidTimeFormat

_TIME_PREFIX = re.compile(r"^(\d{1,2}):(\d{2})")


def time_to_minutes(time_str: str) -> int:
    """Минуты от полуночи для строки "HH:MM" (хвост ":SS" игнорируется)

    Raises:
        InvalidTimeFormat: строка не начинается с HH:MM
    """
    if not isinstance(time_str, str):
        raise InvalidTimeFormat(time_str)

    match = _TIME_PREFIX.match(time_str.strip())
    if not match:
        raise InvalidTimeFormat(time_str)

    hours, minutes = int(match.group(1)), int(match.group(2))
    # 24:00 допустимо только как конец рабочего дня
    if minutes > 59 or hours > 24 or (hours == 24 and minutes):
        raise InvalidTimeFormat(time_str)

    return hours * 60 + minutes


def minutes_to_time(minutes: int) -> str:
    """Обратное преобразование в "HH:MM".

    Значения >= 1440 не заворачиваются на следующие сутки.
    """
    hours, mins = divmod(int(minutes), 60)
    return f"{hours:02d}:{mins:02d}"


def normalize_time(time_str: str) -> str:
    """'09:30:00' -> '09:30'"""
    return minutes_to_time(time_to_minutes(time_str))


def to_db_time(time_str: str) -> str:
    """'09:30' -> '09:30:00' (формат хранения appointment_time)"""
    return f"{normalize_time(time_str)}:00"
