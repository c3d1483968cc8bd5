"""Вспомогательные функции для дат и часовых поясов"""

import logging
from datetime import date, datetime, timedelta
from typing import Iterator, Optional, Union

import pytz

from config import DEFAULT_TIMEZONE

logger = logging.getLogger(__name__)


def get_timezone(name: Optional[str]) -> pytz.BaseTzInfo:
    """Часовой пояс профиля; неизвестное имя -> часовой пояс по умолчанию"""
    if not name:
        return DEFAULT_TIMEZONE
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone '{name}', using {DEFAULT_TIMEZONE.zone}")
        return DEFAULT_TIMEZONE


def now_local(tz_name: Optional[str] = None) -> datetime:
    """Текущее время в часовом поясе профиля"""
    return datetime.now(get_timezone(tz_name))


def to_date(value: Union[date, str]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(value, "%Y-%m-%d").date()


def day_of_week(value: Union[date, str]) -> int:
    """День недели в формате working_hours: 0 = воскресенье"""
    return (to_date(value).weekday() + 1) % 7


def iter_dates(start: Union[date, str], end: Union[date, str]) -> Iterator[date]:
    """Все даты от start до end включительно"""
    current, last = to_date(start), to_date(end)
    while current <= last:
        yield current
        current += timedelta(days=1)


def normalize_phone(phone: Optional[str]) -> str:
    """Только цифры: '+7 (900) 123-45-67' -> '79001234567'"""
    return "".join(ch for ch in phone or "" if ch.isdigit())
