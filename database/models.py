"""Модели данных"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from config import DEFAULT_DURATION_MINUTES
from utils.time_utils import normalize_time, time_to_minutes


class AppointmentStatus:
    """Статусы записи и допустимые переходы"""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    BLOCKED = "blocked"

    ALL = (PENDING, CONFIRMED, COMPLETED, CANCELLED, BLOCKED)

    TRANSITIONS = {
        PENDING: {CONFIRMED, CANCELLED},
        CONFIRMED: {COMPLETED, CANCELLED},
        COMPLETED: set(),
        CANCELLED: set(),
        # Блокировку владелец может только снять
        BLOCKED: {CANCELLED},
    }

    @classmethod
    def can_transition(cls, current: str, new: str) -> bool:
        if current == new:
            return True
        return new in cls.TRANSITIONS.get(current, set())


BLOCKING_SERVICE_NAME = "Блокировка"


def _str_or_none(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def resolve_duration(value: Optional[int]) -> int:
    """Длительность записи из JOIN с услугой; NULL, 0 или отрицательная -> 60 минут"""
    if value is None or int(value) <= 0:
        return DEFAULT_DURATION_MINUTES
    return int(value)


@dataclass
class Profile:
    """Профиль владельца бизнеса"""

    id: str
    business_name: Optional[str] = None
    unique_slug: Optional[str] = None
    timezone: Optional[str] = None
    telegram_chat_id: Optional[int] = None
    address: Optional[str] = None
    notify_1h_before: bool = True
    notify_24h_before: bool = True

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Profile":
        return cls(
            id=str(row["id"]),
            business_name=row.get("business_name"),
            unique_slug=row.get("unique_slug"),
            timezone=row.get("timezone"),
            telegram_chat_id=row.get("telegram_chat_id"),
            address=row.get("address"),
            notify_1h_before=bool(row.get("notify_1h_before", True)),
            notify_24h_before=bool(row.get("notify_24h_before", True)),
        )


@dataclass
class Service:
    """Модель услуги/процедуры"""

    id: Optional[str]
    profile_id: str
    name: str
    duration_minutes: int
    price: float = 0
    is_active: bool = True
    description: Optional[str] = None

    @property
    def is_blocking(self) -> bool:
        """Служебная услуга для блокировки времени"""
        return self.name.startswith(BLOCKING_SERVICE_NAME) and not self.is_active and not self.price

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Service":
        return cls(
            id=str(row["id"]),
            profile_id=str(row["profile_id"]),
            name=row["name"],
            duration_minutes=resolve_duration(row.get("duration_minutes")),
            price=row.get("price") or 0,
            is_active=bool(row.get("is_active", True)),
            description=row.get("description"),
        )


@dataclass
class WorkingHours:
    """Рабочие часы на день недели (0 = воскресенье)"""

    day_of_week: int
    start_time: str
    end_time: str
    is_working: bool = True
    profile_id: Optional[str] = None

    @property
    def start_minutes(self) -> int:
        return time_to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return time_to_minutes(self.end_time)

    @property
    def span_minutes(self) -> int:
        """Длина рабочего окна; 0 для выходного"""
        if not self.is_working:
            return 0
        return max(0, self.end_minutes - self.start_minutes)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "WorkingHours":
        return cls(
            day_of_week=int(row["day_of_week"]),
            start_time=normalize_time(str(row["start_time"])),
            end_time=normalize_time(str(row["end_time"])),
            is_working=bool(row["is_working"]),
            profile_id=row.get("profile_id"),
        )


@dataclass
class Appointment:
    """Запись клиента (или блокировка времени владельцем)"""

    id: Optional[str]
    profile_id: str
    service_id: Optional[str]
    appointment_date: str
    appointment_time: str
    status: str = AppointmentStatus.PENDING
    duration_minutes: int = DEFAULT_DURATION_MINUTES
    client_name: Optional[str] = None
    client_phone: Optional[str] = None
    client_id: Optional[str] = None
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    notification_sent_1h: bool = False
    notification_sent_24h: bool = False
    created_at: Optional[datetime] = None

    # Расширенные поля (загружаются из JOIN)
    service_name: Optional[str] = None

    @property
    def is_cancelled(self) -> bool:
        return self.status == AppointmentStatus.CANCELLED

    @property
    def start_minutes(self) -> int:
        return time_to_minutes(self.appointment_time)

    @property
    def end_minutes(self) -> int:
        return self.start_minutes + self.duration_minutes

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Appointment":
        """Строка appointments JOIN services -> Appointment

        Единственное место, где отсутствующая длительность услуги
        заменяется значением по умолчанию.
        """
        return cls(
            id=_str_or_none(row.get("id")),
            profile_id=_str_or_none(row.get("profile_id")),
            service_id=_str_or_none(row.get("service_id")),
            appointment_date=str(row["appointment_date"]),
            appointment_time=normalize_time(str(row["appointment_time"])),
            status=row.get("status") or AppointmentStatus.PENDING,
            duration_minutes=resolve_duration(row.get("duration_minutes")),
            client_name=row.get("client_name"),
            client_phone=row.get("client_phone"),
            client_id=_str_or_none(row.get("client_id")),
            notes=row.get("notes"),
            cancellation_reason=row.get("cancellation_reason"),
            notification_sent_1h=bool(row.get("notification_sent_1h")),
            notification_sent_24h=bool(row.get("notification_sent_24h")),
            created_at=row.get("created_at"),
            service_name=row.get("service_name"),
        )


@dataclass
class DayCapacity:
    """Занятость дня для календаря"""

    date: str
    occupied: int
    total_slots: int
    is_working: bool

    @property
    def is_full(self) -> bool:
        return self.is_working and self.occupied >= self.total_slots

    @property
    def is_bookable(self) -> bool:
        return self.is_working and not self.is_full

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "occupied": self.occupied,
            "total_slots": self.total_slots,
            "is_working": self.is_working,
            "is_full": self.is_full,
        }
