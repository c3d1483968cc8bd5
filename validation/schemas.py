"""Pydantic schemas for input validation

All public and owner inputs are validated before reaching the services.
Dates stay ISO strings (YYYY-MM-DD) and times stay "HH:MM" strings, the
same representation the models use. JSON keys are accepted in
both snake_case and the camelCase used by the booking page.
"""

import re
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from config import CALENDAR_MAX_DAYS_RANGE
from database.models import AppointmentStatus, WorkingHours
from utils.error_handler import InvalidTimeFormat
from utils.time_utils import normalize_time, time_to_minutes

_PHONE_RE = re.compile(r"^\+?[\d\s\-()]{5,20}$")


class _Input(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


# === VALIDATION HELPERS ===


def validate_date_string(date_str: str) -> date:
    """Parse and validate date string (YYYY-MM-DD)

    Raises:
        ValueError: If date format is invalid
    """
    try:
        return datetime.strptime(date_str, "%Y-%m-%d").date()
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid date format. Use YYYY-MM-DD: {e}") from e


def validate_time_string(time_str: str) -> str:
    """Validate "HH:MM" (or "HH:MM:SS") and return canonical "HH:MM"

    Raises:
        ValueError: If time format is invalid
    """
    try:
        minutes = time_to_minutes(time_str)
    except InvalidTimeFormat as e:
        raise ValueError(f"Invalid time format. Use HH:MM: {e.value!r}") from e
    if minutes >= 24 * 60:
        raise ValueError("Start time must be before 24:00")
    return normalize_time(time_str)


def sanitize_input(text: Optional[str], max_length: int = 500) -> str:
    """Sanitize user input text

    Raises:
        ValueError: If text is too long
    """
    if not text:
        return ""

    # Normalize whitespace, then remove remaining control characters
    text = re.sub(r"\s+", " ", text).strip()
    text = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", text)

    if len(text) > max_length:
        raise ValueError(f"Text too long (max {max_length} characters)")

    return text


def _date_field(v: str) -> str:
    return validate_date_string(v).isoformat()


# === QUERIES ===


class AvailableSlotsQuery(_Input):
    """Free start times for a service on a date"""

    profile_id: str = Field(..., min_length=1, alias="profileId")
    date: str = Field(..., description="YYYY-MM-DD")
    service_id: str = Field(..., min_length=1, alias="serviceId")

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: str) -> str:
        return _date_field(v)


class BusyDaysQuery(_Input):
    """Per-day occupancy for a calendar range"""

    profile_id: str = Field(..., min_length=1, alias="profileId")
    start_date: str = Field(..., alias="startDate")
    end_date: str = Field(..., alias="endDate")

    @field_validator("start_date", "end_date")
    @classmethod
    def validate_dates(cls, v: str) -> str:
        return _date_field(v)

    @model_validator(mode="after")
    def validate_range(self) -> "BusyDaysQuery":
        start = date.fromisoformat(self.start_date)
        end = date.fromisoformat(self.end_date)
        if end < start:
            raise ValueError("end_date must not be earlier than start_date")
        if (end - start).days + 1 > CALENDAR_MAX_DAYS_RANGE:
            raise ValueError(f"Date range must not exceed {CALENDAR_MAX_DAYS_RANGE} days")
        return self


class BusySlotsQuery(_Input):
    profile_id: str = Field(..., min_length=1, alias="profileId")
    date: str

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: str) -> str:
        return _date_field(v)


# === BOOKINGS ===


class BookingCreateInput(_Input):
    """Validation for creating a booking from the public page"""

    profile_id: str = Field(..., min_length=1, alias="profileId")
    service_id: str = Field(..., min_length=1, alias="serviceId")
    client_name: str = Field(..., min_length=1, max_length=100, alias="clientName")
    client_phone: str = Field(..., alias="clientPhone")
    date: str
    time: str
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: str) -> str:
        return _date_field(v)

    @field_validator("time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        return validate_time_string(v)

    @field_validator("client_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = sanitize_input(v, max_length=100)
        if not v:
            raise ValueError("Client name cannot be empty")
        return v

    @field_validator("client_phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        if not _PHONE_RE.match(v):
            raise ValueError("Invalid phone number")
        return v

    @field_validator("notes")
    @classmethod
    def sanitize_notes(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_input(v, max_length=1000) or None


class AppointmentUpdateInput(_Input):
    """Owner edit of an existing appointment; only passed fields change"""

    date: Optional[str] = None
    time: Optional[str] = None
    service_id: Optional[str] = Field(None, alias="serviceId")
    status: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: Optional[str]) -> Optional[str]:
        return _date_field(v) if v is not None else None

    @field_validator("time")
    @classmethod
    def validate_time(cls, v: Optional[str]) -> Optional[str]:
        return validate_time_string(v) if v is not None else None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in AppointmentStatus.ALL:
            raise ValueError(f"Status must be one of: {', '.join(AppointmentStatus.ALL)}")
        return v

    @property
    def changes_slot(self) -> bool:
        """Меняется ли занимаемый интервал (нужна проверка пересечений)"""
        return any(value is not None for value in (self.date, self.time, self.service_id))


class AppointmentStatusInput(_Input):
    status: str

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in AppointmentStatus.ALL:
            raise ValueError(f"Status must be one of: {', '.join(AppointmentStatus.ALL)}")
        return v


class AppointmentCancelInput(_Input):
    """Validation for canceling an appointment"""

    reason: Optional[str] = Field(None, max_length=500, description="Cancellation reason")

    @field_validator("reason")
    @classmethod
    def sanitize_reason(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_input(v) or None


class ClientCancelInput(_Input):
    """Client-side cancellation from the booking page; phone proves ownership"""

    profile_id: str = Field(..., min_length=1, alias="profileId")
    client_phone: str = Field(..., alias="clientPhone")
    reason: Optional[str] = Field(None, max_length=500)

    @field_validator("client_phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        if not _PHONE_RE.match(v):
            raise ValueError("Invalid phone number")
        return v

    @field_validator("reason")
    @classmethod
    def sanitize_reason(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_input(v) or None


class TimeBlockInput(_Input):
    """Owner hold on a time range (break, day off, personal time)"""

    date: str
    time: str
    duration_minutes: int = Field(60, ge=5, le=24 * 60, alias="durationMinutes")
    reason: Optional[str] = Field(None, max_length=500)

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: str) -> str:
        return _date_field(v)

    @field_validator("time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        return validate_time_string(v)

    @field_validator("reason")
    @classmethod
    def sanitize_reason(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_input(v) or None

    @model_validator(mode="after")
    def validate_same_day(self) -> "TimeBlockInput":
        if time_to_minutes(self.time) + self.duration_minutes > 24 * 60:
            raise ValueError("Block must end before midnight")
        return self


# === WORKING HOURS ===


class WorkingHoursInput(_Input):
    """One weekday of the schedule (0 = Sunday)"""

    day_of_week: int = Field(..., ge=0, le=6, alias="dayOfWeek")
    start_time: str = Field("09:00", alias="startTime")
    end_time: str = Field("18:00", alias="endTime")
    is_working: bool = Field(True, alias="isWorking")

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_times(cls, v: str) -> str:
        time_to_minutes(v)
        return normalize_time(v)

    @model_validator(mode="after")
    def validate_range(self) -> "WorkingHoursInput":
        """Validate start < end on working days"""
        if self.is_working and time_to_minutes(self.start_time) >= time_to_minutes(self.end_time):
            raise ValueError("Start time must be before end time")
        return self

    def to_model(self) -> WorkingHours:
        return WorkingHours(
            day_of_week=self.day_of_week,
            start_time=self.start_time,
            end_time=self.end_time,
            is_working=self.is_working,
        )


class WeekScheduleInput(_Input):
    """Full replacement set of working hours"""

    days: List[WorkingHoursInput] = Field(..., max_length=7)

    @model_validator(mode="after")
    def validate_unique_days(self) -> "WeekScheduleInput":
        weekdays = [day.day_of_week for day in self.days]
        if len(weekdays) != len(set(weekdays)):
            raise ValueError("Each day_of_week may appear only once")
        return self

    def to_models(self) -> List[WorkingHours]:
        return [day.to_model() for day in self.days]


# === SERVICES ===


class ServiceUpdateInput(_Input):
    """Owner edit of a service; only passed fields change"""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    duration_minutes: Optional[int] = Field(None, ge=5, le=24 * 60, alias="durationMinutes")
    price: Optional[float] = Field(None, ge=0)
    is_active: Optional[bool] = Field(None, alias="isActive")

    @field_validator("name", "description")
    @classmethod
    def sanitize_text(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_input(v, max_length=1000) or None
