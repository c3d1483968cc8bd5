"""Общие фикстуры тестов"""

import pytest

from database.models import Appointment, AppointmentStatus, WorkingHours

# Понедельник
MONDAY = "2026-03-02"
SUNDAY = "2026-03-01"


def make_appointment(
    time_str: str,
    duration: int = 60,
    status: str = AppointmentStatus.PENDING,
    date_str: str = MONDAY,
    appointment_id: str = None,
) -> Appointment:
    return Appointment(
        id=appointment_id or f"apt-{date_str}-{time_str}",
        profile_id="profile-1",
        service_id="service-1",
        appointment_date=date_str,
        appointment_time=time_str,
        status=status,
        duration_minutes=duration,
    )


@pytest.fixture
def monday_hours():
    """Пн 09:00-18:00"""
    return WorkingHours(day_of_week=1, start_time="09:00", end_time="18:00", is_working=True)


@pytest.fixture
def day_off():
    return WorkingHours(day_of_week=0, start_time="09:00", end_time="18:00", is_working=False)
