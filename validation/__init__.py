"""Validation module with Pydantic schemas"""

from validation.schemas import (
    AppointmentCancelInput,
    AppointmentStatusInput,
    AppointmentUpdateInput,
    AvailableSlotsQuery,
    BookingCreateInput,
    BusyDaysQuery,
    BusySlotsQuery,
    ClientCancelInput,
    ServiceUpdateInput,
    TimeBlockInput,
    WeekScheduleInput,
    WorkingHoursInput,
)

__all__ = [
    "AvailableSlotsQuery",
    "BusyDaysQuery",
    "BusySlotsQuery",
    "BookingCreateInput",
    "AppointmentUpdateInput",
    "AppointmentStatusInput",
    "AppointmentCancelInput",
    "ClientCancelInput",
    "ServiceUpdateInput",
    "TimeBlockInput",
    "WorkingHoursInput",
    "WeekScheduleInput",
]
