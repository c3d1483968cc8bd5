"""Интеграционные тесты репозиториев на временной SQLite БД"""

import asyncio
from datetime import datetime

import aiosqlite
import pytest
import pytest_asyncio

from database.db_adapter import affected_rows, db_adapter
from database.models import Appointment, AppointmentStatus, WorkingHours
from database.repositories.appointment_repository import AppointmentRepository
from database.repositories.client_repository import ClientRepository
from database.repositories.profile_repository import ProfileRepository
from database.repositories.service_repository import ServiceRepository
from database.repositories.working_hours_repository import WorkingHoursRepository
from database.schema_manager import SchemaManager
from services.availability_service import AvailabilityService
from services.booking_service import BookingService
from services.cache import BookingCache
from validation.schemas import BookingCreateInput, TimeBlockInput

MONDAY = "2026-03-02"
EARLY_MONDAY = datetime(2026, 3, 2, 7, 0)


@pytest_asyncio.fixture
async def profile_id(tmp_path):
    """Чистая БД со схемой и одним профилем"""
    await db_adapter.init_pool(db_type="sqlite", database_path=str(tmp_path / "booking.db"))
    await SchemaManager.init_schema()
    created = await ProfileRepository.create("Studio", unique_slug="studio", timezone="Europe/Moscow")
    yield created
    await db_adapter.close_pool()


@pytest_asyncio.fixture
async def monday_profile(profile_id):
    """Профиль с рабочим понедельником 09:00-18:00 и услугой на 60 минут"""
    await WorkingHoursRepository.upsert_day(
        profile_id, WorkingHours(day_of_week=1, start_time="09:00", end_time="18:00")
    )
    service_id = await ServiceRepository.create_service(profile_id, "Стрижка", 60, price=1500)
    return profile_id, service_id


async def insert_appointment(profile_id, service_id, time_str, status=AppointmentStatus.PENDING, date_str=MONDAY):
    return await AppointmentRepository.insert(
        Appointment(
            id=None,
            profile_id=profile_id,
            service_id=service_id,
            appointment_date=date_str,
            appointment_time=time_str,
            status=status,
            client_name="Анна",
            client_phone="+79990000000",
        )
    )


def test_affected_rows():
    assert affected_rows("UPDATE 3") == 3
    assert affected_rows("INSERT 0 1") == 1
    assert affected_rows(None) == 0


class TestSchema:
    @pytest.mark.asyncio
    async def test_tables_created(self, profile_id):
        rows = await db_adapter.fetch("SELECT name FROM sqlite_master WHERE type = 'table'")
        tables = {row["name"] for row in rows}
        for name in ("profiles", "services", "clients", "working_hours", "appointments"):
            assert name in tables

    @pytest.mark.asyncio
    async def test_init_schema_idempotent(self, profile_id):
        await SchemaManager.init_schema()
        assert (await ProfileRepository.get_by_id(profile_id)).business_name == "Studio"

    @pytest.mark.asyncio
    async def test_profile_by_slug(self, profile_id):
        profile = await ProfileRepository.get_by_slug("studio")
        assert profile.id == profile_id
        assert await ProfileRepository.get_by_slug("missing") is None


class TestWorkingHoursRepository:
    @pytest.mark.asyncio
    async def test_upsert_day_updates_existing(self, profile_id):
        await WorkingHoursRepository.upsert_day(profile_id, WorkingHours(1, "09:00", "18:00"))
        await WorkingHoursRepository.upsert_day(profile_id, WorkingHours(1, "10:00", "20:00"))

        week = await WorkingHoursRepository.get_week(profile_id)
        assert list(week) == [1]
        assert (week[1].start_time, week[1].end_time) == ("10:00", "20:00")

    @pytest.mark.asyncio
    async def test_replace_week(self, profile_id):
        await WorkingHoursRepository.upsert_day(profile_id, WorkingHours(3, "09:00", "18:00"))

        written = await WorkingHoursRepository.replace_week(
            profile_id,
            [WorkingHours(1, "09:00", "18:00"), WorkingHours(0, "09:00", "18:00", is_working=False)],
        )

        week = await WorkingHoursRepository.get_week(profile_id)
        assert written == 2
        assert sorted(week) == [0, 1]
        assert week[0].is_working is False

    @pytest.mark.asyncio
    async def test_replace_week_rolls_back_on_error(self, profile_id):
        """Ошибка на середине замены не оставляет неделю пустой"""
        await WorkingHoursRepository.upsert_day(profile_id, WorkingHours(1, "09:00", "18:00"))

        with pytest.raises(aiosqlite.IntegrityError):
            await WorkingHoursRepository.replace_week(
                profile_id,
                [WorkingHours(2, "09:00", "18:00"), WorkingHours(9, "09:00", "18:00")],
            )

        week = await WorkingHoursRepository.get_week(profile_id)
        assert list(week) == [1]

    @pytest.mark.asyncio
    async def test_get_for_day_missing(self, profile_id):
        assert await WorkingHoursRepository.get_for_day(profile_id, 5) is None


class TestServiceRepository:
    @pytest.mark.asyncio
    async def test_null_duration_defaults_to_60(self, profile_id):
        service_id = await ServiceRepository.create_service(profile_id, "Консультация", None)

        service = await ServiceRepository.get_service(profile_id, service_id)
        assert service.duration_minutes == 60

    @pytest.mark.asyncio
    async def test_inactive_hidden_from_list(self, monday_profile):
        profile_id, service_id = monday_profile
        await ServiceRepository.update_service(profile_id, service_id, is_active=False)

        assert await ServiceRepository.list_services(profile_id) == []
        assert len(await ServiceRepository.list_services(profile_id, active_only=False)) == 1

    @pytest.mark.asyncio
    async def test_non_positive_duration_rejected(self, profile_id):
        with pytest.raises(ValueError):
            await ServiceRepository.create_service(profile_id, "Ошибка", -30)

        with pytest.raises(aiosqlite.IntegrityError):
            await db_adapter.execute(
                "INSERT INTO services (id, profile_id, name, duration_minutes) VALUES ($1, $2, $3, $4)",
                "bad-service",
                profile_id,
                "Ошибка",
                0,
            )

    @pytest.mark.asyncio
    async def test_update_service_duration(self, monday_profile):
        profile_id, service_id = monday_profile

        with pytest.raises(ValueError):
            await ServiceRepository.update_service(profile_id, service_id, duration_minutes=0)

        assert await ServiceRepository.update_service(profile_id, service_id, duration_minutes=90) is True
        assert (await ServiceRepository.get_service(profile_id, service_id)).duration_minutes == 90

    @pytest.mark.asyncio
    async def test_blocking_service_reused(self, profile_id):
        first = await ServiceRepository.get_or_create_blocking_service(profile_id, 90)
        second = await ServiceRepository.get_or_create_blocking_service(profile_id, 90)

        assert first.id == second.id
        assert second.is_blocking is True
        assert second.duration_minutes == 90


class TestAppointmentRepository:
    @pytest.mark.asyncio
    async def test_list_for_date_joins_duration(self, monday_profile):
        profile_id, service_id = monday_profile
        await insert_appointment(profile_id, service_id, "12:00")
        await insert_appointment(profile_id, service_id, "10:00")
        await insert_appointment(profile_id, service_id, "14:00", status=AppointmentStatus.CANCELLED)

        appointments = await AppointmentRepository.list_for_date(profile_id, MONDAY)

        assert [a.appointment_time for a in appointments] == ["10:00", "12:00"]
        assert all(a.duration_minutes == 60 for a in appointments)
        assert appointments[0].service_name == "Стрижка"

        with_cancelled = await AppointmentRepository.list_for_date(profile_id, MONDAY, include_cancelled=True)
        assert len(with_cancelled) == 3

    @pytest.mark.asyncio
    async def test_count_by_date(self, monday_profile):
        profile_id, service_id = monday_profile
        await insert_appointment(profile_id, service_id, "10:00")
        await insert_appointment(profile_id, service_id, "11:00")
        await insert_appointment(profile_id, service_id, "12:00", status=AppointmentStatus.CANCELLED)
        await insert_appointment(profile_id, service_id, "10:00", date_str="2026-03-03")

        counts = await AppointmentRepository.count_by_date(profile_id, MONDAY, "2026-03-08")
        assert counts == {MONDAY: 2, "2026-03-03": 1}

    @pytest.mark.asyncio
    async def test_busy_slots_without_client_data(self, monday_profile):
        profile_id, service_id = monday_profile
        await insert_appointment(profile_id, service_id, "10:00")

        (busy,) = await AppointmentRepository.get_busy_slots(profile_id, MONDAY)

        assert busy == {
            "appointment_time": "10:00",
            "service_id": service_id,
            "status": "pending",
            "duration_minutes": 60,
        }

    @pytest.mark.asyncio
    async def test_time_stored_with_seconds(self, monday_profile):
        """В БД HH:MM:SS, в моделях и ответах HH:MM"""
        profile_id, service_id = monday_profile
        appointment_id = await insert_appointment(profile_id, service_id, "10:00")
        await AppointmentRepository.update_fields(profile_id, appointment_id, {"appointment_time": "11:30"})

        stored = await db_adapter.fetchval(
            "SELECT appointment_time FROM appointments WHERE id = $1", appointment_id
        )
        appointment = await AppointmentRepository.get_by_id(profile_id, appointment_id)

        assert stored == "11:30:00"
        assert appointment.appointment_time == "11:30"

    @pytest.mark.asyncio
    async def test_update_fields_whitelist(self, monday_profile):
        profile_id, service_id = monday_profile
        appointment_id = await insert_appointment(profile_id, service_id, "10:00")

        with pytest.raises(ValueError):
            await AppointmentRepository.update_fields(profile_id, appointment_id, {"profile_id": "other"})

        assert await AppointmentRepository.set_status(profile_id, appointment_id, "confirmed") is True
        assert (await AppointmentRepository.get_by_id(profile_id, appointment_id)).status == "confirmed"

    @pytest.mark.asyncio
    async def test_other_profile_cannot_update(self, monday_profile):
        profile_id, service_id = monday_profile
        appointment_id = await insert_appointment(profile_id, service_id, "10:00")

        assert await AppointmentRepository.set_status("other-profile", appointment_id, "cancelled") is False

    @pytest.mark.asyncio
    async def test_reminder_rows_and_mark_sent(self, monday_profile):
        profile_id, service_id = monday_profile
        appointment_id = await insert_appointment(profile_id, service_id, "10:00")

        (row,) = await AppointmentRepository.list_for_reminders(MONDAY, MONDAY)
        assert row["timezone"] == "Europe/Moscow"
        assert not row["notification_sent_1h"]

        await AppointmentRepository.mark_notification_sent(appointment_id, "1h")
        assert (await AppointmentRepository.get_by_id(profile_id, appointment_id)).notification_sent_1h is True


@pytest.mark.asyncio
async def test_client_upsert_by_phone(profile_id):
    first = await ClientRepository.upsert_by_phone(profile_id, "Анна", "+79990000000")
    second = await ClientRepository.upsert_by_phone(profile_id, "Анна К.", "+79990000000")

    assert first == second
    row = await db_adapter.fetchrow("SELECT name FROM clients WHERE id = $1", first)
    assert row["name"] == "Анна К."


class TestBookingFlow:
    """Сервисы поверх настоящей БД"""

    @staticmethod
    def booking(profile_id, service_id, time_str, phone="+79991112233"):
        return BookingCreateInput(
            profileId=profile_id,
            serviceId=service_id,
            clientName="Мария",
            clientPhone=phone,
            date=MONDAY,
            time=time_str,
        )

    @pytest.mark.asyncio
    async def test_booking_removes_slot(self, monday_profile):
        profile_id, service_id = monday_profile
        cache = BookingCache()
        availability = AvailabilityService(cache=cache)
        booking = BookingService(cache=cache)

        before = await availability.get_available_slots(profile_id, MONDAY, service_id, now=EARLY_MONDAY)
        success, code, _ = await booking.create_booking(self.booking(profile_id, service_id, "10:00"), now=EARLY_MONDAY)
        after = await availability.get_available_slots(profile_id, MONDAY, service_id, now=EARLY_MONDAY)

        assert (success, code) == (True, "success")
        assert len(before) == 17
        assert "09:30" not in after and "10:00" not in after and "10:30" not in after
        assert "11:00" in after

    @pytest.mark.asyncio
    async def test_concurrent_bookings_same_slot(self, monday_profile):
        """Две одновременные записи на один слот: ровно одна успешна"""
        profile_id, service_id = monday_profile
        booking = BookingService(cache=BookingCache())

        results = await asyncio.gather(
            booking.create_booking(self.booking(profile_id, service_id, "10:00", "+79990000001"), now=EARLY_MONDAY),
            booking.create_booking(self.booking(profile_id, service_id, "10:30", "+79990000002"), now=EARLY_MONDAY),
        )

        codes = sorted(code for _, code, _ in results)
        assert codes == ["slot_taken", "success"]
        assert len(await AppointmentRepository.list_for_date(profile_id, MONDAY)) == 1

    @pytest.mark.asyncio
    async def test_block_then_busy_day(self, monday_profile):
        profile_id, service_id = monday_profile
        cache = BookingCache()
        booking = BookingService(cache=cache)
        availability = AvailabilityService(cache=cache)

        result = await booking.block_time(profile_id, TimeBlockInput(date=MONDAY, time="09:00", durationMinutes=540))
        slots = await availability.get_available_slots(profile_id, MONDAY, service_id, now=EARLY_MONDAY)
        days = await availability.get_busy_days(profile_id, MONDAY, MONDAY)

        assert result[0] is True
        assert slots == []
        assert days[MONDAY].occupied == 1

    @pytest.mark.asyncio
    async def test_booking_data_for_range(self, monday_profile):
        profile_id, service_id = monday_profile
        await insert_appointment(profile_id, service_id, "10:00")
        await insert_appointment(profile_id, service_id, "12:00", date_str="2026-03-04")
        await insert_appointment(profile_id, service_id, "14:00", status=AppointmentStatus.CANCELLED)

        data = await AvailabilityService(cache=BookingCache()).get_booking_data(profile_id, MONDAY, "2026-03-08")

        assert data["busyCounts"] == {MONDAY: 1, "2026-03-04": 1}
        assert data["slotsByDate"][MONDAY] == [
            {"appointment_time": "10:00", "service_id": service_id, "status": "pending", "duration_minutes": 60}
        ]

    @pytest.mark.asyncio
    async def test_client_cancel_frees_slot(self, monday_profile):
        profile_id, service_id = monday_profile
        cache = BookingCache()
        booking = BookingService(cache=cache)
        availability = AvailabilityService(cache=cache)

        _, _, appointment_id = await booking.create_booking(
            self.booking(profile_id, service_id, "10:00"), now=EARLY_MONDAY
        )
        wrong = await booking.cancel_appointment(profile_id, appointment_id, client_phone="+70000000000")
        result = await booking.cancel_appointment(profile_id, appointment_id, client_phone="+7 999 111-22-33")
        slots = await availability.get_available_slots(profile_id, MONDAY, service_id, now=EARLY_MONDAY)

        assert wrong == (False, "not_found", None)
        assert result == (True, "success", appointment_id)
        assert "10:00" in slots
