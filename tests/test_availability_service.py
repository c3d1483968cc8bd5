"""Тесты AvailabilityService с замоканными репозиториями"""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import MONDAY, SUNDAY, make_appointment
from database.models import Profile, Service, WorkingHours
from services.availability_service import AvailabilityService
from services.cache import BookingCache
from utils.error_handler import BookingError, ServiceUnavailableError

MODULE = "services.availability_service"
EARLY_MONDAY = datetime(2026, 3, 2, 7, 0)


def make_service(duration=60, is_active=True):
    return Service(id="service-1", profile_id="profile-1", name="Стрижка", duration_minutes=duration, is_active=is_active)


@pytest.fixture
def repos(monday_hours):
    """Моки всех репозиториев, используемых сервисом"""
    with patch(f"{MODULE}.ServiceRepository") as service_repo, \
         patch(f"{MODULE}.WorkingHoursRepository") as hours_repo, \
         patch(f"{MODULE}.AppointmentRepository") as apt_repo, \
         patch(f"{MODULE}.ProfileRepository") as profile_repo:

        service_repo.get_service = AsyncMock(return_value=make_service())
        hours_repo.get_for_day = AsyncMock(return_value=monday_hours)
        hours_repo.get_week = AsyncMock(return_value={1: monday_hours})
        apt_repo.list_for_date = AsyncMock(return_value=[])
        apt_repo.list_for_range = AsyncMock(return_value=[])
        apt_repo.count_by_date = AsyncMock(return_value={})
        apt_repo.get_busy_slots = AsyncMock(return_value=[])
        profile_repo.get_by_id = AsyncMock(return_value=Profile(id="profile-1", timezone="Europe/Moscow"))

        yield MagicMock(service=service_repo, hours=hours_repo, apt=apt_repo, profile=profile_repo)


@pytest.fixture
def service():
    return AvailabilityService(cache=BookingCache(ttl=60))


class TestAvailableSlots:
    @pytest.mark.asyncio
    async def test_excludes_existing_appointment(self, service, repos):
        repos.apt.list_for_date.return_value = [make_appointment("10:00", 60)]

        slots = await service.get_available_slots("profile-1", MONDAY, "service-1", now=EARLY_MONDAY)

        assert "09:00" in slots
        assert "09:30" not in slots
        assert "11:00" in slots
        repos.hours.get_for_day.assert_awaited_once_with("profile-1", 1)
        repos.apt.list_for_date.assert_awaited_once_with("profile-1", MONDAY)

    @pytest.mark.asyncio
    async def test_inactive_service(self, service, repos):
        repos.service.get_service.return_value = make_service(is_active=False)

        with pytest.raises(ServiceUnavailableError):
            await service.get_available_slots("profile-1", MONDAY, "service-1", now=EARLY_MONDAY)

    @pytest.mark.asyncio
    async def test_missing_service(self, service, repos):
        repos.service.get_service.return_value = None

        with pytest.raises(ServiceUnavailableError):
            await service.get_available_slots("profile-1", MONDAY, "service-1", now=EARLY_MONDAY)

    @pytest.mark.asyncio
    async def test_closed_day_returns_empty(self, service, repos, day_off):
        repos.hours.get_for_day.return_value = day_off

        assert await service.get_available_slots("profile-1", SUNDAY, "service-1", now=EARLY_MONDAY) == []

    @pytest.mark.asyncio
    async def test_cached_until_invalidated(self, service, repos):
        await service.get_available_slots("profile-1", MONDAY, "service-1", now=EARLY_MONDAY)
        await service.get_available_slots("profile-1", MONDAY, "service-1", now=EARLY_MONDAY)
        assert repos.apt.list_for_date.await_count == 1

        service.invalidate("profile-1")
        await service.get_available_slots("profile-1", MONDAY, "service-1", now=EARLY_MONDAY)
        assert repos.apt.list_for_date.await_count == 2

    @pytest.mark.asyncio
    async def test_past_slots_filtered_after_cache(self, service, repos):
        """Кэш хранит полный список, прошедшие слоты отсекаются на каждом запросе"""
        morning = await service.get_available_slots("profile-1", MONDAY, "service-1", now=EARLY_MONDAY)
        afternoon = await service.get_available_slots(
            "profile-1", MONDAY, "service-1", now=datetime(2026, 3, 2, 15, 10)
        )

        assert len(morning) == 17
        assert afternoon == ["15:30", "16:00", "16:30", "17:00"]

    @pytest.mark.asyncio
    async def test_uses_profile_timezone_when_now_omitted(self, service, repos):
        with patch(f"{MODULE}.now_local", return_value=EARLY_MONDAY) as mock_now:
            await service.get_available_slots("profile-1", MONDAY, "service-1")

        mock_now.assert_called_once_with("Europe/Moscow")

    @pytest.mark.asyncio
    async def test_read_error_propagates(self, service, repos):
        """Ошибка чтения не превращается в "всё свободно" """
        repos.apt.list_for_date.side_effect = ConnectionError("db down")

        with pytest.raises(ConnectionError):
            await service.get_available_slots("profile-1", MONDAY, "service-1", now=EARLY_MONDAY)


class TestBusyDays:
    @pytest.mark.asyncio
    async def test_counts_from_sql_in_default_mode(self, service, repos):
        repos.apt.count_by_date.return_value = {MONDAY: 18}

        days = await service.get_busy_days("profile-1", SUNDAY, MONDAY)

        assert days[MONDAY].is_full is True
        assert days[SUNDAY].is_working is False
        repos.apt.list_for_range.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_slot_units_mode_counts_in_python(self, repos):
        service = AvailabilityService(cache=BookingCache(), capacity_mode="slot_units")
        repos.apt.list_for_range.return_value = [make_appointment("09:00", 90)]

        counts = await service.get_busy_day_counts("profile-1", MONDAY, MONDAY)

        assert counts == {MONDAY: 3}
        repos.apt.count_by_date.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unavailable_dates(self, service, repos):
        short_day = WorkingHours(day_of_week=1, start_time="09:00", end_time="10:00")
        repos.hours.get_week.return_value = {1: short_day}
        repos.apt.count_by_date.return_value = {MONDAY: 2}

        assert await service.get_unavailable_dates("profile-1", SUNDAY, MONDAY) == [SUNDAY, MONDAY]

    @pytest.mark.asyncio
    async def test_reversed_range(self, service, repos):
        with pytest.raises(ValueError):
            await service.get_busy_days("profile-1", MONDAY, SUNDAY)

    @pytest.mark.asyncio
    async def test_range_too_long(self, service, repos):
        with pytest.raises(ValueError):
            await service.get_busy_days("profile-1", "2026-01-01", "2026-12-31")


@pytest.mark.asyncio
async def test_busy_slots_passthrough(service, repos):
    busy = [{"appointment_time": "10:00", "service_id": "service-1", "status": "pending", "duration_minutes": 60}]
    repos.apt.get_busy_slots.return_value = busy

    assert await service.get_busy_slots("profile-1", MONDAY) == busy
    repos.apt.get_busy_slots.assert_awaited_once_with("profile-1", MONDAY)


class TestBookingData:
    @pytest.mark.asyncio
    async def test_range_in_one_query(self, service, repos):
        """busyCounts и slotsByDate за диапазон одним запросом"""
        tuesday = "2026-03-03"
        repos.apt.list_for_range.return_value = [
            make_appointment("10:00", 90),
            make_appointment("12:00", 60),
            make_appointment("11:00", 30, date_str=tuesday),
        ]

        data = await service.get_booking_data("profile-1", MONDAY, tuesday)

        assert data["busyCounts"] == {MONDAY: 2, tuesday: 1}
        assert [slot["appointment_time"] for slot in data["slotsByDate"][MONDAY]] == ["10:00", "12:00"]
        assert data["slotsByDate"][tuesday] == [
            {"appointment_time": "11:00", "service_id": "service-1", "status": "pending", "duration_minutes": 30}
        ]
        assert "client_name" not in data["slotsByDate"][MONDAY][0]
        repos.apt.list_for_range.assert_awaited_once_with("profile-1", MONDAY, tuesday)
        repos.apt.get_busy_slots.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cached_until_invalidated(self, service, repos):
        await service.get_booking_data("profile-1", MONDAY, MONDAY)
        await service.get_booking_data("profile-1", MONDAY, MONDAY)
        assert repos.apt.list_for_range.await_count == 1

        service.invalidate("profile-1")
        await service.get_booking_data("profile-1", MONDAY, MONDAY)
        assert repos.apt.list_for_range.await_count == 2

    @pytest.mark.asyncio
    async def test_reversed_range(self, service, repos):
        with pytest.raises(ValueError):
            await service.get_booking_data("profile-1", MONDAY, SUNDAY)


class TestBookingPage:
    @pytest.mark.asyncio
    async def test_profile_and_active_services(self, service, repos):
        repos.profile.get_by_slug = AsyncMock(
            return_value=Profile(id="profile-1", business_name="Studio", unique_slug="studio")
        )
        repos.service.list_services = AsyncMock(return_value=[make_service(duration=45)])

        page = await service.get_booking_page("studio")

        assert page["profile"]["id"] == "profile-1"
        assert page["services"][0]["duration_minutes"] == 45
        repos.service.list_services.assert_awaited_once_with("profile-1")

    @pytest.mark.asyncio
    async def test_unknown_slug(self, service, repos):
        repos.profile.get_by_slug = AsyncMock(return_value=None)

        with pytest.raises(BookingError) as exc_info:
            await service.get_booking_page("missing")
        assert exc_info.value.code == "not_found"


def test_unknown_capacity_mode():
    with pytest.raises(ValueError):
        AvailabilityService(capacity_mode="minutes")
