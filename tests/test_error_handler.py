"""Тесты обработки ошибок и retry"""

from unittest.mock import AsyncMock, patch

import aiosqlite
import pytest
from pydantic import ValidationError

from utils.error_handler import (
    AppointmentNotFound,
    BookingError,
    DatabaseError,
    ErrorSeverity,
    SlotUnavailableError,
    async_retry_on_error,
    classify_error,
    format_validation_error,
    handle_database_error,
    safe_operation,
    should_retry,
)
from validation.schemas import TimeBlockInput


class TestDomainErrors:
    def test_codes(self):
        assert SlotUnavailableError().code == "slot_taken"
        assert AppointmentNotFound("x").code == "not_found"
        assert BookingError("gone", code="slot_in_past").code == "slot_in_past"

    def test_booking_errors_are_low_severity(self):
        assert classify_error(SlotUnavailableError()) is ErrorSeverity.LOW

    def test_integrity_error_is_high(self):
        assert classify_error(aiosqlite.IntegrityError("UNIQUE")) is ErrorSeverity.HIGH

    def test_should_retry(self):
        assert should_retry(aiosqlite.OperationalError("locked")) is True
        assert should_retry(DatabaseError("connection reset")) is True
        assert should_retry(ValueError("bad input")) is False


class TestRetry:
    @pytest.mark.asyncio
    async def test_retries_transient_errors(self):
        func = AsyncMock(side_effect=[aiosqlite.OperationalError("locked"), "ok"])
        func.__name__ = "load"

        with patch("utils.error_handler.asyncio.sleep", new=AsyncMock()) as mock_sleep:
            result = await async_retry_on_error(max_attempts=3, delay=0.1)(func)()

        assert result == "ok"
        assert func.await_count == 2
        mock_sleep.assert_awaited_once_with(0.1)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        func = AsyncMock(side_effect=aiosqlite.OperationalError("locked"))
        func.__name__ = "load"

        with patch("utils.error_handler.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(aiosqlite.OperationalError):
                await async_retry_on_error(max_attempts=3, delay=0.1)(func)()

        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_raised_immediately(self):
        func = AsyncMock(side_effect=ValueError("bad"))
        func.__name__ = "load"

        with pytest.raises(ValueError):
            await async_retry_on_error(max_attempts=3)(func)()

        assert func.await_count == 1


class TestSafeOperation:
    @pytest.mark.asyncio
    async def test_does_not_suppress(self):
        with pytest.raises(SlotUnavailableError):
            async with safe_operation("create_booking", profile_id="p1"):
                raise SlotUnavailableError("taken")

    @pytest.mark.asyncio
    async def test_success(self):
        async with safe_operation("noop") as op:
            pass
        assert op.start_time is not None


def test_handle_database_error():
    assert handle_database_error(aiosqlite.OperationalError("locked"), {"operation": "t"}) is True
    assert handle_database_error(aiosqlite.IntegrityError("dup"), {"operation": "t"}) is False


def test_format_validation_error():
    with pytest.raises(ValidationError) as exc_info:
        TimeBlockInput(date="2026-03-02", time="25:00")

    message = format_validation_error(exc_info.value)
    assert message.startswith("Ошибка в поле 'time'")
