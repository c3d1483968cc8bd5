"""Centralized error handling for booking operations and external calls

This module provides:
- Domain errors of the booking core (invalid time, slot taken, ...)
- Retry logic with exponential backoff
- Structured error logging
- Error classification and recovery strategies
- Integration with Sentry for monitoring
"""

import asyncio
import functools
import logging
import time
from enum import Enum
from typing import Any, Callable, Optional, TypeVar

import aiosqlite
import asyncpg
import sentry_sdk
from aiogram.exceptions import (
    TelegramAPIError,
    TelegramBadRequest,
    TelegramForbiddenError,
    TelegramNetworkError,
    TelegramRetryAfter,
)
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorSeverity(Enum):
    """Error severity levels"""

    LOW = "low"  # Recoverable, logged only
    MEDIUM = "medium"  # Recoverable, logged + notified
    HIGH = "high"  # May need manual intervention
    CRITICAL = "critical"  # Requires immediate attention


# === DOMAIN ERRORS ===


class InvalidTimeFormat(ValueError):
    """Строка времени не в формате HH:MM"""

    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"Invalid time format (expected HH:MM): {value!r}")


class BookingError(Exception):
    """Базовая ошибка бронирования с кодом для клиента"""

    code = "unknown_error"

    def __init__(self, message: str = "", code: Optional[str] = None):
        if code:
            self.code = code
        super().__init__(message or self.code)


class SlotUnavailableError(BookingError):
    """Слот больше не доступен (пересечение с другой записью)"""

    code = "slot_taken"


class OutsideWorkingHoursError(BookingError):
    code = "outside_working_hours"


class ServiceUnavailableError(BookingError):
    code = "service_not_available"


class AppointmentNotFound(BookingError):
    code = "not_found"


class InvalidStatusTransition(BookingError):
    code = "invalid_status"


class RetryableError(Exception):
    """Base class for errors that can be retried"""


class DatabaseError(RetryableError):
    """Database operation errors"""


# === ERROR CLASSIFICATION ===

RETRYABLE_DB_ERRORS = (
    aiosqlite.OperationalError,
    asyncpg.exceptions.ConnectionDoesNotExistError,
    asyncpg.exceptions.TooManyConnectionsError,
    asyncpg.exceptions.DeadlockDetectedError,
    asyncpg.exceptions.SerializationError,
)

INTEGRITY_DB_ERRORS = (
    aiosqlite.IntegrityError,
    asyncpg.exceptions.IntegrityConstraintViolationError,
)

RETRYABLE_TELEGRAM_ERRORS = (TelegramNetworkError, TelegramRetryAfter)

NON_RETRYABLE_TELEGRAM_ERRORS = (TelegramBadRequest, TelegramForbiddenError)


def classify_error(error: Exception) -> ErrorSeverity:
    """Classify error by severity

    Args:
        error: Exception to classify

    Returns:
        ErrorSeverity level
    """
    if isinstance(error, (BookingError, InvalidTimeFormat, PydanticValidationError)):
        return ErrorSeverity.LOW

    if isinstance(error, NON_RETRYABLE_TELEGRAM_ERRORS):
        return ErrorSeverity.LOW

    if isinstance(error, RETRYABLE_TELEGRAM_ERRORS + RETRYABLE_DB_ERRORS):
        return ErrorSeverity.MEDIUM

    if isinstance(error, INTEGRITY_DB_ERRORS):
        return ErrorSeverity.HIGH

    # Unknown errors are critical
    return ErrorSeverity.CRITICAL


def should_retry(error: Exception) -> bool:
    """Determine if error is retryable"""
    if isinstance(error, NON_RETRYABLE_TELEGRAM_ERRORS):
        return False

    if isinstance(error, RETRYABLE_DB_ERRORS + RETRYABLE_TELEGRAM_ERRORS):
        return True

    return isinstance(error, RetryableError)


# === RETRY DECORATOR ===


def async_retry_on_error(
    max_attempts: int = 3,
    delay: float = 0.5,
    backoff: float = 2.0,
    exceptions: tuple = (Exception,),
):
    """Decorator for async functions with retry logic

    Only errors accepted by should_retry() are retried, everything else
    is re-raised immediately.

    Example:
        @async_retry_on_error(max_attempts=3, delay=0.5)
        async def get_appointments_for_date(...):
            ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            current_delay = delay

            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    severity = classify_error(e)

                    if not should_retry(e) or attempt == max_attempts:
                        if should_retry(e):
                            logger.error(
                                f"{func.__name__} failed permanently after {attempt} attempts: {e}",
                                exc_info=True,
                                extra={"function": func.__name__, "severity": severity.value},
                            )
                        if severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL):
                            sentry_sdk.capture_exception(e)
                        raise

                    logger.warning(
                        f"{func.__name__} failed (attempt {attempt}/{max_attempts}): {e}. "
                        f"Retrying in {current_delay:.1f}s..."
                    )
                    await asyncio.sleep(current_delay)
                    current_delay *= backoff

        return wrapper

    return decorator


# === CONTEXT MANAGERS ===


class safe_operation:
    """Context manager that logs duration and failures of an operation

    Example:
        async with safe_operation("create_booking", profile_id=profile_id):
            ...
    """

    def __init__(self, operation: str, **context):
        self.operation = operation
        self.context = context
        self.start_time = None

    async def __aenter__(self):
        self.start_time = time.monotonic()
        logger.debug(f"Starting operation: {self.operation}", extra=self.context)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        duration = time.monotonic() - self.start_time

        if exc_type is None:
            logger.debug(
                f"Operation completed: {self.operation} ({duration:.2f}s)",
                extra={**self.context, "duration": duration},
            )
            return False

        severity = classify_error(exc_val) if exc_val else ErrorSeverity.CRITICAL

        if severity is ErrorSeverity.LOW:
            logger.info(f"Operation rejected: {self.operation}: {exc_val}")
        else:
            logger.error(
                f"Operation failed: {self.operation} ({duration:.2f}s): {exc_val}",
                exc_info=(exc_type, exc_val, exc_tb),
                extra={**self.context, "duration": duration, "severity": severity.value},
            )

        if severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL):
            sentry_sdk.capture_exception(exc_val)

        # Don't suppress exception
        return False


# === TELEGRAM ERROR HANDLERS ===


async def handle_telegram_error(
    error: TelegramAPIError, context: dict[str, Any]
) -> None:
    """Log Telegram API errors; notifications never break the booking flow"""
    if isinstance(error, TelegramForbiddenError):
        logger.warning(f"Bot blocked by chat: {context.get('chat_id')}", extra=context)
        return

    if isinstance(error, TelegramBadRequest):
        logger.warning(f"Bad request to Telegram API: {error.message}", extra=context)
        return

    if isinstance(error, TelegramRetryAfter):
        logger.warning(
            f"Rate limited by Telegram. Retry after {error.retry_after}s", extra=context
        )
        return

    if isinstance(error, TelegramNetworkError):
        logger.error(f"Telegram network error: {error}", exc_info=True, extra=context)
        return

    logger.error(f"Unknown Telegram error: {error}", exc_info=True, extra=context)
    sentry_sdk.capture_exception(error)


# === DATABASE ERROR HANDLERS ===


def handle_database_error(error: Exception, context: dict[str, Any]) -> bool:
    """Log a database error

    Returns:
        True if the operation can be retried
    """
    if isinstance(error, INTEGRITY_DB_ERRORS):
        logger.warning(f"Database integrity error: {error}", extra=context)
        return False

    if isinstance(error, RETRYABLE_DB_ERRORS):
        logger.error(f"Database operational error: {error}", exc_info=True, extra=context)
        return True

    logger.critical(f"Unknown database error: {error}", exc_info=True, extra=context)
    sentry_sdk.capture_exception(error)
    return False


# === VALIDATION ERROR HANDLERS ===


def format_validation_error(error: PydanticValidationError) -> str:
    """Format Pydantic validation error to user-friendly message"""
    errors = error.errors()
    if not errors:
        return "Неверные данные"

    first_error = errors[0]
    field = " → ".join(str(loc) for loc in first_error["loc"])
    msg = first_error["msg"]

    if not field:
        return msg
    return f"Ошибка в поле '{field}': {msg}"
