"""Главный файл приложения: API записи + напоминания"""

import asyncio
import logging
import os
import sys
from typing import Optional

import sentry_sdk
import uvicorn
from aiogram import Bot
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sentry_sdk.integrations.logging import LoggingIntegration

from config import (
    API_HOST,
    API_PORT,
    API_TOKEN,
    BOT_TOKEN,
    CAPACITY_MODE,
    DATABASE_PATH,
    DB_TYPE,
    LOG_FILE,
    LOG_LEVEL,
    REMINDERS_ENABLED,
    SENTRY_DSN,
    SENTRY_ENABLED,
    SENTRY_ENVIRONMENT,
    SENTRY_TRACES_SAMPLE_RATE,
    validate_bot_token,
)
from api.api_server import create_app
from database.db_adapter import db_adapter
from database.schema_manager import SchemaManager
from services.availability_service import AvailabilityService
from services.booking_service import BookingService
from services.cache import BookingCache
from services.notification_service import NotificationService
from utils.error_handler import safe_operation
from utils.reminder_jobs import setup_reminder_jobs

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    handlers = [logging.StreamHandler(sys.stdout)]
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


def init_sentry() -> None:
    if not (SENTRY_ENABLED and SENTRY_DSN):
        return

    sentry_logging = LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        environment=SENTRY_ENVIRONMENT,
        traces_sample_rate=SENTRY_TRACES_SAMPLE_RATE,
        integrations=[sentry_logging],
        release="looktime-booking@1.0.0",
        attach_stacktrace=True,
        send_default_pii=False,
    )
    logger.info(f"Sentry initialized: {SENTRY_ENVIRONMENT} environment")


async def init_database() -> None:
    """Пул соединений и схема БД"""
    if DB_TYPE == "sqlite":
        directory = os.path.dirname(DATABASE_PATH)
        if directory:
            os.makedirs(directory, exist_ok=True)

    async with safe_operation("init_database", db_type=DB_TYPE):
        await db_adapter.init_pool()
        await SchemaManager.init_schema()
    logger.info(f"{DB_TYPE} database initialized")


def create_bot() -> Optional[Bot]:
    """Bot для уведомлений; без токена уведомления отключены"""
    if not BOT_TOKEN:
        logger.warning("BOT_TOKEN not set: Telegram notifications disabled")
        return None
    if not validate_bot_token(BOT_TOKEN):
        logger.error("BOT_TOKEN has invalid format: Telegram notifications disabled")
        return None
    return Bot(token=BOT_TOKEN)


async def start_service() -> None:
    if API_TOKEN == "change_me":
        logger.warning("⚠️ Using default API token! Set API_TOKEN in .env")

    await init_database()

    bot = create_bot()
    cache = BookingCache()
    notifier = NotificationService(bot)
    availability_service = AvailabilityService(cache=cache)
    booking_service = BookingService(cache=cache, notifier=notifier)

    scheduler = AsyncIOScheduler()
    if bot is not None and REMINDERS_ENABLED:
        setup_reminder_jobs(scheduler, notifier)
    scheduler.start()

    app = create_app(availability_service, booking_service)
    server = uvicorn.Server(
        uvicorn.Config(app, host=API_HOST, port=API_PORT, log_level=LOG_LEVEL.lower())
    )

    logger.info(
        f"🚀 Booking API starting on {API_HOST}:{API_PORT} | "
        f"Database: {DB_TYPE.upper()} | Capacity mode: {CAPACITY_MODE}"
    )

    try:
        await server.serve()
    finally:
        logger.info("Shutting down...")
        scheduler.shutdown(wait=False)
        await db_adapter.close_pool()
        logger.info("Database pool closed")
        if bot is not None:
            await bot.session.close()
        logger.info("Service stopped")


async def main():
    """Главная функция с обработкой критических ошибок"""
    setup_logging()
    init_sentry()
    try:
        await start_service()
    except KeyboardInterrupt:
        logger.info("Service stopped by user")
    except Exception as e:
        logger.critical(f"Service crashed with critical error: {e}", exc_info=True)
        if SENTRY_ENABLED:
            sentry_sdk.capture_exception(e)
            sentry_sdk.flush(timeout=2.0)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
