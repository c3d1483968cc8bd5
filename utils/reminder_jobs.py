"""Напоминания клиентам по расписанию (APScheduler)

Каждые REMINDER_CHECK_INTERVAL_MINUTES минут просматриваются ожидающие
записи на сегодня и завтра (по часовому поясу профиля):
- за 1 час: до начала 50-70 минут
- за 24 часа: запись завтра, час совпадает с текущим с допуском 1 час

После отправки выставляется notification_sent_1h / notification_sent_24h,
повторно напоминание не уходит.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional, Tuple

import pytz
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import (
    REMINDER_1H_MAX_MINUTES,
    REMINDER_1H_MIN_MINUTES,
    REMINDER_24H_HOUR_TOLERANCE,
    REMINDER_CHECK_INTERVAL_MINUTES,
)
from database.repositories.appointment_repository import AppointmentRepository
from services.notification_service import NotificationService
from utils.helpers import now_local
from utils.time_utils import time_to_minutes

logger = logging.getLogger(__name__)

REMINDER_JOB_ID = "client_reminders"


def reminder_kind(row: Mapping[str, Any], now: datetime) -> Optional[str]:
    """Какое напоминание пора отправить для записи: "1h", "24h" или None

    Args:
        row: Строка list_for_reminders
        now: Текущее время в часовом поясе профиля
    """
    today = now.date().isoformat()
    tomorrow = (now.date() + timedelta(days=1)).isoformat()
    apt_date = str(row["appointment_date"])[:10]
    apt_minutes = time_to_minutes(str(row["appointment_time"]))

    if row.get("notify_1h_before", True) and not row.get("notification_sent_1h") and apt_date == today:
        until = apt_minutes - (now.hour * 60 + now.minute)
        if REMINDER_1H_MIN_MINUTES <= until <= REMINDER_1H_MAX_MINUTES:
            return "1h"

    if row.get("notify_24h_before", True) and not row.get("notification_sent_24h") and apt_date == tomorrow:
        diff = abs(apt_minutes // 60 - now.hour)
        # 23:xx и 00:xx соседние часы
        if diff <= REMINDER_24H_HOUR_TOLERANCE or diff >= 24 - REMINDER_24H_HOUR_TOLERANCE:
            return "24h"

    return None


async def send_due_reminders(notifier: NotificationService, now: Optional[datetime] = None) -> Tuple[int, int]:
    """Отправить все напоминания, срок которых наступил

    Returns:
        (отправлено, проверено записей)
    """
    base = now or datetime.now(pytz.utc)
    # Запас в день с обеих сторон: часовые пояса профилей разные
    start = (base.date() - timedelta(days=1)).isoformat()
    end = (base.date() + timedelta(days=2)).isoformat()

    rows = await AppointmentRepository.list_for_reminders(start, end)
    sent = 0

    for row in rows:
        chat_id = row.get("client_chat_id")
        if not chat_id:
            continue

        local_now = now or now_local(row.get("timezone"))
        kind = reminder_kind(row, local_now)
        if kind is None:
            continue

        if await notifier.send_client_reminder(chat_id, row):
            await AppointmentRepository.mark_notification_sent(str(row["id"]), kind)
            sent += 1
            logger.info(f"{kind} reminder sent for appointment {row['id']}")

    if sent:
        logger.info(f"🔔 Reminder check completed: {sent}/{len(rows)} sent")
    return sent, len(rows)


async def _reminder_job(notifier: NotificationService) -> None:
    try:
        await send_due_reminders(notifier)
    except Exception as e:
        logger.error(f"❌ Reminder job failed: {e}", exc_info=True)


def setup_reminder_jobs(
    scheduler: AsyncIOScheduler,
    notifier: NotificationService,
    interval_minutes: int = REMINDER_CHECK_INTERVAL_MINUTES,
) -> None:
    """Зарегистрировать периодическую проверку напоминаний"""
    scheduler.add_job(
        _reminder_job,
        trigger=IntervalTrigger(minutes=interval_minutes),
        args=[notifier],
        id=REMINDER_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(f"✅ Reminder job scheduled every {interval_minutes} min")
