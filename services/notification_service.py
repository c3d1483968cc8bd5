"""Telegram-уведомления владельцу и клиентам

Уведомление никогда не ломает бронирование: ошибки Telegram API
логируются через handle_telegram_error, метод возвращает False.
"""

import logging
from html import escape
from typing import Any, Mapping, Optional

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

from config import PUBLIC_BASE_URL
from database.models import Appointment, Profile
from utils.error_handler import handle_telegram_error
from utils.helpers import to_date

logger = logging.getLogger(__name__)

MONTHS_GENITIVE = [
    "января", "февраля", "марта", "апреля", "мая", "июня",
    "июля", "августа", "сентября", "октября", "ноября", "декабря",
]


def format_date_ru(date_str: str) -> str:
    """'2026-03-02' -> '2 марта 2026'"""
    d = to_date(str(date_str)[:10])
    return f"{d.day} {MONTHS_GENITIVE[d.month - 1]} {d.year}"


def owner_message(appointment: Appointment, service_name: Optional[str], cancelled: bool = False) -> str:
    emoji, title = ("❌", "Запись отменена") if cancelled else ("🔔", "Новая запись!")
    return (
        f"{emoji} <b>{title}</b>\n"
        f"📅 {format_date_ru(appointment.appointment_date)}, {appointment.appointment_time[:5]}\n"
        f"👤 {escape(appointment.client_name or '—')}\n"
        f"📱 {escape(appointment.client_phone or '—')}\n"
        f"💅 {escape(service_name or appointment.service_name or '—')}"
    )


def reminder_message(row: Mapping[str, Any]) -> str:
    lines = [
        "⏰ <b>Напоминание о записи</b>",
        f"Здравствуйте, {escape(row.get('client_name') or '')}!",
        f"💅 {escape(row.get('service_name') or '—')}",
        f"📅 {format_date_ru(row['appointment_date'])}, {str(row['appointment_time'])[:5]}",
    ]
    if row.get("business_name"):
        lines.append(f"🏠 {escape(row['business_name'])}")
    if row.get("address"):
        lines.append(f"📍 {escape(row['address'])}")
    return "\n".join(lines)


class NotificationService:
    """Отправка сообщений через aiogram Bot; без бота - no-op"""

    def __init__(self, bot: Optional[Bot] = None, base_url: str = PUBLIC_BASE_URL):
        self.bot = bot
        self.base_url = base_url.rstrip("/")

    @property
    def enabled(self) -> bool:
        return self.bot is not None

    def _appointment_keyboard(self, appointment: Appointment, cancelled: bool) -> InlineKeyboardMarkup:
        highlight = "red" if cancelled else "green"
        url = (
            f"{self.base_url}/dashboard?view=appointment&id={appointment.id}"
            f"&date={appointment.appointment_date}&highlight={highlight}"
        )
        return InlineKeyboardMarkup(
            inline_keyboard=[[InlineKeyboardButton(text="➡️ Перейти", url=url)]]
        )

    async def _send(self, chat_id: int, text: str, **kwargs) -> bool:
        if not self.enabled or not chat_id:
            return False
        try:
            await self.bot.send_message(chat_id, text, parse_mode="HTML", **kwargs)
            return True
        except TelegramAPIError as e:
            await handle_telegram_error(e, {"chat_id": chat_id})
            return False

    async def notify_owner_new_booking(
        self, profile: Optional[Profile], appointment: Appointment, service_name: Optional[str] = None
    ) -> bool:
        if profile is None or not profile.telegram_chat_id:
            return False
        sent = await self._send(
            profile.telegram_chat_id,
            owner_message(appointment, service_name),
            reply_markup=self._appointment_keyboard(appointment, cancelled=False),
        )
        if sent:
            logger.info(f"Owner notified about appointment {appointment.id}")
        return sent

    async def notify_owner_cancelled(self, profile: Optional[Profile], appointment: Appointment) -> bool:
        if profile is None or not profile.telegram_chat_id:
            return False
        return await self._send(
            profile.telegram_chat_id,
            owner_message(appointment, None, cancelled=True),
            reply_markup=self._appointment_keyboard(appointment, cancelled=True),
        )

    async def send_client_reminder(self, chat_id: int, row: Mapping[str, Any]) -> bool:
        """Напоминание клиенту; row - строка AppointmentRepository.list_for_reminders"""
        keyboard = InlineKeyboardMarkup(
            inline_keyboard=[
                [InlineKeyboardButton(text="📋 Мои записи", url=f"{self.base_url}/my-appointments")]
            ]
        )
        return await self._send(chat_id, reminder_message(row), reply_markup=keyboard)
