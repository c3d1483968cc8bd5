"""Репозиторий профилей владельцев"""

import logging
import uuid
from typing import Optional

from config import DB_MAX_RETRIES, DB_RETRY_BACKOFF, DB_RETRY_DELAY
from database.db_adapter import db_adapter
from database.models import Profile
from utils.error_handler import RETRYABLE_DB_ERRORS, async_retry_on_error

logger = logging.getLogger(__name__)

_COLUMNS = """id, business_name, unique_slug, timezone, telegram_chat_id,
    address, notify_1h_before, notify_24h_before"""

_retry = async_retry_on_error(
    max_attempts=DB_MAX_RETRIES,
    delay=DB_RETRY_DELAY,
    backoff=DB_RETRY_BACKOFF,
    exceptions=RETRYABLE_DB_ERRORS,
)


class ProfileRepository:
    """Чтение и создание профилей"""

    @staticmethod
    @_retry
    async def get_by_id(profile_id: str) -> Optional[Profile]:
        row = await db_adapter.fetchrow(
            f"SELECT {_COLUMNS} FROM profiles WHERE id = $1",
            profile_id,
        )
        return Profile.from_row(row) if row else None

    @staticmethod
    @_retry
    async def get_by_slug(slug: str) -> Optional[Profile]:
        """Профиль по публичной ссылке записи (/book/<slug>)"""
        row = await db_adapter.fetchrow(
            f"SELECT {_COLUMNS} FROM profiles WHERE unique_slug = $1",
            slug,
        )
        return Profile.from_row(row) if row else None

    @staticmethod
    async def create(
        business_name: str,
        unique_slug: Optional[str] = None,
        timezone: Optional[str] = None,
        telegram_chat_id: Optional[int] = None,
        profile_id: Optional[str] = None,
    ) -> str:
        profile_id = profile_id or str(uuid.uuid4())
        await db_adapter.execute(
            """INSERT INTO profiles (id, business_name, unique_slug, timezone, telegram_chat_id)
            VALUES ($1, $2, $3, $4, $5)""",
            profile_id,
            business_name,
            unique_slug,
            timezone,
            telegram_chat_id,
        )
        logger.info(f"Profile created: {profile_id} ({business_name})")
        return profile_id
