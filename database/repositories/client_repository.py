"""Репозиторий клиентов (ключ - телефон внутри профиля)"""

import logging
import uuid
from datetime import datetime

from database.db_adapter import executor

logger = logging.getLogger(__name__)


class ClientRepository:
    @staticmethod
    async def upsert_by_phone(profile_id: str, name: str, phone: str, conn=None) -> str:
        """Найти клиента по телефону или создать; имя обновляется на последнее

        Returns:
            ID клиента
        """
        db = executor(conn)
        row = await db.fetchrow(
            "SELECT id FROM clients WHERE profile_id = $1 AND phone = $2",
            profile_id,
            phone,
        )
        if row:
            await db.execute(
                """UPDATE clients SET name = $1, last_visit = $2, updated_at = CURRENT_TIMESTAMP
                WHERE id = $3""",
                name,
                datetime.now().date().isoformat(),
                row["id"],
            )
            return str(row["id"])

        client_id = str(uuid.uuid4())
        await db.execute(
            """INSERT INTO clients (id, profile_id, name, phone, last_visit)
            VALUES ($1, $2, $3, $4, $5)""",
            client_id,
            profile_id,
            name,
            phone,
            datetime.now().date().isoformat(),
        )
        logger.info(f"Client created: {client_id} (profile {profile_id})")
        return client_id
