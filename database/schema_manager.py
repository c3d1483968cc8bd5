"""Создание таблиц и индексов

Один набор DDL для PostgreSQL и SQLite: идентификаторы, даты и время
хранятся как TEXT (UUID генерируется в приложении, даты в ISO формате).

Examples:
    >>> from database.schema_manager import SchemaManager
    >>>
    >>> await SchemaManager.init_schema()
    >>> # ✅ Created 5 tables
    >>> # ✅ Created 6 indexes
"""

import logging

from database.db_adapter import db_adapter

logger = logging.getLogger(__name__)


TABLES = [
    # Profiles (владельцы бизнеса)
    """CREATE TABLE IF NOT EXISTS profiles (
        id TEXT PRIMARY KEY,
        business_name TEXT,
        unique_slug TEXT UNIQUE,
        timezone TEXT DEFAULT 'Europe/Moscow',
        telegram_chat_id BIGINT,
        address TEXT,
        notify_1h_before BOOLEAN DEFAULT TRUE,
        notify_24h_before BOOLEAN DEFAULT TRUE,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )""",

    # Services
    """CREATE TABLE IF NOT EXISTS services (
        id TEXT PRIMARY KEY,
        profile_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        description TEXT,
        duration_minutes INTEGER CHECK (duration_minutes IS NULL OR duration_minutes > 0),
        price NUMERIC(10, 2) DEFAULT 0,
        is_active BOOLEAN DEFAULT TRUE,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )""",

    # Clients
    """CREATE TABLE IF NOT EXISTS clients (
        id TEXT PRIMARY KEY,
        profile_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        phone TEXT NOT NULL,
        telegram_chat_id BIGINT,
        last_visit TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        CONSTRAINT clients_profile_phone_unique UNIQUE (profile_id, phone)
    )""",

    # Working hours: не больше одной строки на день недели (0 = воскресенье)
    """CREATE TABLE IF NOT EXISTS working_hours (
        profile_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
        day_of_week INTEGER NOT NULL CHECK (day_of_week >= 0 AND day_of_week <= 6),
        start_time TEXT NOT NULL,
        end_time TEXT NOT NULL,
        is_working BOOLEAN DEFAULT TRUE,
        CONSTRAINT working_hours_profile_day_unique UNIQUE (profile_id, day_of_week)
    )""",

    # Appointments (и блокировки времени, status = 'blocked')
    """CREATE TABLE IF NOT EXISTS appointments (
        id TEXT PRIMARY KEY,
        profile_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
        service_id TEXT REFERENCES services(id),
        client_id TEXT REFERENCES clients(id),
        client_name TEXT NOT NULL,
        client_phone TEXT NOT NULL,
        appointment_date TEXT NOT NULL,
        appointment_time TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'confirmed', 'completed', 'cancelled', 'blocked')),
        notes TEXT,
        cancellation_reason TEXT,
        notification_sent_1h BOOLEAN DEFAULT FALSE,
        notification_sent_24h BOOLEAN DEFAULT FALSE,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )""",
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_appointments_profile_date ON appointments(profile_id, appointment_date)",
    "CREATE INDEX IF NOT EXISTS idx_appointments_status_date ON appointments(status, appointment_date)",
    "CREATE INDEX IF NOT EXISTS idx_appointments_service ON appointments(service_id)",
    "CREATE INDEX IF NOT EXISTS idx_services_profile ON services(profile_id, is_active)",
    "CREATE INDEX IF NOT EXISTS idx_clients_profile ON clients(profile_id)",
    "CREATE INDEX IF NOT EXISTS idx_profiles_slug ON profiles(unique_slug)",
]


class SchemaManager:
    """
    Менеджер схемы БД

    Отвечает за:
    - Создание таблиц
    - Создание индексов
    """

    @staticmethod
    async def init_schema() -> None:
        """Создать таблицы и индексы (идемпотентно)"""
        logger.info("📦 Initializing database schema")

        await SchemaManager._create_tables()
        await SchemaManager._create_indexes()

        logger.info("✅ Database schema initialized successfully")

    @staticmethod
    async def _create_tables() -> None:
        for table_sql in TABLES:
            await db_adapter.execute(table_sql)

        logger.info(f"  ✅ Created {len(TABLES)} tables")

    @staticmethod
    async def _create_indexes() -> None:
        for index_sql in INDEXES:
            await db_adapter.execute(index_sql)

        logger.info(f"  ✅ Created {len(INDEXES)} indexes")
