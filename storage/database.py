"""
Database
========
Асинхронная обёртка над SQLite (aiosqlite): одно соединение, один lock.
Схема создаётся при старте через CREATE TABLE IF NOT EXISTS.
"""

import os
import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager
from typing import Any, Iterable, Optional

import aiosqlite

logger = logging.getLogger(__name__)


class Database:
    """Async SQLite wrapper with single connection and lock."""

    def __init__(self, path: str):
        self.path = path
        self.conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        if self.conn is not None:
            return
        if self.path != ":memory:":
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
        self.conn = await aiosqlite.connect(self.path)
        self.conn.row_factory = sqlite3.Row

        await self.conn.execute("PRAGMA journal_mode=WAL;")
        await self.conn.execute("PRAGMA synchronous=NORMAL;")
        await self.conn.execute("PRAGMA busy_timeout=5000;")
        await self.conn.commit()
        logger.info(f"✅ База данных подключена: {self.path}")

    async def close(self) -> None:
        if self.conn is None:
            return
        await self.conn.close()
        self.conn = None

    @asynccontextmanager
    async def locked(self):
        if self.conn is None:
            raise RuntimeError("Database not connected")
        async with self._lock:
            yield self.conn

    async def fetchone(self, sql: str, params: Iterable[Any] = ()) -> Optional[sqlite3.Row]:
        async with self.locked() as conn:
            cur = await conn.execute(sql, tuple(params))
            row = await cur.fetchone()
            await cur.close()
            return row

    async def fetchall(self, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
        async with self.locked() as conn:
            cur = await conn.execute(sql, tuple(params))
            rows = await cur.fetchall()
            await cur.close()
            return list(rows)

    async def execute(self, sql: str, params: Iterable[Any] = (), *, commit: bool = True) -> int:
        """Выполняет запрос, возвращает количество затронутых строк"""
        async with self.locked() as conn:
            cur = await conn.execute(sql, tuple(params))
            rowcount = cur.rowcount
            await cur.close()
            if commit:
                await conn.commit()
            return rowcount

    async def insert(self, sql: str, params: Iterable[Any] = ()) -> int:
        """Выполняет INSERT, возвращает id новой строки"""
        async with self.locked() as conn:
            cur = await conn.execute(sql, tuple(params))
            row_id = cur.lastrowid
            await cur.close()
            await conn.commit()
            return row_id

    async def executemany(self, sql: str, seq_of_params: Iterable[Iterable[Any]], *, commit: bool = True) -> None:
        async with self.locked() as conn:
            await conn.executemany(sql, [tuple(p) for p in seq_of_params])
            if commit:
                await conn.commit()


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        chat_id INTEGER PRIMARY KEY,
        name TEXT,
        gender TEXT,
        timezone TEXT,
        utc_offset INTEGER DEFAULT 3,
        dm_enabled INTEGER DEFAULT 1,
        channel_enabled INTEGER DEFAULT 0,
        channel_id INTEGER,
        onboarding_state TEXT,
        user_request TEXT,
        last_response_time TEXT,
        joy_checkpoint TEXT,
        created_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS interactive_posts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        channel_message_id INTEGER UNIQUE NOT NULL,
        user_id INTEGER NOT NULL,
        message_data TEXT,
        relaxation_type TEXT DEFAULT 'breathing',
        task1_completed INTEGER DEFAULT 0,
        task2_completed INTEGER DEFAULT 0,
        task3_completed INTEGER DEFAULT 0,
        current_state TEXT DEFAULT 'waiting_negative',
        is_dm_mode INTEGER DEFAULT 0,
        reply_chat_id INTEGER,
        bot_task1_message_id INTEGER,
        bot_schema_message_id INTEGER,
        bot_task2_message_id INTEGER,
        bot_task3_message_id INTEGER,
        user_task1_message_id INTEGER,
        user_schema_message_id INTEGER,
        user_task2_message_id INTEGER,
        trophy_set INTEGER DEFAULT 0,
        created_at TEXT,
        last_interaction_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS morning_posts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        channel_message_id INTEGER UNIQUE NOT NULL,
        user_id INTEGER NOT NULL,
        current_step TEXT DEFAULT 'waiting_user_message',
        greeting_text TEXT,
        reply_chat_id INTEGER,
        last_button_message_id INTEGER,
        trophy_set INTEGER DEFAULT 0,
        created_at TEXT,
        last_final_message_time TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS angry_posts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        channel_message_id INTEGER NOT NULL,
        thread_id INTEGER,
        user_id INTEGER NOT NULL,
        created_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS angry_post_responses (
        channel_message_id INTEGER NOT NULL,
        user_id INTEGER NOT NULL,
        response_count INTEGER DEFAULT 0,
        PRIMARY KEY (channel_message_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_daily_posts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        post_date TEXT NOT NULL,
        post_type TEXT NOT NULL,
        channel_message_id INTEGER,
        created_at TEXT,
        UNIQUE(user_id, post_date, post_type)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS joy_sources (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        text TEXT NOT NULL,
        source_type TEXT DEFAULT 'manual',
        created_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS message_links (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        chat_id INTEGER NOT NULL,
        message_id INTEGER NOT NULL,
        message_type TEXT NOT NULL,
        post_type TEXT,
        channel_message_id INTEGER,
        user_id INTEGER,
        reply_to_message_id INTEGER,
        message_preview TEXT,
        processed INTEGER DEFAULT 0,
        created_at TEXT,
        UNIQUE(chat_id, message_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS thread_mappings (
        channel_message_id INTEGER PRIMARY KEY,
        thread_id INTEGER NOT NULL,
        chat_id INTEGER,
        created_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        author_id INTEGER NOT NULL,
        chat_id INTEGER,
        message_id INTEGER,
        message_text TEXT,
        sent_time TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_interactive_user ON interactive_posts(user_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_morning_user ON morning_posts(user_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_joy_user ON joy_sources(user_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_links_post ON message_links(channel_message_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_user ON messages(user_id, sent_time)",
    "CREATE INDEX IF NOT EXISTS idx_thread_mappings_thread ON thread_mappings(thread_id)",
]


async def init_db(db: Database) -> None:
    """Подключается к базе и создаёт таблицы"""
    await db.connect()

    async with db.locked() as conn:
        for statement in SCHEMA:
            await conn.execute(statement)
        await conn.commit()

    logger.info("✅ Схема базы данных готова")
