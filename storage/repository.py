"""
Storage Repository
==================
Типизированные операции над таблицами: пользователи, посты, источники радости,
связи сообщений, история.
"""

import logging
import sqlite3
from datetime import timedelta
from typing import Any, Iterable, Optional

from storage.database import Database
from storage.models import (
    AngryPost,
    EveningMessageData,
    InteractivePost,
    JoySource,
    MessageLink,
    MorningPost,
    StoredMessage,
    User,
    derive_state,
)
from utils.helpers import now_iso, now_utc, parse_iso, to_iso

logger = logging.getLogger(__name__)


USER_FIELDS = {
    "name", "gender", "timezone", "utc_offset", "dm_enabled", "channel_enabled",
    "channel_id", "onboarding_state", "user_request", "last_response_time", "joy_checkpoint",
}

INTERACTIVE_LINK_FIELDS = {
    "bot_task1_message_id", "bot_schema_message_id", "bot_task2_message_id",
    "bot_task3_message_id", "user_task1_message_id", "user_schema_message_id",
    "user_task2_message_id", "reply_chat_id", "last_interaction_at",
}

MORNING_FIELDS = {"current_step", "last_button_message_id", "last_final_message_time", "trophy_set", "reply_chat_id"}


def _assignments(fields: dict[str, Any], allowed: set[str]) -> tuple[str, list[Any]]:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Неизвестные поля: {', '.join(sorted(unknown))}")
    columns = ", ".join(f"{name} = ?" for name in fields)
    return columns, list(fields.values())


class Storage:
    """Репозиторий поверх Database"""

    def __init__(self, db: Database):
        self.db = db

    # ==================== USERS ====================

    async def get_user(self, chat_id: int) -> Optional[User]:
        row = await self.db.fetchone("SELECT * FROM users WHERE chat_id = ?", (chat_id,))
        return User.from_row(row) if row else None

    async def upsert_user(self, chat_id: int, name: Optional[str] = None) -> User:
        """Создаёт пользователя при первом /start, имя обновляет только если его не было"""
        await self.db.execute(
            "INSERT OR IGNORE INTO users (chat_id, name, created_at) VALUES (?, ?, ?)",
            (chat_id, name, now_iso()),
        )
        if name:
            await self.db.execute(
                "UPDATE users SET name = ? WHERE chat_id = ? AND (name IS NULL OR name = '')",
                (name, chat_id),
            )
        return await self.get_user(chat_id)

    async def update_user(self, chat_id: int, **fields) -> None:
        if not fields:
            return
        columns, values = _assignments(fields, USER_FIELDS)
        await self.db.execute(f"UPDATE users SET {columns} WHERE chat_id = ?", (*values, chat_id))

    async def get_all_users(self) -> list[User]:
        rows = await self.db.fetchall("SELECT * FROM users ORDER BY chat_id")
        return [User.from_row(row) for row in rows]

    async def update_user_response(self, chat_id: int, when: Optional[str] = None) -> None:
        await self.db.execute(
            "UPDATE users SET last_response_time = ? WHERE chat_id = ?",
            (when or now_iso(), chat_id),
        )

    async def reset_user(self, chat_id: int, full: bool = False) -> None:
        """
        Сбрасывает данные пользователя.

        Мягкий сброс чистит историю, посты, связи и счётчики. Полный сброс
        дополнительно стирает профиль и список источников радости.
        """
        statements = [
            ("DELETE FROM messages WHERE user_id = ?", (chat_id,)),
            ("DELETE FROM message_links WHERE user_id = ?", (chat_id,)),
            ("DELETE FROM interactive_posts WHERE user_id = ?", (chat_id,)),
            ("DELETE FROM morning_posts WHERE user_id = ?", (chat_id,)),
            ("DELETE FROM angry_post_responses WHERE user_id = ?", (chat_id,)),
            ("DELETE FROM angry_posts WHERE user_id = ?", (chat_id,)),
            ("DELETE FROM user_daily_posts WHERE user_id = ?", (chat_id,)),
            ("UPDATE users SET last_response_time = NULL WHERE chat_id = ?", (chat_id,)),
        ]
        if full:
            statements += [
                ("DELETE FROM joy_sources WHERE user_id = ?", (chat_id,)),
                (
                    "UPDATE users SET name = NULL, gender = NULL, user_request = NULL, "
                    "onboarding_state = NULL, joy_checkpoint = NULL WHERE chat_id = ?",
                    (chat_id,),
                ),
            ]
        async with self.db.locked() as conn:
            for sql, params in statements:
                await conn.execute(sql, params)
            await conn.commit()
        logger.info(f"Данные пользователя {chat_id} сброшены (full={full})")

    # ==================== INTERACTIVE POSTS ====================

    async def create_interactive_post(
        self,
        channel_message_id: int,
        user_id: int,
        message_data: EveningMessageData,
        relaxation_type: str,
        is_dm_mode: bool,
        reply_chat_id: Optional[int] = None,
    ) -> InteractivePost:
        created = now_iso()
        await self.db.insert(
            """
            INSERT INTO interactive_posts (
                channel_message_id, user_id, message_data, relaxation_type,
                current_state, is_dm_mode, reply_chat_id, created_at, last_interaction_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                channel_message_id, user_id, message_data.to_json(), relaxation_type,
                derive_state(False, False, False).value, int(is_dm_mode), reply_chat_id,
                created, created,
            ),
        )
        return await self.get_interactive_post(channel_message_id)

    async def get_interactive_post(self, channel_message_id: int) -> Optional[InteractivePost]:
        row = await self.db.fetchone(
            "SELECT * FROM interactive_posts WHERE channel_message_id = ?", (channel_message_id,)
        )
        return InteractivePost.from_row(row) if row else None

    async def get_user_incomplete_posts(self, user_id: int) -> list[InteractivePost]:
        """Все незавершённые вечерние посты пользователя, новые первыми"""
        rows = await self.db.fetchall(
            """
            SELECT * FROM interactive_posts
            WHERE user_id = ?
              AND NOT (task1_completed = 1 AND task2_completed = 1 AND task3_completed = 1)
            ORDER BY created_at DESC, id DESC
            """,
            (user_id,),
        )
        return [InteractivePost.from_row(row) for row in rows]

    async def get_uncompleted_posts(self, created_after: str, created_before: str) -> list[InteractivePost]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM interactive_posts
            WHERE created_at >= ? AND created_at <= ?
              AND NOT (task1_completed = 1 AND task2_completed = 1 AND task3_completed = 1)
            ORDER BY created_at ASC, id ASC
            """,
            (created_after, created_before),
        )
        return [InteractivePost.from_row(row) for row in rows]

    async def count_interactive_posts(self, user_id: int) -> int:
        row = await self.db.fetchone(
            "SELECT COUNT(*) AS cnt FROM interactive_posts WHERE user_id = ?", (user_id,)
        )
        return row["cnt"] if row else 0

    async def get_last_interactive_post(self, user_id: int) -> Optional[InteractivePost]:
        row = await self.db.fetchone(
            "SELECT * FROM interactive_posts WHERE user_id = ? ORDER BY created_at DESC, id DESC LIMIT 1",
            (user_id,),
        )
        return InteractivePost.from_row(row) if row else None

    async def mark_task_completed(self, channel_message_id: int, task_number: int) -> Optional[InteractivePost]:
        """
        Отмечает задание выполненным. Флаги только взводятся, сброса нет.

        Returns:
            Обновлённый пост или None, если поста нет
        """
        if task_number not in (1, 2, 3):
            raise ValueError(f"Неверный номер задания: {task_number}")
        column = f"task{task_number}_completed"
        await self.db.execute(
            f"UPDATE interactive_posts SET {column} = 1, last_interaction_at = ? WHERE channel_message_id = ?",
            (now_iso(), channel_message_id),
        )
        post = await self.get_interactive_post(channel_message_id)
        if post is None:
            return None
        # Обновляем кэш состояния
        if post.current_state != post.state.value:
            await self.db.execute(
                "UPDATE interactive_posts SET current_state = ? WHERE channel_message_id = ?",
                (post.state.value, channel_message_id),
            )
            post.current_state = post.state.value
        return post

    async def update_interactive_post(self, channel_message_id: int, **fields) -> None:
        if not fields:
            return
        columns, values = _assignments(fields, INTERACTIVE_LINK_FIELDS)
        await self.db.execute(
            f"UPDATE interactive_posts SET {columns} WHERE channel_message_id = ?",
            (*values, channel_message_id),
        )

    async def set_trophy(self, table: str, channel_message_id: int) -> bool:
        """Взводит trophy_set, возвращает True только при первом взведении"""
        if table not in ("interactive_posts", "morning_posts"):
            raise ValueError(f"Неизвестная таблица: {table}")
        changed = await self.db.execute(
            f"UPDATE {table} SET trophy_set = 1 WHERE channel_message_id = ? AND trophy_set = 0",
            (channel_message_id,),
        )
        return changed > 0

    # ==================== MORNING POSTS ====================

    async def create_morning_post(
        self,
        channel_message_id: int,
        user_id: int,
        greeting_text: str,
        reply_chat_id: Optional[int] = None,
    ) -> MorningPost:
        await self.db.insert(
            """
            INSERT INTO morning_posts (channel_message_id, user_id, greeting_text, reply_chat_id, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (channel_message_id, user_id, greeting_text, reply_chat_id, now_iso()),
        )
        return await self.get_morning_post(channel_message_id)

    async def get_morning_post(self, channel_message_id: int) -> Optional[MorningPost]:
        row = await self.db.fetchone(
            "SELECT * FROM morning_posts WHERE channel_message_id = ?", (channel_message_id,)
        )
        return MorningPost.from_row(row) if row else None

    async def get_active_morning_post(self, user_id: int, since: str) -> Optional[MorningPost]:
        """Последний утренний пост пользователя, созданный после since"""
        row = await self.db.fetchone(
            """
            SELECT * FROM morning_posts
            WHERE user_id = ? AND created_at >= ?
            ORDER BY created_at DESC, id DESC LIMIT 1
            """,
            (user_id, since),
        )
        return MorningPost.from_row(row) if row else None

    async def update_morning_post(self, channel_message_id: int, **fields) -> None:
        if not fields:
            return
        columns, values = _assignments(fields, MORNING_FIELDS)
        await self.db.execute(
            f"UPDATE morning_posts SET {columns} WHERE channel_message_id = ?",
            (*values, channel_message_id),
        )

    # ==================== ANGRY POSTS ====================

    async def create_angry_post(self, channel_message_id: int, user_id: int, thread_id: Optional[int] = None) -> AngryPost:
        row_id = await self.db.insert(
            "INSERT INTO angry_posts (channel_message_id, thread_id, user_id, created_at) VALUES (?, ?, ?, ?)",
            (channel_message_id, thread_id, user_id, now_iso()),
        )
        row = await self.db.fetchone("SELECT * FROM angry_posts WHERE id = ?", (row_id,))
        return AngryPost.from_row(row)

    async def get_angry_post(self, channel_message_id: int) -> Optional[AngryPost]:
        row = await self.db.fetchone(
            "SELECT * FROM angry_posts WHERE channel_message_id = ? ORDER BY id DESC LIMIT 1",
            (channel_message_id,),
        )
        return AngryPost.from_row(row) if row else None

    async def increment_angry_response(self, channel_message_id: int, user_id: int) -> int:
        """Увеличивает счётчик ответов под злым постом, возвращает новое значение"""
        async with self.db.locked() as conn:
            await conn.execute(
                """
                INSERT INTO angry_post_responses (channel_message_id, user_id, response_count)
                VALUES (?, ?, 1)
                ON CONFLICT(channel_message_id, user_id)
                DO UPDATE SET response_count = response_count + 1
                """,
                (channel_message_id, user_id),
            )
            await conn.commit()
            cur = await conn.execute(
                "SELECT response_count FROM angry_post_responses WHERE channel_message_id = ? AND user_id = ?",
                (channel_message_id, user_id),
            )
            row = await cur.fetchone()
            await cur.close()
        return row["response_count"] if row else 0

    # ==================== DAILY POSTS ====================

    async def claim_daily_post(self, user_id: int, post_date: str, post_type: str) -> bool:
        """
        Резервирует отправку поста на дату.

        Returns:
            False если пост этого типа на эту дату уже есть
        """
        try:
            await self.db.insert(
                "INSERT INTO user_daily_posts (user_id, post_date, post_type, created_at) VALUES (?, ?, ?, ?)",
                (user_id, post_date, post_type, now_iso()),
            )
        except sqlite3.IntegrityError:
            return False
        return True

    async def release_daily_post(self, user_id: int, post_date: str, post_type: str) -> None:
        await self.db.execute(
            "DELETE FROM user_daily_posts WHERE user_id = ? AND post_date = ? AND post_type = ?",
            (user_id, post_date, post_type),
        )

    async def set_daily_post_message(self, user_id: int, post_date: str, post_type: str, channel_message_id: int) -> None:
        await self.db.execute(
            """
            UPDATE user_daily_posts SET channel_message_id = ?
            WHERE user_id = ? AND post_date = ? AND post_type = ?
            """,
            (channel_message_id, user_id, post_date, post_type),
        )

    async def is_daily_post_message(self, user_id: int, post_type: str, channel_message_id: int) -> bool:
        row = await self.db.fetchone(
            """
            SELECT 1 FROM user_daily_posts
            WHERE user_id = ? AND post_type = ? AND channel_message_id = ?
            """,
            (user_id, post_type, channel_message_id),
        )
        return row is not None

    async def get_last_daily_post_time(self, user_id: int, post_type: str, before: Optional[str] = None) -> Optional[str]:
        sql = "SELECT created_at FROM user_daily_posts WHERE user_id = ? AND post_type = ?"
        params: list[Any] = [user_id, post_type]
        if before:
            sql += " AND created_at < ?"
            params.append(before)
        sql += " ORDER BY created_at DESC LIMIT 1"
        row = await self.db.fetchone(sql, params)
        return row["created_at"] if row else None

    # ==================== JOY SOURCES ====================

    async def get_joy_sources(self, user_id: int) -> list[JoySource]:
        rows = await self.db.fetchall(
            "SELECT * FROM joy_sources WHERE user_id = ? ORDER BY created_at ASC, id ASC",
            (user_id,),
        )
        return [JoySource.from_row(row) for row in rows]

    async def add_joy_sources(self, user_id: int, texts: Iterable[str], source_type: str = "manual") -> int:
        created = now_iso()
        rows = [(user_id, text, source_type, created) for text in texts]
        if not rows:
            return 0
        await self.db.executemany(
            "INSERT INTO joy_sources (user_id, text, source_type, created_at) VALUES (?, ?, ?, ?)",
            rows,
        )
        return len(rows)

    async def delete_joy_sources(self, user_id: int, source_ids: Iterable[int]) -> int:
        ids = list(source_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        return await self.db.execute(
            f"DELETE FROM joy_sources WHERE user_id = ? AND id IN ({placeholders})",
            (user_id, *ids),
        )

    async def clear_joy_sources(self, user_id: int) -> int:
        return await self.db.execute("DELETE FROM joy_sources WHERE user_id = ?", (user_id,))

    async def count_joy_sources_since(self, user_id: int, since: Optional[str]) -> int:
        if since:
            row = await self.db.fetchone(
                "SELECT COUNT(*) AS cnt FROM joy_sources WHERE user_id = ? AND created_at > ?",
                (user_id, since),
            )
        else:
            row = await self.db.fetchone(
                "SELECT COUNT(*) AS cnt FROM joy_sources WHERE user_id = ?", (user_id,)
            )
        return row["cnt"] if row else 0

    async def update_joy_checkpoint(self, user_id: int) -> None:
        await self.db.execute(
            "UPDATE users SET joy_checkpoint = ? WHERE chat_id = ?", (now_iso(), user_id)
        )

    # ==================== MESSAGE LINKS ====================

    async def save_message_link(
        self,
        chat_id: int,
        message_id: int,
        message_type: str,
        *,
        post_type: Optional[str] = None,
        channel_message_id: Optional[int] = None,
        user_id: Optional[int] = None,
        reply_to_message_id: Optional[int] = None,
        message_preview: Optional[str] = None,
    ) -> MessageLink:
        """Сохраняет связь; повторное сохранение того же сообщения возвращает существующую"""
        await self.db.execute(
            """
            INSERT OR IGNORE INTO message_links (
                chat_id, message_id, message_type, post_type, channel_message_id,
                user_id, reply_to_message_id, message_preview, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                chat_id, message_id, message_type, post_type, channel_message_id,
                user_id, reply_to_message_id, (message_preview or "")[:500], now_iso(),
            ),
        )
        return await self.get_message_link(chat_id, message_id)

    async def get_message_link(self, chat_id: int, message_id: int) -> Optional[MessageLink]:
        row = await self.db.fetchone(
            "SELECT * FROM message_links WHERE chat_id = ? AND message_id = ?", (chat_id, message_id)
        )
        return MessageLink.from_row(row) if row else None

    async def mark_link_processed(self, link_id: int) -> None:
        await self.db.execute("UPDATE message_links SET processed = 1 WHERE id = ?", (link_id,))

    async def update_link_preview(self, chat_id: int, message_id: int, text: str) -> None:
        await self.db.execute(
            "UPDATE message_links SET message_preview = ? WHERE chat_id = ? AND message_id = ?",
            (text[:500], chat_id, message_id),
        )

    # ==================== THREAD MAPPINGS ====================

    async def save_thread_mapping(self, channel_message_id: int, thread_id: int, chat_id: Optional[int] = None) -> None:
        await self.db.execute(
            """
            INSERT INTO thread_mappings (channel_message_id, thread_id, chat_id, created_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(channel_message_id) DO UPDATE SET thread_id = excluded.thread_id, chat_id = excluded.chat_id
            """,
            (channel_message_id, thread_id, chat_id, now_iso()),
        )

    async def get_channel_message_id_by_thread(self, thread_id: int) -> Optional[int]:
        row = await self.db.fetchone(
            "SELECT channel_message_id FROM thread_mappings WHERE thread_id = ?", (thread_id,)
        )
        return row["channel_message_id"] if row else None

    async def get_thread_mapping(self, channel_message_id: int) -> Optional[tuple[int, Optional[int]]]:
        """Возвращает (thread_id, chat_id) обсуждения поста"""
        row = await self.db.fetchone(
            "SELECT thread_id, chat_id FROM thread_mappings WHERE channel_message_id = ?",
            (channel_message_id,),
        )
        return (row["thread_id"], row["chat_id"]) if row else None

    # ==================== MESSAGE HISTORY ====================

    async def save_message(
        self,
        user_id: int,
        text: str,
        *,
        author_id: Optional[int] = None,
        chat_id: Optional[int] = None,
        message_id: Optional[int] = None,
    ) -> None:
        await self.db.insert(
            """
            INSERT INTO messages (user_id, author_id, chat_id, message_id, message_text, sent_time)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (user_id, author_id if author_id is not None else user_id, chat_id, message_id, text, now_iso()),
        )

    async def update_message(self, chat_id: int, message_id: int, text: str) -> bool:
        changed = await self.db.execute(
            "UPDATE messages SET message_text = ? WHERE chat_id = ? AND message_id = ?",
            (text, chat_id, message_id),
        )
        return changed > 0

    async def get_last_user_message_since(self, user_id: int, since: str) -> Optional[StoredMessage]:
        row = await self.db.fetchone(
            """
            SELECT * FROM messages
            WHERE user_id = ? AND author_id = ? AND sent_time > ? AND message_id IS NOT NULL
            ORDER BY sent_time DESC, id DESC LIMIT 1
            """,
            (user_id, user_id, since),
        )
        return StoredMessage.from_row(row) if row else None

    async def get_user_messages_since(self, user_id: int, since: str) -> list[StoredMessage]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM messages
            WHERE user_id = ? AND author_id = ? AND sent_time >= ?
            ORDER BY sent_time ASC, id ASC
            """,
            (user_id, user_id, since),
        )
        return [StoredMessage.from_row(row) for row in rows]

    async def get_recent_messages(self, user_id: int, limit: int) -> list[StoredMessage]:
        rows = await self.db.fetchall(
            "SELECT * FROM messages WHERE user_id = ? ORDER BY sent_time DESC, id DESC LIMIT ?",
            (user_id, limit),
        )
        return [StoredMessage.from_row(row) for row in reversed(rows)]

    async def has_user_responded_since(self, user_id: int, since: str) -> bool:
        user = await self.get_user(user_id)
        if user is None or not user.last_response_time:
            return False
        return parse_iso(user.last_response_time) > parse_iso(since)

    async def count_messages_since(self, days: int) -> int:
        since = to_iso(now_utc() - timedelta(days=days))
        row = await self.db.fetchone("SELECT COUNT(*) AS cnt FROM messages WHERE sent_time > ?", (since,))
        return row["cnt"] if row else 0
