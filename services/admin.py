"""
Admin Service
=============
Операции для админ-команд: запустить пост вне расписания, проверить
незавершённые задания, посмотреть статистику.

Генерация постов запускается в фоне, команда отвечает сразу.
"""

import logging

from services.reminders import ReminderRegistry
from services.scheduler import Orchestrator
from services.session_store import SessionStore
from storage.repository import Storage

logger = logging.getLogger(__name__)


class AdminService:
    """Админ-интерфейс к планировщику"""

    def __init__(
        self,
        orchestrator: Orchestrator,
        storage: Storage,
        sessions: SessionStore,
        reminders: ReminderRegistry,
    ):
        self.orchestrator = orchestrator
        self.storage = storage
        self.sessions = sessions
        self.reminders = reminders

    def trigger_evening(self, user_id: int) -> None:
        logger.info(f"🔧 Админ запустил вечерний пост для {user_id}")
        self.orchestrator.spawn(self.orchestrator.send_evening_post(user_id), f"admin_evening:{user_id}")

    def trigger_morning(self, user_id: int) -> None:
        logger.info(f"🔧 Админ запустил утренний пост для {user_id}")
        self.orchestrator.spawn(self.orchestrator.send_morning_post(user_id), f"admin_morning:{user_id}")

    def trigger_angry(self, user_id: int) -> None:
        logger.info(f"🔧 Админ запустил злой пост для {user_id}")
        self.orchestrator.spawn(
            self.orchestrator.angry.send_angry_post(user_id, forced=True), f"admin_angry:{user_id}"
        )

    def trigger_joy(self, user_id: int) -> None:
        logger.info(f"🔧 Админ запустил пост радости для {user_id}")
        self.orchestrator.spawn(self.orchestrator.send_joy_post(user_id), f"admin_joy:{user_id}")

    async def run_sweep(self) -> int:
        return await self.orchestrator.check_uncompleted_tasks()

    async def status(self) -> str:
        users = await self.storage.get_all_users()
        messages_day = await self.storage.count_messages_since(days=1)
        sessions = self.sessions.stats()

        lines = [
            "📊 <b>Статистика</b>",
            "",
            f"👥 Пользователей: {len(users)}",
            f"💬 Сообщений за сутки: {messages_day}",
            f"⚡️ Joy-сессий: {sessions['joy_sessions']}",
            f"⏸ Ожиданий n8n: {sessions['waiting']}",
            f"⏰ Напоминаний: {len(self.reminders)}",
            f"⚙️ Фоновых задач: {self.orchestrator.pending_tasks}",
        ]
        return "\n".join(lines)
