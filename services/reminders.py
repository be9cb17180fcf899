"""
Reminder Registry
=================
Отложенные напоминания, по одному на пользователя.
Любое новое сообщение пользователя снимает его напоминание.
"""

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

ReminderCallback = Callable[[], Awaitable[None]]


class ReminderRegistry:
    """Таймеры напоминаний по user_id"""

    def __init__(self):
        self._tasks: dict[int, asyncio.Task] = {}

    def set(self, user_id: int, delay_seconds: float, callback: ReminderCallback) -> None:
        """Ставит напоминание, предыдущее для пользователя отменяется"""
        self.clear(user_id)
        task = asyncio.create_task(self._fire(user_id, delay_seconds, callback))
        self._tasks[user_id] = task
        logger.info(f"⏰ Напоминание для {user_id} через {delay_seconds:.0f}s")

    def clear(self, user_id: int) -> bool:
        task = self._tasks.pop(user_id, None)
        if task is None:
            return False
        if not task.done():
            task.cancel()
        return True

    def has(self, user_id: int) -> bool:
        task = self._tasks.get(user_id)
        return task is not None and not task.done()

    def cancel_all(self) -> None:
        for user_id in list(self._tasks):
            self.clear(user_id)

    async def _fire(self, user_id: int, delay_seconds: float, callback: ReminderCallback) -> None:
        await asyncio.sleep(delay_seconds)
        # Таймер сработал, дальше он уже не отменяется новым сообщением
        if self._tasks.get(user_id) is asyncio.current_task():
            del self._tasks[user_id]
        try:
            await callback()
        except Exception as e:
            logger.error(f"Ошибка напоминания для {user_id}: {e}", exc_info=True)

    def __len__(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())
