"""
Session Store
=============
Эфемерное состояние диалогов в памяти процесса: сессии радости (накопление
ответов, скользящая кнопка, режимы добавления и удаления) и ожидания
внешнего workflow. Всё, что должно пережить рестарт, живёт в базе.
"""

import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from config import config

logger = logging.getLogger(__name__)


class JoyKind(str, Enum):
    """Вариант сессии радости"""
    SHORT = "short"     # /joy в любом чате
    WEEKLY = "weekly"   # еженедельный пост в канале


# Ключ сессии строится по-разному для разных вариантов,
# чтобы id команды /joy не совпал с id поста в канале
KEY_STRATEGIES: dict[JoyKind, Callable[[int, int], str]] = {
    JoyKind.SHORT: lambda user_id, session_id: f"{user_id}_short_{session_id}",
    JoyKind.WEEKLY: lambda user_id, session_id: f"{user_id}_{session_id}",
}


@dataclass(frozen=True)
class Surface:
    """Куда отвечать: чат и, для комментариев канала, сообщение-якорь треда"""
    chat_id: int
    reply_to_message_id: Optional[int] = None


@dataclass
class JoySession:
    """Активная сессия радости пользователя"""
    user_id: int
    session_id: int
    kind: JoyKind
    surface: Surface
    hint_sent: bool = False

    @property
    def key(self) -> str:
        return KEY_STRATEGIES[self.kind](self.user_id, self.session_id)


@dataclass
class RemovalSession:
    """Удаление пунктов по номерам, когда кнопок было бы слишком много"""
    instruction_message_id: Optional[int] = None
    numbers_by_message: dict[int, list[int]] = field(default_factory=dict)

    def all_numbers(self) -> list[int]:
        """Объединение номеров из всех сообщений"""
        merged: set[int] = set()
        for numbers in self.numbers_by_message.values():
            merged.update(numbers)
        return sorted(merged)


@dataclass
class JoyState:
    """Эфемерное состояние одного ключа сессии"""
    pending: dict[int, str] = field(default_factory=dict)
    last_button_message_id: Optional[int] = None
    adding: bool = False
    removal: Optional[RemovalSession] = None


@dataclass
class WaitingSession:
    """Ожидание ответа пользователя внешним workflow"""
    chat_id: int
    resume_url: str
    step_name: Optional[str]
    created_at: float


class SessionStore:
    """Хранилище эфемерных сессий"""

    def __init__(self, workflow_ttl: int = None, clock: Callable[[], float] = time.monotonic):
        self.workflow_ttl = workflow_ttl if workflow_ttl is not None else config.WORKFLOW_SESSION_TTL
        self._clock = clock
        self._joy_sessions: dict[int, JoySession] = {}
        self._joy_states: dict[str, JoyState] = {}
        self._waiting: dict[int, WaitingSession] = {}
        self._workflow_data: dict[int, dict[str, Any]] = {}

    # ==================== JOY SESSIONS ====================

    def get_joy_session(self, user_id: int) -> Optional[JoySession]:
        return self._joy_sessions.get(user_id)

    def set_joy_session(self, session: JoySession) -> None:
        """Открывает сессию; предыдущая сессия пользователя закрывается"""
        previous = self._joy_sessions.get(session.user_id)
        if previous is not None and previous.key != session.key:
            self.clear_joy_state(previous.key)
        self._joy_sessions[session.user_id] = session
        logger.info(f"Joy-сессия открыта: {session.key} ({session.kind.value})")

    def delete_joy_session(self, user_id: int) -> Optional[JoySession]:
        session = self._joy_sessions.pop(user_id, None)
        if session is not None:
            self.clear_joy_state(session.key)
            logger.info(f"Joy-сессия закрыта: {session.key}")
        return session

    # ==================== JOY STATE ====================

    def _state(self, key: str) -> JoyState:
        if key not in self._joy_states:
            self._joy_states[key] = JoyState()
        return self._joy_states[key]

    def get_pending(self, key: str) -> dict[int, str]:
        state = self._joy_states.get(key)
        return dict(state.pending) if state else {}

    def put_pending(self, key: str, message_id: int, text: str) -> bool:
        """
        Кладёт фрагмент в буфер по id сообщения.

        Returns:
            True если сообщение новое, False если это правка уже лежащего
        """
        pending = self._state(key).pending
        is_new = message_id not in pending
        pending[message_id] = text
        return is_new

    def pop_pending(self, key: str) -> list[str]:
        """Забирает буфер целиком (в порядке сообщений) и очищает его"""
        state = self._joy_states.get(key)
        if state is None or not state.pending:
            return []
        fragments = [state.pending[mid] for mid in sorted(state.pending)]
        state.pending = {}
        return fragments

    def set_last_button(self, key: str, message_id: Optional[int]) -> None:
        self._state(key).last_button_message_id = message_id

    def pop_last_button(self, key: str) -> Optional[int]:
        state = self._joy_states.get(key)
        if state is None:
            return None
        message_id = state.last_button_message_id
        state.last_button_message_id = None
        return message_id

    def is_adding(self, key: str) -> bool:
        state = self._joy_states.get(key)
        return bool(state and state.adding)

    def set_adding(self, key: str, value: bool) -> None:
        state = self._state(key)
        state.adding = value
        if not value:
            state.pending = {}

    def get_removal(self, key: str) -> Optional[RemovalSession]:
        state = self._joy_states.get(key)
        return state.removal if state else None

    def start_removal(self, key: str, instruction_message_id: Optional[int]) -> RemovalSession:
        removal = RemovalSession(instruction_message_id=instruction_message_id)
        self._state(key).removal = removal
        return removal

    def delete_removal(self, key: str) -> None:
        state = self._joy_states.get(key)
        if state is not None:
            state.removal = None

    def clear_joy_state(self, key: str) -> None:
        self._joy_states.pop(key, None)

    # ==================== WORKFLOW ====================

    def set_waiting(self, chat_id: int, resume_url: str, step_name: Optional[str] = None) -> WaitingSession:
        session = WaitingSession(
            chat_id=chat_id,
            resume_url=resume_url,
            step_name=step_name,
            created_at=self._clock(),
        )
        self._waiting[chat_id] = session
        return session

    def get_waiting(self, chat_id: int) -> Optional[WaitingSession]:
        """Возвращает ожидание, просроченное удаляет"""
        session = self._waiting.get(chat_id)
        if session is None:
            return None
        if self._clock() - session.created_at > self.workflow_ttl:
            del self._waiting[chat_id]
            logger.info(f"Ожидание workflow для чата {chat_id} истекло")
            return None
        return session

    def clear_waiting(self, chat_id: int) -> None:
        self._waiting.pop(chat_id, None)

    def set_workflow_data(self, chat_id: int, data: dict[str, Any]) -> None:
        self._workflow_data.setdefault(chat_id, {}).update(data)

    def get_workflow_data(self, chat_id: int) -> dict[str, Any]:
        return dict(self._workflow_data.get(chat_id, {}))

    def clear_workflow_data(self, chat_id: int) -> None:
        self._workflow_data.pop(chat_id, None)

    # ==================== TEARDOWN ====================

    def clear_user(self, user_id: int) -> None:
        """Полная очистка эфемерного состояния пользователя (/start, сброс)"""
        self.delete_joy_session(user_id)
        prefix = f"{user_id}_"
        for key in [k for k in self._joy_states if k.startswith(prefix)]:
            del self._joy_states[key]
        self.clear_waiting(user_id)
        self.clear_workflow_data(user_id)
        logger.info(f"Сессии пользователя {user_id} очищены")

    def stats(self) -> dict[str, int]:
        return {
            "joy_sessions": len(self._joy_sessions),
            "joy_states": len(self._joy_states),
            "waiting": len(self._waiting),
        }
