"""
Data Models
===========
Модели данных: пользователь, посты (вечерний, утренний, злой), источники радости,
связи сообщений.
"""

import json
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class EveningState(str, Enum):
    """Шаг вечернего интерактивного поста"""
    WAITING_NEGATIVE = "waiting_negative"   # Выгрузка неприятных переживаний
    WAITING_POSITIVE = "waiting_positive"   # Плюшки для лягушки
    WAITING_PRACTICE = "waiting_practice"   # Дыхательная / телесная практика
    FINISHED = "finished"


def derive_state(task1: bool, task2: bool, task3: bool) -> EveningState:
    """
    Вычисляет шаг поста по флагам выполнения.

    Первый невыполненный флаг по порядку определяет шаг, поэтому
    "невозможные" комбинации (task3 без task1) тоже дают однозначный ответ.
    """
    if not task1:
        return EveningState.WAITING_NEGATIVE
    if not task2:
        return EveningState.WAITING_POSITIVE
    if not task3:
        return EveningState.WAITING_PRACTICE
    return EveningState.FINISHED


class MorningStep(str, Enum):
    """Шаг утреннего поста"""
    WAITING_USER_MESSAGE = "waiting_user_message"
    WAITING_BUTTON_CLICK = "waiting_button_click"
    WAITING_MORE_EMOTIONS = "waiting_more_emotions"
    COMPLETED = "completed"


class RelaxationType(str, Enum):
    BREATHING = "breathing"
    BODY = "body"


@dataclass
class User:
    """Пользователь бота"""
    chat_id: int
    name: Optional[str] = None
    gender: Optional[str] = None
    timezone: Optional[str] = None
    utc_offset: int = 3
    dm_enabled: bool = True
    channel_enabled: bool = False
    channel_id: Optional[int] = None
    onboarding_state: Optional[str] = None
    user_request: Optional[str] = None
    last_response_time: Optional[str] = None
    joy_checkpoint: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "User":
        return cls(
            chat_id=row["chat_id"],
            name=row["name"],
            gender=row["gender"],
            timezone=row["timezone"],
            utc_offset=row["utc_offset"] if row["utc_offset"] is not None else 3,
            dm_enabled=bool(row["dm_enabled"]),
            channel_enabled=bool(row["channel_enabled"]),
            channel_id=row["channel_id"],
            onboarding_state=row["onboarding_state"],
            user_request=row["user_request"],
            last_response_time=row["last_response_time"],
            joy_checkpoint=row["joy_checkpoint"],
            created_at=row["created_at"],
        )


@dataclass
class EveningMessageData:
    """Сгенерированное содержимое вечернего поста"""
    encouragement: str = ""
    negative_part: str = ""
    positive_part: str = ""
    emotions: str = ""

    def to_json(self) -> str:
        return json.dumps(self.__dict__, ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "EveningMessageData":
        if not raw:
            return cls()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return cls()
        if not isinstance(data, dict):
            return cls()
        return cls(
            encouragement=str(data.get("encouragement", "")),
            negative_part=str(data.get("negative_part", "")),
            positive_part=str(data.get("positive_part", "")),
            emotions=str(data.get("emotions", "")),
        )


@dataclass
class InteractivePost:
    """Вечерний интерактивный пост"""
    id: int
    channel_message_id: int
    user_id: int
    message_data: EveningMessageData = field(default_factory=EveningMessageData)
    relaxation_type: str = RelaxationType.BREATHING.value
    task1_completed: bool = False
    task2_completed: bool = False
    task3_completed: bool = False
    current_state: Optional[str] = None
    is_dm_mode: bool = False
    reply_chat_id: Optional[int] = None
    bot_task1_message_id: Optional[int] = None
    bot_schema_message_id: Optional[int] = None
    bot_task2_message_id: Optional[int] = None
    bot_task3_message_id: Optional[int] = None
    user_task1_message_id: Optional[int] = None
    user_schema_message_id: Optional[int] = None
    user_task2_message_id: Optional[int] = None
    trophy_set: bool = False
    created_at: Optional[str] = None
    last_interaction_at: Optional[str] = None

    @property
    def state(self) -> EveningState:
        # current_state в базе только проекция, источник истины - флаги
        return derive_state(self.task1_completed, self.task2_completed, self.task3_completed)

    @property
    def is_finished(self) -> bool:
        return self.state == EveningState.FINISHED

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "InteractivePost":
        return cls(
            id=row["id"],
            channel_message_id=row["channel_message_id"],
            user_id=row["user_id"],
            message_data=EveningMessageData.from_json(row["message_data"]),
            relaxation_type=row["relaxation_type"] or RelaxationType.BREATHING.value,
            task1_completed=bool(row["task1_completed"]),
            task2_completed=bool(row["task2_completed"]),
            task3_completed=bool(row["task3_completed"]),
            current_state=row["current_state"],
            is_dm_mode=bool(row["is_dm_mode"]),
            reply_chat_id=row["reply_chat_id"],
            bot_task1_message_id=row["bot_task1_message_id"],
            bot_schema_message_id=row["bot_schema_message_id"],
            bot_task2_message_id=row["bot_task2_message_id"],
            bot_task3_message_id=row["bot_task3_message_id"],
            user_task1_message_id=row["user_task1_message_id"],
            user_schema_message_id=row["user_schema_message_id"],
            user_task2_message_id=row["user_task2_message_id"],
            trophy_set=bool(row["trophy_set"]),
            created_at=row["created_at"],
            last_interaction_at=row["last_interaction_at"],
        )


@dataclass
class MorningPost:
    """Утренний пост"""
    id: int
    channel_message_id: int
    user_id: int
    current_step: str = MorningStep.WAITING_USER_MESSAGE.value
    greeting_text: Optional[str] = None
    reply_chat_id: Optional[int] = None
    last_button_message_id: Optional[int] = None
    trophy_set: bool = False
    created_at: Optional[str] = None
    last_final_message_time: Optional[str] = None

    @property
    def step(self) -> MorningStep:
        try:
            return MorningStep(self.current_step)
        except ValueError:
            return MorningStep.WAITING_USER_MESSAGE

    @property
    def is_completed(self) -> bool:
        return self.step == MorningStep.COMPLETED

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "MorningPost":
        return cls(
            id=row["id"],
            channel_message_id=row["channel_message_id"],
            user_id=row["user_id"],
            current_step=row["current_step"] or MorningStep.WAITING_USER_MESSAGE.value,
            greeting_text=row["greeting_text"],
            reply_chat_id=row["reply_chat_id"],
            last_button_message_id=row["last_button_message_id"],
            trophy_set=bool(row["trophy_set"]),
            created_at=row["created_at"],
            last_final_message_time=row["last_final_message_time"],
        )


@dataclass
class AngryPost:
    """Злой пост: существует, чтобы не отправить второй за день и привязать ответы"""
    id: int
    channel_message_id: int
    user_id: int
    thread_id: Optional[int] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "AngryPost":
        return cls(
            id=row["id"],
            channel_message_id=row["channel_message_id"],
            user_id=row["user_id"],
            thread_id=row["thread_id"],
            created_at=row["created_at"],
        )


@dataclass
class JoySource:
    """Источник радости и энергии"""
    id: int
    user_id: int
    text: str
    source_type: str = "manual"
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "JoySource":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            text=row["text"],
            source_type=row["source_type"] or "manual",
            created_at=row["created_at"],
        )


@dataclass
class MessageLink:
    """Связь telegram-сообщения с его ролью в посте"""
    id: int
    chat_id: int
    message_id: int
    message_type: str
    post_type: Optional[str] = None
    channel_message_id: Optional[int] = None
    user_id: Optional[int] = None
    reply_to_message_id: Optional[int] = None
    message_preview: Optional[str] = None
    processed: bool = False
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "MessageLink":
        return cls(
            id=row["id"],
            chat_id=row["chat_id"],
            message_id=row["message_id"],
            message_type=row["message_type"],
            post_type=row["post_type"],
            channel_message_id=row["channel_message_id"],
            user_id=row["user_id"],
            reply_to_message_id=row["reply_to_message_id"],
            message_preview=row["message_preview"],
            processed=bool(row["processed"]),
            created_at=row["created_at"],
        )


@dataclass
class StoredMessage:
    """Сообщение из истории"""
    id: int
    user_id: int
    author_id: int
    chat_id: Optional[int]
    message_id: Optional[int]
    message_text: str
    sent_time: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "StoredMessage":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            author_id=row["author_id"],
            chat_id=row["chat_id"],
            message_id=row["message_id"],
            message_text=row["message_text"] or "",
            sent_time=row["sent_time"],
        )
