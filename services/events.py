"""
Inbound Events
==============
Входящие события от Telegram в виде, не зависящем от aiogram:
текстовое сообщение (новое или отредактированное) и нажатие кнопки.
"""

from dataclasses import dataclass
from typing import Optional

from aiogram import types


@dataclass
class IncomingMessage:
    """Текстовое сообщение пользователя"""
    chat_id: int
    user_id: int
    message_id: int
    text: str
    thread_id: Optional[int] = None
    reply_to_message_id: Optional[int] = None
    is_edit: bool = False
    is_bot: bool = False
    chat_type: str = "private"

    @property
    def is_private(self) -> bool:
        return self.chat_type == "private"

    @classmethod
    def from_aiogram(cls, message: types.Message, is_edit: bool = False) -> "IncomingMessage":
        reply_to = message.reply_to_message.message_id if message.reply_to_message else None
        return cls(
            chat_id=message.chat.id,
            user_id=message.from_user.id if message.from_user else message.chat.id,
            message_id=message.message_id,
            text=message.text or message.caption or "",
            thread_id=message.message_thread_id,
            reply_to_message_id=reply_to,
            is_edit=is_edit,
            is_bot=bool(message.from_user and message.from_user.is_bot),
            chat_type=message.chat.type,
        )


@dataclass
class ButtonPress:
    """Нажатие inline-кнопки"""
    chat_id: int
    user_id: int
    message_id: int
    data: str
    thread_id: Optional[int] = None

    @classmethod
    def from_aiogram(cls, callback: types.CallbackQuery) -> "ButtonPress":
        message = callback.message
        return cls(
            chat_id=message.chat.id if message else callback.from_user.id,
            user_id=callback.from_user.id,
            message_id=message.message_id if message else 0,
            data=callback.data or "",
            thread_id=getattr(message, "message_thread_id", None) if message else None,
        )
