"""
Telegram Sender
===============
Отправка сообщений с повторами при сетевых сбоях.
Повторяется одна и та же отправка, успешная отправка не дублируется.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from aiogram import Bot
from aiogram.exceptions import (
    TelegramAPIError,
    TelegramBadRequest,
    TelegramNetworkError,
    TelegramRetryAfter,
    TelegramServerError,
)
from aiogram.types import (
    BufferedInputFile,
    InlineKeyboardMarkup,
    Message,
    ReactionTypeEmoji,
    ReplyParameters,
)

from config import config
from utils.helpers import split_long_message

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS = (TelegramNetworkError, TelegramServerError, TelegramRetryAfter)
NETWORK_ERROR_MARKERS = ("502", "bad gateway", "network", "timeout", "econnreset", "etimedout", "enotfound")

CAPTION_LIMIT = 1024


class DeliveryError(Exception):
    """Отправка не удалась: попытки исчерпаны или ошибка не сетевая"""

    def __init__(self, message: str, chat_id: Optional[int] = None, message_type: str = "message"):
        super().__init__(message)
        self.chat_id = chat_id
        self.message_type = message_type


def is_transient_error(error: BaseException) -> bool:
    """Сетевая ошибка, которую имеет смысл повторить"""
    if isinstance(error, TRANSIENT_ERRORS):
        return True
    if isinstance(error, asyncio.TimeoutError):
        return True
    if isinstance(error, TelegramAPIError):
        # Ошибки Bot API кроме сетевых (права, неверный запрос) не повторяем
        return False
    text = str(error).lower()
    return any(marker in text for marker in NETWORK_ERROR_MARKERS)


class TelegramSender:
    """Обёртка над Bot с повторами"""

    def __init__(self, bot: Bot, max_attempts: int = None, interval: float = None):
        self.bot = bot
        self.max_attempts = max_attempts or config.SEND_MAX_ATTEMPTS
        self.interval = interval if interval is not None else config.SEND_RETRY_INTERVAL

    async def send_with_retry(
        self,
        func: Callable[[], Awaitable[T]],
        *,
        chat_id: Optional[int] = None,
        message_type: str = "message",
        max_attempts: int = None,
        interval: float = None,
        on_success: Optional[Callable[[T], Awaitable[None]]] = None,
    ) -> T:
        """
        Выполняет отправку с повторами.

        Args:
            func: Отправка без аргументов
            chat_id: Для логов
            message_type: Для логов
            max_attempts: Количество попыток (по умолчанию из конфига)
            interval: Пауза между попытками в секундах
            on_success: Вызывается с результатом после успешной отправки

        Raises:
            DeliveryError: попытки исчерпаны или ошибка не сетевая
        """
        max_attempts = max_attempts or self.max_attempts
        interval = interval if interval is not None else self.interval
        last_error: Optional[BaseException] = None

        for attempt in range(1, max_attempts + 1):
            try:
                result = await func()
            except Exception as e:
                if not is_transient_error(e):
                    logger.error(f"❌ Ошибка отправки {message_type} в {chat_id}: {e}")
                    raise DeliveryError(str(e), chat_id=chat_id, message_type=message_type) from e
                last_error = e
                wait_time = e.retry_after if isinstance(e, TelegramRetryAfter) else interval
                logger.warning(
                    f"Сетевая ошибка при отправке {message_type} в {chat_id}, "
                    f"попытка {attempt}/{max_attempts}, повтор через {wait_time}s: {e}"
                )
                if attempt < max_attempts:
                    await asyncio.sleep(wait_time)
                continue

            if attempt > 1:
                logger.info(f"✅ {message_type} в {chat_id} отправлено с попытки {attempt}")
            if on_success is not None:
                await on_success(result)
            return result

        logger.error(f"❌ Все {max_attempts} попыток отправки {message_type} в {chat_id} исчерпаны: {last_error}")
        raise DeliveryError(
            f"Не удалось отправить после {max_attempts} попыток: {last_error}",
            chat_id=chat_id,
            message_type=message_type,
        ) from last_error

    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        reply_to_message_id: Optional[int] = None,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
        message_type: str = "message",
        max_attempts: int = None,
        interval: float = None,
        parse_mode: Optional[str] = "HTML",
    ) -> Message:
        """
        Отправляет текст (длинный разбивается на части).

        Returns:
            Последнее отправленное сообщение (на нём клавиатура)
        """
        parts = split_long_message(text)
        sent: Optional[Message] = None

        for index, part in enumerate(parts):
            is_last = index == len(parts) - 1
            kwargs: dict[str, Any] = {
                "chat_id": chat_id,
                "text": part,
                "parse_mode": parse_mode,
            }
            if reply_to_message_id and index == 0:
                kwargs["reply_parameters"] = ReplyParameters(
                    message_id=reply_to_message_id,
                    allow_sending_without_reply=True,
                )
            if reply_markup is not None and is_last:
                kwargs["reply_markup"] = reply_markup

            sent = await self.send_with_retry(
                lambda kwargs=kwargs: self.bot.send_message(**kwargs),
                chat_id=chat_id,
                message_type=message_type,
                max_attempts=max_attempts,
                interval=interval,
            )
        return sent

    async def send_photo(
        self,
        chat_id: int,
        photo: bytes,
        caption: Optional[str] = None,
        *,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
        message_type: str = "photo",
        max_attempts: int = None,
        interval: float = None,
    ) -> Message:
        kwargs: dict[str, Any] = {
            "chat_id": chat_id,
            "photo": BufferedInputFile(photo, filename="image.png"),
        }
        if caption:
            kwargs["caption"] = caption[:CAPTION_LIMIT]
            kwargs["parse_mode"] = "HTML"
        if reply_markup is not None:
            kwargs["reply_markup"] = reply_markup

        return await self.send_with_retry(
            lambda: self.bot.send_photo(**kwargs),
            chat_id=chat_id,
            message_type=message_type,
            max_attempts=max_attempts,
            interval=interval,
        )

    async def edit_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
    ) -> bool:
        try:
            await self.send_with_retry(
                lambda: self.bot.edit_message_text(
                    chat_id=chat_id,
                    message_id=message_id,
                    text=text,
                    parse_mode="HTML",
                    reply_markup=reply_markup,
                ),
                chat_id=chat_id,
                message_type="edit",
            )
        except DeliveryError as e:
            if isinstance(e.__cause__, TelegramBadRequest):
                logger.warning(f"Не удалось отредактировать {message_id} в {chat_id}: {e}")
                return False
            raise
        return True

    async def remove_keyboard(self, chat_id: int, message_id: int) -> bool:
        """Убирает кнопки с сообщения"""
        try:
            await self.bot.edit_message_reply_markup(chat_id=chat_id, message_id=message_id, reply_markup=None)
        except TelegramBadRequest as e:
            logger.warning(f"Не удалось убрать кнопки с {message_id} в {chat_id}: {e}")
            return False
        return True

    async def delete_message(self, chat_id: int, message_id: int) -> bool:
        """Удаляет сообщение; если его уже нет - просто возвращает False"""
        try:
            await self.bot.delete_message(chat_id=chat_id, message_id=message_id)
        except TelegramBadRequest as e:
            logger.warning(f"Не удалось удалить {message_id} в {chat_id}: {e}")
            return False
        return True

    async def set_reaction(self, chat_id: int, message_id: int, emoji: str) -> bool:
        """Ставит реакцию, отсутствие прав не считается ошибкой"""
        try:
            await self.bot.set_message_reaction(
                chat_id=chat_id,
                message_id=message_id,
                reaction=[ReactionTypeEmoji(emoji=emoji)],
            )
        except TelegramAPIError as e:
            logger.warning(f"Не удалось поставить реакцию {emoji} на {message_id} в {chat_id}: {e}")
            return False
        return True
