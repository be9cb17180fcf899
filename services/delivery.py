"""
Delivery Fan-out
================
Решает, куда отправлять пост пользователя (канал, личка или оба),
и отправляет копии независимо друг от друга.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from aiogram.exceptions import TelegramForbiddenError
from aiogram.types import InlineKeyboardMarkup

from services.telegram_sender import CAPTION_LIMIT, DeliveryError, TelegramSender
from storage.models import User
from utils.texts import CHANNEL_CTA

logger = logging.getLogger(__name__)

PERMISSION_MARKERS = ("not enough rights", "need administrator rights", "chat_admin_required", "bot is not a member")


class DestinationKind(str, Enum):
    CHANNEL = "channel"
    DM = "dm"


@dataclass(frozen=True)
class Destination:
    kind: DestinationKind
    chat_id: int
    with_cta: bool = False


@dataclass
class DeliveryResult:
    destination: Destination
    message_id: Optional[int] = None
    error: Optional[str] = None
    permission_denied: bool = False

    @property
    def ok(self) -> bool:
        return self.message_id is not None


@dataclass
class DeliveryReport:
    """Итог рассылки одного поста"""
    results: list[DeliveryResult] = field(default_factory=list)

    def _message_id(self, kind: DestinationKind) -> Optional[int]:
        for result in self.results:
            if result.destination.kind == kind and result.ok:
                return result.message_id
        return None

    @property
    def channel_message_id(self) -> Optional[int]:
        return self._message_id(DestinationKind.CHANNEL)

    @property
    def dm_message_id(self) -> Optional[int]:
        return self._message_id(DestinationKind.DM)

    @property
    def delivered(self) -> bool:
        return any(result.ok for result in self.results)

    @property
    def primary(self) -> Optional[DeliveryResult]:
        """Копия, к которой привязывается пост: канал, иначе личка"""
        for kind in (DestinationKind.CHANNEL, DestinationKind.DM):
            for result in self.results:
                if result.destination.kind == kind and result.ok:
                    return result
        return None


def plan_delivery(user: User, is_intro: bool = False) -> list[Destination]:
    """
    Список получателей по настройкам пользователя.

    | dm | channel + channel_id | результат                        |
    |----|----------------------|----------------------------------|
    | 1  | да                   | канал (с CTA), затем копия в личку |
    | 1  | нет                  | только личка                     |
    | 0  | нет                  | ничего                           |
    | 0  | да                   | только канал                     |
    """
    destinations = []
    if user.channel_enabled and user.channel_id:
        destinations.append(Destination(DestinationKind.CHANNEL, user.channel_id, with_cta=not is_intro))
    if user.dm_enabled:
        destinations.append(Destination(DestinationKind.DM, user.chat_id))
    return destinations


def is_permission_error(error: DeliveryError) -> bool:
    cause = error.__cause__
    if isinstance(cause, TelegramForbiddenError):
        return True
    text = str(error).lower()
    return any(marker in text for marker in PERMISSION_MARKERS)


class DeliveryFanout:
    """Рассылка поста по всем получателям пользователя"""

    def __init__(self, sender: TelegramSender, admin_chat_id: Optional[int] = None):
        self.sender = sender
        self.admin_chat_id = admin_chat_id

    async def deliver(
        self,
        user: User,
        text: str,
        *,
        image: Optional[bytes] = None,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
        is_intro: bool = False,
        post_type: str = "post",
        max_attempts: int = None,
        interval: float = None,
    ) -> DeliveryReport:
        """
        Отправляет пост всем получателям.

        Ошибка в одном направлении не мешает другому. В личку уходит исходный
        текст без призыва идти в комментарии.
        """
        report = DeliveryReport()
        destinations = plan_delivery(user, is_intro=is_intro)

        if not destinations:
            logger.info(f"Пользователь {user.chat_id} отключил все каналы доставки, {post_type} не отправлен")
            return report

        for destination in destinations:
            body = text + CHANNEL_CTA if destination.with_cta else text
            result = DeliveryResult(destination=destination)
            if image is not None and len(body) > CAPTION_LIMIT:
                logger.warning(
                    f"🖼 Текст {post_type} длиннее подписи ({len(body)} > {CAPTION_LIMIT}), "
                    f"в {destination.kind.value} {destination.chat_id} уходит без картинки"
                )
            try:
                if image is not None and len(body) <= CAPTION_LIMIT:
                    message = await self.sender.send_photo(
                        destination.chat_id,
                        image,
                        caption=body,
                        reply_markup=reply_markup,
                        message_type=f"{post_type}_{destination.kind.value}",
                        max_attempts=max_attempts,
                        interval=interval,
                    )
                else:
                    message = await self.sender.send_message(
                        destination.chat_id,
                        body,
                        reply_markup=reply_markup,
                        message_type=f"{post_type}_{destination.kind.value}",
                        max_attempts=max_attempts,
                        interval=interval,
                    )
                result.message_id = message.message_id
                logger.info(
                    f"✅ {post_type} для {user.chat_id} отправлен в {destination.kind.value} "
                    f"{destination.chat_id} (message_id={message.message_id})"
                )
            except DeliveryError as e:
                result.error = str(e)
                if destination.kind == DestinationKind.CHANNEL and is_permission_error(e):
                    result.permission_denied = True
                    logger.error(
                        f"🚫 Нет прав на публикацию в канале {destination.chat_id} "
                        f"пользователя {user.chat_id}: {e}"
                    )
                    await self._notify_admin(
                        f"🚫 Бот не может публиковать в канал {destination.chat_id} "
                        f"(пользователь {user.chat_id}): {e}"
                    )
                else:
                    logger.error(
                        f"❌ {post_type} для {user.chat_id} не доставлен в {destination.kind.value} "
                        f"{destination.chat_id}: {e}"
                    )
            report.results.append(result)

        return report

    async def _notify_admin(self, text: str) -> None:
        if not self.admin_chat_id:
            return
        try:
            await self.sender.send_message(self.admin_chat_id, text, message_type="admin_report", max_attempts=1)
        except DeliveryError as e:
            logger.warning(f"Не удалось отправить отчёт админу: {e}")
