"""
Message Router
==============
Роутер сообщений - определяет, какая активная сессия забирает входящий текст,
и направляет его в соответствующий handler.

Порядок (первое совпадение выигрывает):
1. Joy-сессия пользователя (в любом чате)
2. Ответ на вечерний / утренний / злой пост
3. Ожидающий ответа сценарий n8n
4. Нет сессии: сообщение только сохраняется в истории
"""

import logging
from enum import Enum
from typing import Optional, Union

from handlers.angry import AngryHandler
from handlers.evening import EveningHandler
from handlers.joy import JoyHandler
from handlers.morning import MorningHandler
from services.events import ButtonPress, IncomingMessage
from services.openai_client import OpenAIError
from services.reminders import ReminderRegistry
from services.session_store import SessionStore
from services.telegram_sender import DeliveryError, TelegramSender
from storage.models import AngryPost, InteractivePost, MorningPost
from storage.repository import Storage
from utils.helpers import hash_user_id, is_llm_error, start_of_local_day
from utils.prompts import build_auto_response_prompt
from utils.texts import ERROR_TEXT

logger = logging.getLogger(__name__)

Post = Union[InteractivePost, MorningPost, AngryPost]

# Порядок поиска поста по ветке обсуждения
THREAD_POST_TYPES = ("angry", "morning", "evening")
AUTO_RESPONSE_HISTORY = 10


class RouteResult(str, Enum):
    """Кто забрал сообщение"""
    JOY = "joy"
    INTERACTIVE = "interactive"
    WORKFLOW = "workflow"
    FALLBACK = "fallback"
    IGNORED = "ignored"
    FAILED = "failed"


# Ветка, забравшая сообщение, по post_type его ссылки
CONSUMED_RESULTS = {
    "workflow": RouteResult.WORKFLOW,
    "fallback": RouteResult.FALLBACK,
}


class MessageRouter:
    """
    Роутер сообщений.
    Каждое входящее сообщение обрабатывает ровно одна ветка.
    """

    def __init__(
        self,
        storage: Storage,
        sessions: SessionStore,
        joy: JoyHandler,
        evening: EveningHandler,
        morning: MorningHandler,
        angry: AngryHandler,
        reminders: ReminderRegistry,
        sender: TelegramSender,
        workflow=None,
        llm=None,
        auto_responses_enabled: bool = False,
    ):
        self.storage = storage
        self.sessions = sessions
        self.joy = joy
        self.evening = evening
        self.morning = morning
        self.angry = angry
        self.reminders = reminders
        self.sender = sender
        self.workflow = workflow
        self.llm = llm
        self.auto_responses_enabled = auto_responses_enabled

    async def route(self, message: IncomingMessage) -> RouteResult:
        """
        Роутинг текстового сообщения (нового или отредактированного).

        Args:
            message: Входящее сообщение

        Returns:
            Ветка, которая обработала сообщение
        """
        # Игнорируем команды (они обрабатываются отдельно) и других ботов
        if message.is_bot or not message.text or message.text.startswith("/"):
            return RouteResult.IGNORED

        try:
            return await self._route(message)
        except Exception as e:
            logger.error(
                f"Ошибка обработки сообщения {message.message_id} "
                f"от {hash_user_id(message.user_id)} в чате {message.chat_id}: {e}",
                exc_info=True,
            )
            await self._apologize(message.chat_id, message.message_id)
            return RouteResult.FAILED

    async def _route(self, message: IncomingMessage) -> RouteResult:
        user_id = message.user_id
        logger.info(
            f"{'Правка' if message.is_edit else 'Сообщение'} {message.message_id} "
            f"от {hash_user_id(user_id)} в чате {message.chat_id}"
        )

        self.reminders.clear(user_id)
        await self._archive(message)

        # Уже обработанное сообщение не уходит ни в одну ветку заново, правки
        # Joy-фрагментов - исключение: они заменяют фрагмент в буфере
        link = await self.storage.get_message_link(message.chat_id, message.message_id)
        if link is not None and link.processed and link.post_type != "joy":
            await self.storage.update_link_preview(message.chat_id, message.message_id, message.text)
            logger.info(f"Сообщение {message.message_id} уже обработано ({link.post_type}), обновлён только текст")
            return CONSUMED_RESULTS.get(link.post_type, RouteResult.INTERACTIVE)

        session = self.joy.active_session(user_id)
        if session is not None:
            await self._mark_consumed(message, "joy")
            await self.joy.handle_text(session, message)
            return RouteResult.JOY

        resolved = await self.resolve_post(message)
        if resolved is not None:
            post_type, post = resolved
            await self.dispatch(post_type, post, message)
            return RouteResult.INTERACTIVE

        if self.workflow is not None and not message.is_edit:
            waiting = self.sessions.get_waiting(message.chat_id)
            if waiting is not None:
                await self._mark_consumed(message, "workflow")
                await self.workflow.resume(waiting, user_id=user_id, text=message.text)
                return RouteResult.WORKFLOW

        await self._fallback(message)
        return RouteResult.FALLBACK

    async def _archive(self, message: IncomingMessage) -> None:
        """История пишется для любой ветки; правка обновляет текст на месте"""
        if message.is_edit and await self.storage.update_message(message.chat_id, message.message_id, message.text):
            return
        await self.storage.save_message(
            message.user_id,
            message.text,
            author_id=message.user_id,
            chat_id=message.chat_id,
            message_id=message.message_id,
        )
        if not message.is_edit:
            await self.storage.update_user_response(message.user_id)

    async def _mark_consumed(self, message: IncomingMessage, post_type: str) -> None:
        """Сообщение забрано не постом: проверка незавершённых заданий его не повторит"""
        link = await self.storage.save_message_link(
            message.chat_id,
            message.message_id,
            "user",
            post_type=post_type,
            user_id=message.user_id,
            reply_to_message_id=message.reply_to_message_id,
            message_preview=message.text,
        )
        if not link.processed:
            await self.storage.mark_link_processed(link.id)

    # ==================== ПОИСК ПОСТА ====================

    async def resolve_post(self, message: IncomingMessage) -> Optional[tuple[str, Post]]:
        """
        Находит пост, к которому относится сообщение: по reply-to, по ветке
        обсуждения, иначе самый свежий незавершённый пост пользователя.
        """
        resolved = await self._resolve_candidate(message)
        if resolved is None:
            return None

        post_type, post = resolved
        if post.user_id != message.user_id:
            logger.info(
                f"Сообщение {message.message_id} под чужим постом {post.channel_message_id}, пропускаем"
            )
            return None
        return resolved

    async def _resolve_candidate(self, message: IncomingMessage) -> Optional[tuple[str, Post]]:
        if message.reply_to_message_id:
            link = await self.storage.get_message_link(message.chat_id, message.reply_to_message_id)
            if link is not None and link.post_type and link.channel_message_id:
                post = await self.load_post(link.post_type, link.channel_message_id)
                if post is not None:
                    return link.post_type, post

        if message.thread_id:
            channel_message_id = await self.storage.get_channel_message_id_by_thread(message.thread_id)
            if channel_message_id:
                for post_type in THREAD_POST_TYPES:
                    post = await self.load_post(post_type, channel_message_id)
                    if post is not None:
                        return post_type, post

        return await self._latest_active_post(message.user_id)

    async def _latest_active_post(self, user_id: int) -> Optional[tuple[str, Post]]:
        candidates: list[tuple[str, Post]] = []

        incomplete = await self.storage.get_user_incomplete_posts(user_id)
        if incomplete:
            candidates.append(("evening", incomplete[0]))

        user = await self.storage.get_user(user_id)
        morning = await self.storage.get_active_morning_post(
            user_id, start_of_local_day(user.timezone if user else None)
        )
        if morning is not None and not morning.is_completed:
            candidates.append(("morning", morning))

        if not candidates:
            return None
        return max(candidates, key=lambda item: (item[1].created_at or "", item[1].id))

    async def load_post(self, post_type: str, channel_message_id: int) -> Optional[Post]:
        if post_type == "evening":
            return await self.storage.get_interactive_post(channel_message_id)
        if post_type == "morning":
            return await self.storage.get_morning_post(channel_message_id)
        if post_type == "angry":
            return await self.storage.get_angry_post(channel_message_id)
        return None

    # ==================== ПЕРЕДАЧА В HANDLER ====================

    async def dispatch(self, post_type: str, post: Post, message: IncomingMessage) -> bool:
        """
        Передаёт сообщение handler'у поста не больше одного раза на message_id.

        Уже обработанное сообщение (правка или повторная доставка) только
        обновляет сохранённый текст, шаги поста не трогаются.

        Returns:
            True если handler вызывался
        """
        link = await self.storage.get_message_link(message.chat_id, message.message_id)
        if link is not None and link.processed:
            await self.storage.update_link_preview(message.chat_id, message.message_id, message.text)
            logger.info(f"Сообщение {message.message_id} уже обработано, обновлён только текст")
            return False

        if link is None:
            link = await self.storage.save_message_link(
                message.chat_id,
                message.message_id,
                "user",
                post_type=post_type,
                channel_message_id=post.channel_message_id,
                user_id=message.user_id,
                reply_to_message_id=message.reply_to_message_id,
                message_preview=message.text,
            )

        if post_type == "evening":
            await self.evening.handle_text(post, message, link)
        elif post_type == "morning":
            await self.morning.handle_text(post, message, link)
        elif post_type == "angry":
            await self.angry.handle_comment(post, message, link)
        else:
            logger.warning(f"Неизвестный тип поста: {post_type}")
            return False
        return True

    # ==================== БЕЗ СЕССИИ ====================

    async def _fallback(self, message: IncomingMessage) -> None:
        await self._mark_consumed(message, "fallback")
        if not (self.auto_responses_enabled and self.llm is not None and message.is_private) or message.is_edit:
            logger.info(f"Сообщение {message.message_id} без активной сессии, только сохранено")
            return

        history = await self.storage.get_recent_messages(message.user_id, AUTO_RESPONSE_HISTORY)
        try:
            reply = await self.llm.generate(
                build_auto_response_prompt([m.message_text for m in history[:-1]], message.text)
            )
        except OpenAIError as e:
            logger.warning(f"Автоответ не сгенерирован: {e}")
            return
        if is_llm_error(reply):
            return

        await self.sender.send_message(
            message.chat_id, reply, reply_to_message_id=message.message_id, message_type="auto_response"
        )
        await self.storage.save_message(
            message.user_id, reply, author_id=0, chat_id=message.chat_id
        )

    async def route_unclaimed_press(self, press: ButtonPress) -> bool:
        """Кнопка, которую не забрал ни один handler, уходит ожидающему сценарию"""
        if self.workflow is None:
            return False
        waiting = self.sessions.get_waiting(press.chat_id)
        if waiting is None:
            return False
        await self.workflow.resume(waiting, user_id=press.user_id, callback_data=press.data)
        return True

    async def _apologize(self, chat_id: int, reply_to: Optional[int] = None) -> None:
        try:
            await self.sender.send_message(
                chat_id, ERROR_TEXT, reply_to_message_id=reply_to, message_type="error", max_attempts=1
            )
        except DeliveryError as e:
            logger.error(f"Не удалось отправить сообщение об ошибке в {chat_id}: {e}")
