"""
Evening Handler
===============
Вечерний интерактивный пост: выгрузка негатива -> плюшки -> практика.

Шаг всегда вычисляется из флагов выполнения (derive_state). Состояние
сохраняется в базе до отправки ответа, поэтому сбой отправки не ломает шаги.
"""

import random
import logging
from typing import Optional

from config import config
from services.events import ButtonPress, IncomingMessage
from services.openai_client import OpenAIError
from services.reminders import ReminderRegistry
from services.telegram_sender import TelegramSender
from storage.models import EveningState, InteractivePost, MessageLink
from storage.repository import Storage
from utils.helpers import apply_gender, hash_user_id, is_llm_error
from utils.keyboards import (
    get_practice_keyboard,
    get_practice_reminder_keyboard,
    get_schema_keyboard,
)
from utils.prompts import build_support_prompt
from utils.texts import (
    APOLOGY_TEXT,
    FALLBACK_POSITIVE_PART,
    INCOMPLETE_REMINDER_TEXT,
    NOT_YOUR_POST_TEXT,
    POST_NOT_FOUND_TEXT,
    PRACTICE_ALREADY_DONE_TEXT,
    PRACTICE_DELAY_TEXT,
    PRACTICE_DONE_TEXTS,
    PRACTICE_REMINDER_TEXT,
    PRACTICE_TEXTS,
    SCHEMA_TEXT,
    TASK2_HEADER,
    TASK3_HEADER,
    random_support_text,
)

logger = logging.getLogger(__name__)

POST_TYPE = "evening"


class EveningHandler:
    """Переходы вечернего поста"""

    def __init__(
        self,
        storage: Storage,
        sender: TelegramSender,
        llm,
        reminders: ReminderRegistry,
        reminder_delay_minutes: float = None,
        postpone_minutes: float = None,
    ):
        self.storage = storage
        self.sender = sender
        self.llm = llm
        self.reminders = reminders
        self.reminder_delay = (reminder_delay_minutes or config.REMINDER_DELAY_MINUTES) * 60
        self.postpone_delay = (postpone_minutes or config.PRACTICE_POSTPONE_MINUTES) * 60

    # ==================== ТЕКСТ ====================

    async def handle_text(self, post: InteractivePost, message: IncomingMessage, link: MessageLink) -> bool:
        """
        Обрабатывает ответ пользователя под постом.

        Args:
            post: Пост, к которому относится сообщение
            message: Сообщение пользователя
            link: Связь сообщения с постом (ещё не обработанная)

        Returns:
            True если сообщение обработано, False если шаг не продвинулся
        """
        state = post.state
        logger.info(
            f"Вечерний пост {post.channel_message_id}, пользователь {hash_user_id(post.user_id)}, "
            f"шаг {state.value}"
        )

        if state == EveningState.WAITING_NEGATIVE:
            return await self._handle_negative(post, message, link)
        if state == EveningState.WAITING_POSITIVE:
            return await self._handle_positive(post, message, link)

        # Практика отмечается только кнопкой, после финиша - только поддержка
        await self.storage.mark_link_processed(link.id)
        await self.sender.send_message(
            message.chat_id,
            random_support_text(),
            reply_to_message_id=message.message_id,
            message_type="support",
        )
        return True

    async def _handle_negative(self, post: InteractivePost, message: IncomingMessage, link: MessageLink) -> bool:
        support = await self._generate_support(message.text)
        if support is None:
            logger.warning(f"Генерация поддержки не удалась, пост {post.channel_message_id} остаётся на шаге 1")
            await self.sender.send_message(
                message.chat_id, APOLOGY_TEXT, reply_to_message_id=message.message_id, message_type="apology"
            )
            return False

        await self.storage.mark_task_completed(post.channel_message_id, 1)
        await self.storage.update_interactive_post(
            post.channel_message_id, user_task1_message_id=message.message_id
        )
        await self.storage.mark_link_processed(link.id)

        positive = post.message_data.positive_part or FALLBACK_POSITIVE_PART
        text = f"<i>{support}</i>\n\n{SCHEMA_TEXT}\n\n{TASK2_HEADER}\n{positive}"
        sent = await self._reply(
            post, message.chat_id, message.message_id, text, "bot_schema",
            reply_markup=get_schema_keyboard(post.channel_message_id),
        )
        await self.storage.update_interactive_post(post.channel_message_id, bot_schema_message_id=sent.message_id)
        self._arm_incomplete_reminder(post.user_id, post.channel_message_id, message.chat_id, sent.message_id)
        return True

    async def _handle_positive(self, post: InteractivePost, message: IncomingMessage, link: MessageLink) -> bool:
        await self.storage.mark_task_completed(post.channel_message_id, 2)
        await self.storage.update_interactive_post(
            post.channel_message_id, user_task2_message_id=message.message_id
        )
        await self.storage.mark_link_processed(link.id)
        self.reminders.clear(post.user_id)

        if post.bot_schema_message_id:
            await self.sender.remove_keyboard(message.chat_id, post.bot_schema_message_id)

        sent = await self._reply(
            post, message.chat_id, message.message_id, self.practice_text(post), "bot_task3",
            reply_markup=get_practice_keyboard(post.channel_message_id),
        )
        await self.storage.update_interactive_post(post.channel_message_id, bot_task3_message_id=sent.message_id)
        return True

    @staticmethod
    def practice_text(post: InteractivePost) -> str:
        body = PRACTICE_TEXTS.get(post.relaxation_type, PRACTICE_TEXTS["breathing"])
        return f"{TASK3_HEADER}\n\n{body}"

    async def _generate_support(self, user_text: str) -> Optional[str]:
        try:
            text = await self.llm.generate(build_support_prompt(user_text))
        except OpenAIError as e:
            logger.error(f"LLM недоступна: {e}")
            return None
        if is_llm_error(text):
            return None
        return text

    # ==================== КНОПКИ ====================

    async def skip_schema(self, press: ButtonPress, channel_message_id: int) -> None:
        """Пропуск разбора по схеме - сразу к плюшкам"""
        post = await self._load_for_press(press, channel_message_id)
        if post is None:
            return

        if post.task2_completed:
            await self.sender.remove_keyboard(press.chat_id, press.message_id)
            return

        if not post.task1_completed:
            post = await self.storage.mark_task_completed(channel_message_id, 1)

        await self.sender.remove_keyboard(press.chat_id, press.message_id)
        positive = post.message_data.positive_part or FALLBACK_POSITIVE_PART
        sent = await self._reply(
            post, press.chat_id, press.message_id, f"{TASK2_HEADER}\n{positive}", "bot_task2"
        )
        await self.storage.update_interactive_post(channel_message_id, bot_task2_message_id=sent.message_id)
        self._arm_incomplete_reminder(post.user_id, channel_message_id, press.chat_id, sent.message_id)

    async def practice_done(self, press: ButtonPress, channel_message_id: int) -> None:
        post = await self._load_for_press(press, channel_message_id)
        if post is None:
            return

        if post.task3_completed:
            await self.sender.send_message(
                press.chat_id, PRACTICE_ALREADY_DONE_TEXT, reply_to_message_id=press.message_id
            )
            return

        await self.storage.mark_task_completed(channel_message_id, 3)
        self.reminders.clear(post.user_id)
        logger.info(f"🏆 Вечерний пост {channel_message_id} завершён")

        await self.sender.remove_keyboard(press.chat_id, press.message_id)
        user = await self.storage.get_user(post.user_id)
        gender = user.gender if user else None
        await self._reply(
            post, press.chat_id, press.message_id,
            apply_gender(random.choice(PRACTICE_DONE_TEXTS), gender), "bot_congrats",
        )

        if await self.storage.set_trophy("interactive_posts", channel_message_id):
            post_chat_id = post.user_id if post.is_dm_mode else (user.channel_id if user else None)
            if post_chat_id:
                await self.sender.set_reaction(post_chat_id, channel_message_id, "🏆")

    async def practice_delay(self, press: ButtonPress, channel_message_id: int) -> None:
        post = await self._load_for_press(press, channel_message_id)
        if post is None:
            return

        if post.task3_completed:
            await self.sender.send_message(
                press.chat_id, PRACTICE_ALREADY_DONE_TEXT, reply_to_message_id=press.message_id
            )
            return

        await self.sender.send_message(
            press.chat_id, PRACTICE_DELAY_TEXT, reply_to_message_id=press.message_id, message_type="practice_delay"
        )

        async def _remind():
            current = await self.storage.get_interactive_post(channel_message_id)
            if current is None or current.task3_completed:
                return
            user = await self.storage.get_user(current.user_id)
            await self.sender.send_message(
                press.chat_id,
                apply_gender(PRACTICE_REMINDER_TEXT, user.gender if user else None),
                reply_to_message_id=press.message_id,
                reply_markup=get_practice_reminder_keyboard(channel_message_id),
                message_type="practice_reminder",
            )

        self.reminders.set(post.user_id, self.postpone_delay, _remind)

    async def _load_for_press(self, press: ButtonPress, channel_message_id: int) -> Optional[InteractivePost]:
        post = await self.storage.get_interactive_post(channel_message_id)
        if post is None:
            logger.error(f"Кнопка {press.data}: пост {channel_message_id} не найден")
            await self.sender.send_message(press.chat_id, POST_NOT_FOUND_TEXT, message_type="error")
            return None
        if post.user_id != press.user_id:
            await self.sender.send_message(
                press.chat_id, NOT_YOUR_POST_TEXT, reply_to_message_id=press.message_id, message_type="error"
            )
            return None
        return post

    # ==================== ОБЩЕЕ ====================

    async def _reply(
        self,
        post: InteractivePost,
        chat_id: int,
        reply_to_message_id: Optional[int],
        text: str,
        role: str,
        reply_markup=None,
    ):
        sent = await self.sender.send_message(
            chat_id,
            text,
            reply_to_message_id=reply_to_message_id,
            reply_markup=reply_markup,
            message_type=role,
        )
        await self.storage.save_message_link(
            chat_id,
            sent.message_id,
            role,
            post_type=POST_TYPE,
            channel_message_id=post.channel_message_id,
            user_id=post.user_id,
            reply_to_message_id=reply_to_message_id,
            message_preview=text,
        )
        return sent

    def _arm_incomplete_reminder(self, user_id: int, channel_message_id: int, chat_id: int, reply_to: int) -> None:
        """Напоминание о незаконченных заданиях, если пользователь замолчит"""

        async def _remind():
            post = await self.storage.get_interactive_post(channel_message_id)
            if post is None or post.state in (EveningState.WAITING_PRACTICE, EveningState.FINISHED):
                return
            user = await self.storage.get_user(user_id)
            await self.sender.send_message(
                chat_id,
                apply_gender(INCOMPLETE_REMINDER_TEXT, user.gender if user else None),
                reply_to_message_id=reply_to,
                message_type="incomplete_reminder",
            )

        self.reminders.set(user_id, self.reminder_delay, _remind)
