"""
Morning Handler
===============
Утренний пост: пользователь пишет, бот ставит 👀 и держит под последним
сообщением кнопку "Ответь мне". По кнопке - анализ эмоций и ответ.
После завершения на этот день шаги не повторяются.
"""

import logging
from typing import Optional

from services.events import ButtonPress, IncomingMessage
from services.openai_client import OpenAIError
from services.telegram_sender import TelegramSender
from storage.models import MessageLink, MorningPost, MorningStep
from storage.repository import Storage
from utils.helpers import apply_gender, extract_json, hash_user_id, is_llm_error, now_iso
from utils.keyboards import get_morning_respond_keyboard
from utils.prompts import build_morning_analysis_prompt, build_morning_final_prompt
from utils.texts import (
    APOLOGY_TEXT,
    MORNING_BUTTON_PROMPT,
    MORNING_EMOTIONS_QUESTION,
    MORNING_MORE_SUFFIX,
    NOT_YOUR_POST_TEXT,
    POST_NOT_FOUND_TEXT,
    random_support_text,
)

logger = logging.getLogger(__name__)

POST_TYPE = "morning"
EMOTIONS_ENOUGH = 3


class MorningHandler:
    """Переходы утреннего поста"""

    def __init__(self, storage: Storage, sender: TelegramSender, llm):
        self.storage = storage
        self.sender = sender
        self.llm = llm

    async def handle_text(self, post: MorningPost, message: IncomingMessage, link: MessageLink) -> bool:
        step = post.step
        logger.info(
            f"Утренний пост {post.channel_message_id}, пользователь {hash_user_id(post.user_id)}, шаг {step.value}"
        )

        if step in (MorningStep.WAITING_USER_MESSAGE, MorningStep.WAITING_BUTTON_CLICK):
            await self.storage.mark_link_processed(link.id)
            if step == MorningStep.WAITING_USER_MESSAGE:
                await self.storage.update_morning_post(
                    post.channel_message_id,
                    current_step=MorningStep.WAITING_BUTTON_CLICK.value,
                    reply_chat_id=message.chat_id,
                )
                await self.sender.set_reaction(message.chat_id, message.message_id, "👀")
            await self._slide_button(post, message)
            return True

        if step == MorningStep.WAITING_MORE_EMOTIONS:
            reply = await self._generate_final(post)
            if reply is None:
                await self.sender.send_message(
                    message.chat_id, APOLOGY_TEXT, reply_to_message_id=message.message_id, message_type="apology"
                )
                return False
            await self.storage.update_morning_post(
                post.channel_message_id,
                current_step=MorningStep.COMPLETED.value,
                last_final_message_time=now_iso(),
            )
            await self.storage.mark_link_processed(link.id)
            await self._reply(post, message.chat_id, message.message_id, f"{reply}\n\n{MORNING_MORE_SUFFIX}", "bot_morning_final")
            return True

        # Пост завершён на сегодня
        await self.storage.mark_link_processed(link.id)
        await self.sender.send_message(
            message.chat_id, random_support_text(), reply_to_message_id=message.message_id, message_type="support"
        )
        return True

    async def respond(self, press: ButtonPress, channel_message_id: int) -> None:
        """Кнопка "Ответь мне" """
        post = await self.storage.get_morning_post(channel_message_id)
        if post is None:
            logger.error(f"Кнопка {press.data}: утренний пост {channel_message_id} не найден")
            await self.sender.send_message(press.chat_id, POST_NOT_FOUND_TEXT, message_type="error")
            return
        if post.user_id != press.user_id:
            await self.sender.send_message(
                press.chat_id, NOT_YOUR_POST_TEXT, reply_to_message_id=press.message_id, message_type="error"
            )
            return
        if post.step != MorningStep.WAITING_BUTTON_CLICK:
            await self.sender.remove_keyboard(press.chat_id, press.message_id)
            return

        analysis = await self._analyze(post)
        if analysis is None:
            await self.sender.send_message(press.chat_id, APOLOGY_TEXT, message_type="apology")
            return

        emotions_count, reply = analysis
        await self.sender.remove_keyboard(press.chat_id, press.message_id)

        if emotions_count >= EMOTIONS_ENOUGH:
            await self.storage.update_morning_post(
                channel_message_id,
                current_step=MorningStep.COMPLETED.value,
                last_button_message_id=None,
                last_final_message_time=now_iso(),
            )
            await self._reply(post, press.chat_id, press.message_id, f"{reply}\n\n{MORNING_MORE_SUFFIX}", "bot_morning_final")
        else:
            await self.storage.update_morning_post(
                channel_message_id,
                current_step=MorningStep.WAITING_MORE_EMOTIONS.value,
                last_button_message_id=None,
            )
            await self._reply(post, press.chat_id, press.message_id, reply or MORNING_EMOTIONS_QUESTION, "bot_morning_question")

    async def _slide_button(self, post: MorningPost, message: IncomingMessage) -> None:
        """Удаляет старую кнопку и присылает новую под последним сообщением"""
        if post.last_button_message_id:
            await self.sender.delete_message(post.reply_chat_id or message.chat_id, post.last_button_message_id)

        user = await self.storage.get_user(post.user_id)
        sent = await self._reply(
            post,
            message.chat_id,
            message.message_id,
            apply_gender(MORNING_BUTTON_PROMPT, user.gender if user else None),
            "bot_morning_button",
            reply_markup=get_morning_respond_keyboard(post.channel_message_id),
        )
        await self.storage.update_morning_post(post.channel_message_id, last_button_message_id=sent.message_id)

    async def _user_texts(self, post: MorningPost) -> list[str]:
        messages = await self.storage.get_user_messages_since(post.user_id, post.created_at)
        return [m.message_text for m in messages if m.message_text]

    async def _analyze(self, post: MorningPost) -> Optional[tuple[int, str]]:
        """
        Returns:
            (количество эмоций, текст ответа) или None при ошибке генерации
        """
        texts = await self._user_texts(post)
        try:
            raw = await self.llm.generate(build_morning_analysis_prompt(texts))
        except OpenAIError as e:
            logger.error(f"LLM недоступна: {e}")
            return None
        data = extract_json(raw)
        if not isinstance(data, dict) or is_llm_error(str(data.get("reply", ""))):
            logger.warning(f"Не удалось разобрать анализ утреннего ответа: {raw!r}")
            return None
        try:
            emotions_count = int(data.get("emotions_count", 0))
        except (TypeError, ValueError):
            emotions_count = 0
        return emotions_count, str(data["reply"]).strip()

    async def _generate_final(self, post: MorningPost) -> Optional[str]:
        texts = await self._user_texts(post)
        try:
            reply = await self.llm.generate(build_morning_final_prompt(texts))
        except OpenAIError as e:
            logger.error(f"LLM недоступна: {e}")
            return None
        if is_llm_error(reply):
            return None
        return reply

    async def _reply(self, post: MorningPost, chat_id: int, reply_to: Optional[int], text: str, role: str, reply_markup=None):
        sent = await self.sender.send_message(
            chat_id, text, reply_to_message_id=reply_to, reply_markup=reply_markup, message_type=role
        )
        await self.storage.save_message_link(
            chat_id,
            sent.message_id,
            role,
            post_type=POST_TYPE,
            channel_message_id=post.channel_message_id,
            user_id=post.user_id,
            reply_to_message_id=reply_to,
            message_preview=text,
        )
        return sent
