"""
Angry Handler
=============
"Злой" пост для тех, кто пропал после вечернего поста.
Не больше одного в день на пользователя. Ответы в комментариях считаются:
на первые два бот отвечает, дальше молчит.
"""

import random
import logging
from typing import Optional

from config import config
from services.delivery import DeliveryFanout, plan_delivery
from services.events import IncomingMessage
from services.openai_client import OpenAIError
from services.telegram_sender import DeliveryError, TelegramSender
from storage.models import AngryPost, MessageLink
from storage.repository import Storage
from utils.helpers import is_llm_error, local_date
from utils.prompts import ANGRY_IMAGE_PROMPT, build_angry_prompt
from utils.texts import ANGRY_FALLBACK_TEXTS, ANGRY_FIRST_REPLY, ANGRY_SECOND_REPLY

logger = logging.getLogger(__name__)

POST_TYPE = "angry"


class AngryHandler:
    """Отправка злого поста и ответы под ним"""

    def __init__(
        self,
        storage: Storage,
        sender: TelegramSender,
        fanout: DeliveryFanout,
        llm,
        admin_chat_id: Optional[int] = None,
        images_enabled: bool = None,
    ):
        self.storage = storage
        self.sender = sender
        self.fanout = fanout
        self.llm = llm
        self.admin_chat_id = admin_chat_id
        self.images_enabled = config.IMAGES_ENABLED if images_enabled is None else images_enabled

    async def should_send(self, user_id: int) -> bool:
        """Пользователь молчит с последнего вечернего поста"""
        last_post = await self.storage.get_last_interactive_post(user_id)
        if last_post is None:
            return False
        if last_post.is_finished:
            return False
        return not await self.storage.has_user_responded_since(user_id, last_post.created_at)

    async def send_angry_post(self, user_id: int, forced: bool = False) -> Optional[int]:
        """
        Отправляет злой пост.

        Args:
            user_id: Пользователь
            forced: Не проверять, отвечал ли пользователь (admin-команда)

        Returns:
            message_id поста или None, если отправки не было
        """
        user = await self.storage.get_user(user_id)
        if user is None:
            logger.warning(f"Злой пост: пользователь {user_id} не найден")
            return None

        if not forced and not await self.should_send(user_id):
            logger.info(f"Злой пост для {user_id} не нужен: пользователь отвечал")
            return None

        if not plan_delivery(user):
            logger.info(f"Злой пост для {user_id} пропущен: доставка отключена")
            return None

        today = local_date(user.timezone)
        if not await self.storage.claim_daily_post(user_id, today, POST_TYPE):
            logger.info(f"Злой пост для {user_id} уже отправлен {today}")
            return None

        try:
            text = await self._generate_text(user.name)
            image = await self._generate_image()
            report = await self.fanout.deliver(user, text, image=image, post_type=POST_TYPE)
        except Exception:
            await self.storage.release_daily_post(user_id, today, POST_TYPE)
            raise

        primary = report.primary
        if primary is None:
            await self.storage.release_daily_post(user_id, today, POST_TYPE)
            await self._report(f"❌ Злой пост для {user_id} не доставлен")
            return None

        channel_message_id = primary.message_id
        await self.storage.create_angry_post(channel_message_id, user_id)
        await self.storage.set_daily_post_message(user_id, today, POST_TYPE, channel_message_id)
        for result in report.results:
            if result.ok:
                await self.storage.save_message_link(
                    result.destination.chat_id,
                    result.message_id,
                    "bot_post",
                    post_type=POST_TYPE,
                    channel_message_id=channel_message_id,
                    user_id=user_id,
                    message_preview=text,
                )

        logger.info(f"😤 Злой пост для {user_id} отправлен: {channel_message_id}")
        await self._report(f"😤 Злой пост для {user_id} отправлен ({channel_message_id})")
        return channel_message_id

    async def handle_comment(self, post: AngryPost, message: IncomingMessage, link: MessageLink) -> bool:
        """Ответ пользователя под злым постом"""
        count = await self.storage.increment_angry_response(post.channel_message_id, message.user_id)
        await self.storage.mark_link_processed(link.id)
        logger.info(f"Ответ №{count} под злым постом {post.channel_message_id}")

        if count == 1:
            text = ANGRY_FIRST_REPLY
        elif count == 2:
            text = ANGRY_SECOND_REPLY
        else:
            return True

        await self.sender.send_message(
            message.chat_id, text, reply_to_message_id=message.message_id, message_type="angry_reply"
        )
        return True

    async def _generate_text(self, name: Optional[str]) -> str:
        try:
            text = await self.llm.generate(build_angry_prompt(name))
        except OpenAIError as e:
            logger.error(f"LLM недоступна, берём запасной текст: {e}")
            return random.choice(ANGRY_FALLBACK_TEXTS)
        if is_llm_error(text):
            return random.choice(ANGRY_FALLBACK_TEXTS)
        return text

    async def _generate_image(self) -> Optional[bytes]:
        if not self.images_enabled:
            return None
        try:
            return await self.llm.generate_image(ANGRY_IMAGE_PROMPT)
        except OpenAIError as e:
            logger.warning(f"Картинка для злого поста не сгенерирована: {e}")
            return None

    async def _report(self, text: str) -> None:
        if not self.admin_chat_id:
            return
        try:
            await self.sender.send_message(self.admin_chat_id, text, message_type="admin_report", max_attempts=1)
        except DeliveryError as e:
            logger.warning(f"Не удалось отправить отчёт админу: {e}")
