"""
Orchestrator
============
Расписание и фоновые задачи.

Каждую минуту проверяется локальное время каждого пользователя: вечерний,
утренний, злой пост и еженедельный пост радости. Отдельная задача по
интервалу доигрывает незавершённые вечерние посты.

Долгие генерации (LLM + картинка) запускаются фоновыми задачами через spawn()
со своей обработкой ошибок, чтобы не держать event loop.
"""

import asyncio
import random
import logging
from datetime import timedelta
from typing import Awaitable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from config import config
from handlers.angry import AngryHandler
from handlers.joy import JoyHandler
from services.calendar_client import CalendarService, NullCalendar, detect_probably_busy
from services.delivery import DeliveryFanout, DeliveryReport, DestinationKind, plan_delivery
from services.events import IncomingMessage
from services.openai_client import OpenAIError
from services.router import MessageRouter
from services.session_store import JoyKind, Surface
from services.telegram_sender import DeliveryError, TelegramSender
from storage.models import EveningMessageData, EveningState, RelaxationType, User
from storage.repository import Storage
from utils.helpers import (
    apply_gender,
    extract_json,
    is_llm_error,
    local_date,
    local_now,
    now_utc,
    parse_hhmm,
    to_iso,
)
from utils.prompts import (
    EVENING_IMAGE_PROMPT,
    JOY_IMAGE_PROMPT,
    build_evening_prompt,
    build_morning_greeting_prompt,
)
from utils.texts import (
    EVENING_INTRO_TEXT,
    FALLBACK_EMOTIONS,
    FALLBACK_ENCOURAGEMENT,
    FALLBACK_NEGATIVE_PART,
    FALLBACK_POSITIVE_PART,
    JOY_WEEKLY_POST_TEXT,
    MORNING_FALLBACK_GREETINGS,
    TASK1_HEADER,
)

logger = logging.getLogger(__name__)

# Ожидание автопересылки поста в группу обсуждения
THREAD_WAIT_SECONDS = 30
THREAD_POLL_INTERVAL = 2
SWEEP_PAUSE_SECONDS = 1


class Orchestrator:
    """Планировщик постов и фоновых задач"""

    def __init__(
        self,
        storage: Storage,
        sender: TelegramSender,
        fanout: DeliveryFanout,
        llm,
        router: MessageRouter,
        joy: JoyHandler,
        angry: AngryHandler,
        calendar: Optional[CalendarService] = None,
        admin_chat_id: Optional[int] = None,
        images_enabled: bool = None,
        thread_wait_seconds: float = THREAD_WAIT_SECONDS,
        thread_poll_interval: float = THREAD_POLL_INTERVAL,
        sweep_pause: float = SWEEP_PAUSE_SECONDS,
    ):
        self.storage = storage
        self.sender = sender
        self.fanout = fanout
        self.llm = llm
        self.router = router
        self.joy = joy
        self.angry = angry
        self.calendar = calendar or NullCalendar()
        self.admin_chat_id = admin_chat_id
        self.images_enabled = config.IMAGES_ENABLED if images_enabled is None else images_enabled
        self.thread_wait_seconds = thread_wait_seconds
        self.thread_poll_interval = thread_poll_interval
        self.sweep_pause = sweep_pause
        self.scheduler = AsyncIOScheduler()
        self._tasks: set[asyncio.Task] = set()

    # ==================== ЗАПУСК ====================

    def start(self) -> None:
        self.scheduler.add_job(self.tick, "cron", minute="*", id="tick", max_instances=1, coalesce=True)
        self.scheduler.add_job(
            self.check_uncompleted_tasks,
            "interval",
            minutes=config.UNCOMPLETED_CHECK_INTERVAL_MINUTES,
            id="uncompleted",
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info("⏰ Планировщик запущен")

    async def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("Планировщик остановлен")

    def spawn(self, coro: Awaitable, name: str) -> asyncio.Task:
        """Запускает задачу в фоне, не дожидаясь её завершения"""
        task = asyncio.create_task(self._run_safely(coro, name))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def _run_safely(self, coro: Awaitable, name: str):
        try:
            return await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"❌ Фоновая задача {name} упала: {e}", exc_info=True)
            await self._report(f"❌ Фоновая задача {name} упала: {e}")
            return None

    # ==================== РАСПИСАНИЕ ====================

    async def tick(self) -> None:
        """Раз в минуту: у кого из пользователей наступило время поста"""
        users = await self.storage.get_all_users()
        for user in users:
            now = local_now(user.timezone)
            current = (now.hour, now.minute)

            if current == parse_hhmm(config.EVENING_TIME):
                self.spawn(self.send_evening_post(user.chat_id), f"evening:{user.chat_id}")
            if current == parse_hhmm(config.MORNING_TIME):
                self.spawn(self.send_morning_post(user.chat_id), f"morning:{user.chat_id}")
            if current == parse_hhmm(config.ANGRY_CHECK_TIME):
                self.spawn(self.angry.send_angry_post(user.chat_id), f"angry:{user.chat_id}")
            if now.weekday() == config.JOY_WEEKDAY and current == parse_hhmm(config.JOY_TIME):
                self.spawn(self.send_joy_post(user.chat_id), f"joy:{user.chat_id}")

    # ==================== ВЕЧЕР ====================

    async def send_evening_post(self, user_id: int) -> Optional[int]:
        """
        Генерирует и рассылает вечерний пост.

        Returns:
            message_id поста, к которому привязаны шаги, или None
        """
        user = await self.storage.get_user(user_id)
        if user is None:
            logger.warning(f"Вечерний пост: пользователь {user_id} не найден")
            return None
        if not plan_delivery(user):
            logger.info(f"Вечерний пост для {user_id} пропущен: доставка отключена")
            return None

        today = local_date(user.timezone)
        if not await self.storage.claim_daily_post(user_id, today, "evening"):
            logger.info(f"Вечерний пост для {user_id} уже отправлен {today}")
            return None

        try:
            channel_message_id = await self._publish_evening(user, today)
        except Exception:
            await self.storage.release_daily_post(user_id, today, "evening")
            raise
        if channel_message_id is None:
            await self.storage.release_daily_post(user_id, today, "evening")
        return channel_message_id

    async def _publish_evening(self, user: User, today: str) -> Optional[int]:
        user_id = user.chat_id

        if await self.storage.count_interactive_posts(user_id) == 0:
            await self.fanout.deliver(user, EVENING_INTRO_TEXT, is_intro=True, post_type="evening_intro")

        events = await self.calendar.get_events_for_user(user_id)
        busy, busy_reason = detect_probably_busy(events)
        data = await self._generate_evening_data(user, busy, busy_reason)
        relaxation_type = random.choice(list(RelaxationType)).value
        image = await self._generate_image(EVENING_IMAGE_PROMPT)

        report = await self.fanout.deliver(user, data.encouragement, image=image, post_type="evening")
        primary = report.primary
        if primary is None:
            await self._report(f"❌ Вечерний пост для {user_id} не доставлен")
            return None

        channel_message_id = primary.message_id
        await self.storage.create_interactive_post(
            channel_message_id,
            user_id,
            data,
            relaxation_type,
            is_dm_mode=primary.destination.kind == DestinationKind.DM,
            reply_chat_id=user_id if user.dm_enabled else None,
        )
        await self.storage.set_daily_post_message(user_id, today, "evening", channel_message_id)
        await self._save_copies(report, "evening", channel_message_id, user_id, data.encouragement)
        logger.info(f"🌙 Вечерний пост для {user_id}: {channel_message_id} ({relaxation_type})")

        await self._send_first_task(user, report, channel_message_id, data)
        return channel_message_id

    async def _send_first_task(
        self, user: User, report: DeliveryReport, channel_message_id: int, data: EveningMessageData
    ) -> None:
        """Первое задание - в личку или в ветку обсуждения поста"""
        target = await self._reply_target(user, report, channel_message_id)
        if target is None:
            logger.warning(f"Некуда отправить первое задание поста {channel_message_id}")
            return

        chat_id, reply_to = target
        text = f"{TASK1_HEADER}\n{data.negative_part}"
        sent = await self.sender.send_message(chat_id, text, reply_to_message_id=reply_to, message_type="bot_task1")
        await self.storage.save_message_link(
            chat_id,
            sent.message_id,
            "bot_task1",
            post_type="evening",
            channel_message_id=channel_message_id,
            user_id=user.chat_id,
            reply_to_message_id=reply_to,
            message_preview=text,
        )
        await self.storage.update_interactive_post(
            channel_message_id, bot_task1_message_id=sent.message_id, reply_chat_id=chat_id
        )

    async def _generate_evening_data(self, user: User, busy: bool, busy_reason: str) -> EveningMessageData:
        fallback = EveningMessageData(
            encouragement=FALLBACK_ENCOURAGEMENT,
            negative_part=FALLBACK_NEGATIVE_PART,
            positive_part=FALLBACK_POSITIVE_PART,
            emotions=apply_gender(FALLBACK_EMOTIONS, user.gender),
        )
        try:
            raw = await self.llm.generate(build_evening_prompt(user.name, user.user_request, busy, busy_reason))
        except OpenAIError as e:
            logger.error(f"LLM недоступна, вечерний пост из запасных текстов: {e}")
            return fallback

        parsed = extract_json(raw) if not is_llm_error(raw) else None
        if not isinstance(parsed, dict):
            logger.warning("Ответ для вечернего поста не разобран, используем запасные тексты")
            return fallback

        def pick(key: str, default: str) -> str:
            value = str(parsed.get(key) or "").strip()
            return value or default

        return EveningMessageData(
            encouragement=pick("encouragement", fallback.encouragement),
            negative_part=pick("negative_part", fallback.negative_part),
            positive_part=pick("positive_part", fallback.positive_part),
            emotions=pick("emotions", fallback.emotions),
        )

    # ==================== УТРО ====================

    async def send_morning_post(self, user_id: int) -> Optional[int]:
        user = await self.storage.get_user(user_id)
        if user is None or not plan_delivery(user):
            return None

        today = local_date(user.timezone)
        if not await self.storage.claim_daily_post(user_id, today, "morning"):
            logger.info(f"Утренний пост для {user_id} уже отправлен {today}")
            return None

        try:
            greeting = await self._generate_greeting(user)
            report = await self.fanout.deliver(user, greeting, post_type="morning")
        except Exception:
            await self.storage.release_daily_post(user_id, today, "morning")
            raise

        primary = report.primary
        if primary is None:
            await self.storage.release_daily_post(user_id, today, "morning")
            await self._report(f"❌ Утренний пост для {user_id} не доставлен")
            return None

        channel_message_id = primary.message_id
        await self.storage.create_morning_post(
            channel_message_id, user_id, greeting, reply_chat_id=user_id if user.dm_enabled else None
        )
        await self.storage.set_daily_post_message(user_id, today, "morning", channel_message_id)
        await self._save_copies(report, "morning", channel_message_id, user_id, greeting)
        logger.info(f"☀️ Утренний пост для {user_id}: {channel_message_id}")
        return channel_message_id

    async def _generate_greeting(self, user: User) -> str:
        try:
            text = await self.llm.generate(build_morning_greeting_prompt(user.name))
        except OpenAIError as e:
            logger.error(f"LLM недоступна, берём запасное приветствие: {e}")
            text = None
        if is_llm_error(text):
            text = random.choice(MORNING_FALLBACK_GREETINGS)
        return apply_gender(text, user.gender)

    # ==================== РАДОСТЬ ====================

    async def send_joy_post(self, user_id: int) -> Optional[int]:
        """Еженедельный пост радости и длинная Joy-сессия, привязанная к нему"""
        user = await self.storage.get_user(user_id)
        if user is None or not plan_delivery(user):
            return None

        previous = await self.storage.get_last_daily_post_time(user_id, "joy")
        today = local_date(user.timezone)
        if not await self.storage.claim_daily_post(user_id, today, "joy"):
            logger.info(f"Пост радости для {user_id} уже отправлен {today}")
            return None

        try:
            total = len(await self.storage.get_joy_sources(user_id))
            added = await self.storage.count_joy_sources_since(user_id, previous)
            text = JOY_WEEKLY_POST_TEXT.format(total=total, added=added)
            image = await self._generate_image(JOY_IMAGE_PROMPT)
            report = await self.fanout.deliver(user, text, image=image, post_type="joy")
        except Exception:
            await self.storage.release_daily_post(user_id, today, "joy")
            raise

        primary = report.primary
        if primary is None:
            await self.storage.release_daily_post(user_id, today, "joy")
            await self._report(f"❌ Пост радости для {user_id} не доставлен")
            return None

        channel_message_id = primary.message_id
        await self.storage.set_daily_post_message(user_id, today, "joy", channel_message_id)
        await self._save_copies(report, "joy", channel_message_id, user_id, text)

        target = await self._reply_target(user, report, channel_message_id)
        if target is None:
            logger.warning(f"Joy-сессия для поста {channel_message_id} не открыта: нет ветки обсуждения")
            return channel_message_id

        chat_id, reply_to = target
        surface = Surface(chat_id, reply_to if chat_id != user_id else None)
        await self.joy.start(user_id, channel_message_id, JoyKind.WEEKLY, surface)
        logger.info(f"⚡️ Пост радости для {user_id}: {channel_message_id}")
        return channel_message_id

    # ==================== НЕЗАВЕРШЁННЫЕ ====================

    async def check_uncompleted_tasks(self) -> int:
        """
        Доигрывает ответы, которые пришли, но не были обработаны (например,
        бот перезапустился). Каждое сообщение повторяется не больше одного раза.

        Returns:
            Количество повторно обработанных сообщений
        """
        now = now_utc()
        created_after = to_iso(now - timedelta(days=config.UNCOMPLETED_MAX_AGE_DAYS))
        created_before = to_iso(now - timedelta(minutes=config.UNCOMPLETED_MIN_AGE_MINUTES))
        posts = await self.storage.get_uncompleted_posts(created_after, created_before)
        logger.info(f"🧹 Проверка незавершённых заданий: {len(posts)} постов")

        replayed = 0
        for post in posts:
            # Практика отмечается только кнопкой
            if post.state == EveningState.WAITING_PRACTICE:
                continue
            last = await self.storage.get_last_user_message_since(post.user_id, post.created_at)
            if last is None or last.chat_id is None or not last.message_text:
                continue
            link = await self.storage.get_message_link(last.chat_id, last.message_id)
            if link is not None and link.processed:
                continue
            # Ответ к другому посту доигрывается только в свой пост
            if link is not None and link.channel_message_id not in (None, post.channel_message_id):
                continue

            message = IncomingMessage(
                chat_id=last.chat_id,
                user_id=post.user_id,
                message_id=last.message_id,
                text=last.message_text,
                chat_type="private" if last.chat_id == post.user_id else "supergroup",
            )
            try:
                if await self.router.dispatch("evening", post, message):
                    replayed += 1
                    logger.info(f"Доиграно сообщение {last.message_id} для поста {post.channel_message_id}")
            except Exception as e:
                logger.error(f"Не удалось доиграть пост {post.channel_message_id}: {e}", exc_info=True)
            await asyncio.sleep(self.sweep_pause)

        return replayed

    # ==================== ОБЩЕЕ ====================

    async def _reply_target(
        self, user: User, report: DeliveryReport, channel_message_id: int
    ) -> Optional[tuple[int, Optional[int]]]:
        """
        Куда отвечать под постом: (chat_id, reply_to).

        В личку, если она включена, иначе в ветку обсуждения канала,
        как только придёт автопересылка поста.
        """
        if user.dm_enabled and report.dm_message_id:
            return user.chat_id, report.dm_message_id
        if report.channel_message_id is None:
            return None

        mapping = await self._wait_thread_mapping(report.channel_message_id)
        if mapping is None:
            return None
        thread_id, discussion_chat_id = mapping
        if discussion_chat_id is None:
            return None
        return discussion_chat_id, thread_id

    async def _wait_thread_mapping(self, channel_message_id: int) -> Optional[tuple[int, Optional[int]]]:
        waited = 0.0
        while True:
            mapping = await self.storage.get_thread_mapping(channel_message_id)
            if mapping is not None or waited >= self.thread_wait_seconds:
                return mapping
            await asyncio.sleep(self.thread_poll_interval)
            waited += self.thread_poll_interval

    async def _save_copies(
        self, report: DeliveryReport, post_type: str, channel_message_id: int, user_id: int, text: str
    ) -> None:
        for result in report.results:
            if result.ok:
                await self.storage.save_message_link(
                    result.destination.chat_id,
                    result.message_id,
                    "bot_post",
                    post_type=post_type,
                    channel_message_id=channel_message_id,
                    user_id=user_id,
                    message_preview=text,
                )

    async def _generate_image(self, prompt: str) -> Optional[bytes]:
        if not self.images_enabled:
            return None
        try:
            return await self.llm.generate_image(prompt)
        except OpenAIError as e:
            logger.warning(f"Картинка не сгенерирована, пост уйдёт текстом: {e}")
            return None

    async def _report(self, text: str) -> None:
        if not self.admin_chat_id:
            return
        try:
            await self.sender.send_message(self.admin_chat_id, text, message_type="admin_report", max_attempts=1)
        except DeliveryError as e:
            logger.warning(f"Не удалось отправить отчёт админу: {e}")
