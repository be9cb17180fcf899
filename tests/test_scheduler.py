"""
Tests for scheduled posts and the uncompleted-task sweep.
"""

import asyncio
from datetime import datetime, timedelta

import pytest
from aiogram.exceptions import TelegramForbiddenError

from conftest import sent_texts, text_message
from config import config
from services.admin import AdminService
from services.calendar_client import CalendarEvent, detect_probably_busy
from services.scheduler import Orchestrator
from services.session_store import JoyKind, Surface
from storage.models import EveningMessageData, EveningState
from utils.helpers import local_date, now_utc, to_iso
from utils.texts import EVENING_INTRO_TEXT, FALLBACK_ENCOURAGEMENT, TASK1_HEADER

EVENING_JSON = (
    '{"encouragement": "Вечер добрый!", "negative_part": "Что огорчило?", '
    '"positive_part": "Что порадовало?", "emotions": "Что чувствуешь?"}'
)


@pytest.fixture
async def orchestrator(storage, sender, fanout, llm, router, joy, angry):
    orch = Orchestrator(
        storage=storage,
        sender=sender,
        fanout=fanout,
        llm=llm,
        router=router,
        joy=joy,
        angry=angry,
        images_enabled=False,
        thread_wait_seconds=0,
        thread_poll_interval=0,
        sweep_pause=0,
    )
    yield orch
    await orch.shutdown()


async def backdate_posts(db, hours=1):
    created = to_iso(now_utc() - timedelta(hours=hours))
    await db.execute("UPDATE interactive_posts SET created_at = ?", (created,))


class TestEveningPost:

    async def test_dm_user_gets_intro_post_and_first_task(self, orchestrator, storage, bot, llm, make_user):
        await make_user(111, dm_enabled=True)
        llm.queue(EVENING_JSON)

        channel_message_id = await orchestrator.send_evening_post(111)

        texts = sent_texts(bot)
        assert texts[0] == EVENING_INTRO_TEXT
        assert texts[1] == "Вечер добрый!"
        assert texts[2] == f"{TASK1_HEADER}\nЧто огорчило?"
        post = await storage.get_interactive_post(channel_message_id)
        assert post.is_dm_mode
        assert post.state == EveningState.WAITING_NEGATIVE
        assert post.bot_task1_message_id is not None
        assert post.message_data.positive_part == "Что порадовало?"
        link = await storage.get_message_link(111, post.bot_task1_message_id)
        assert link.post_type == "evening" and link.channel_message_id == channel_message_id

    async def test_second_post_same_day_is_skipped(self, orchestrator, bot, make_user):
        await make_user(111)
        assert await orchestrator.send_evening_post(111) is not None
        sends = bot.send_message.await_count

        assert await orchestrator.send_evening_post(111) is None
        assert bot.send_message.await_count == sends

    async def test_bad_llm_answer_uses_fallback_texts(self, orchestrator, storage, bot, make_user):
        await make_user(111)
        await storage.create_interactive_post(1, 111, EveningMessageData(), "breathing", is_dm_mode=True)

        await orchestrator.send_evening_post(111)

        # Интро уже было, первым идёт сам пост
        assert sent_texts(bot)[0] == FALLBACK_ENCOURAGEMENT

    async def test_muted_user_gets_nothing(self, orchestrator, storage, bot, make_user):
        await make_user(111, dm_enabled=False, channel_enabled=False)

        assert await orchestrator.send_evening_post(111) is None
        assert await orchestrator.send_morning_post(111) is None
        assert await orchestrator.send_joy_post(111) is None

        bot.send_message.assert_not_awaited()
        bot.send_photo.assert_not_awaited()

    async def test_failed_delivery_releases_daily_slot(self, orchestrator, storage, bot, make_user):
        user = await make_user(111)
        bot.send_message.side_effect = TelegramForbiddenError(method=None, message="bot was blocked by the user")

        assert await orchestrator.send_evening_post(111) is None

        assert await storage.claim_daily_post(111, local_date(user.timezone), "evening") is True

    async def test_channel_post_replies_in_discussion_thread(self, orchestrator, storage, bot, make_user):
        await make_user(111, dm_enabled=False, channel_enabled=True, channel_id=-1001)
        await storage.create_interactive_post(1, 111, EveningMessageData(), "breathing", is_dm_mode=False)
        # Первое отправленное сообщение получит id 1000
        await storage.save_thread_mapping(1000, 77, -100500)

        channel_message_id = await orchestrator.send_evening_post(111)

        assert channel_message_id == 1000
        last = bot.send_message.call_args.kwargs
        assert last["chat_id"] == -100500
        assert last["reply_parameters"].message_id == 77
        post = await storage.get_interactive_post(1000)
        assert not post.is_dm_mode
        assert post.reply_chat_id == -100500

    async def test_channel_post_without_thread(self, orchestrator, storage, bot, make_user):
        await make_user(111, dm_enabled=False, channel_enabled=True, channel_id=-1001)
        await storage.create_interactive_post(1, 111, EveningMessageData(), "breathing", is_dm_mode=False)

        channel_message_id = await orchestrator.send_evening_post(111)

        post = await storage.get_interactive_post(channel_message_id)
        assert post.bot_task1_message_id is None
        assert bot.send_message.await_count == 1


class TestMorningAndJoyPosts:

    async def test_morning_post(self, orchestrator, storage, bot, llm, make_user):
        await make_user(111, gender="female")
        llm.queue("Доброе утро! Ты {готов|готова} к новому дню?")

        channel_message_id = await orchestrator.send_morning_post(111)

        assert sent_texts(bot) == ["Доброе утро! Ты готова к новому дню?"]
        post = await storage.get_morning_post(channel_message_id)
        assert post.reply_chat_id == 111

    async def test_joy_post_opens_weekly_session(self, orchestrator, storage, sessions, bot, make_user):
        await make_user(111)
        await storage.add_joy_sources(111, ["кофе", "книги"])

        channel_message_id = await orchestrator.send_joy_post(111)

        assert "уже 2 пунктов" in sent_texts(bot)[0]
        session = sessions.get_joy_session(111)
        assert session.kind == JoyKind.WEEKLY
        assert session.session_id == channel_message_id
        assert session.surface == Surface(111)


class TestTick:

    async def test_spawns_jobs_due_now(self, orchestrator, make_user, monkeypatch):
        await make_user(111)
        calls = []

        async def fake_post(user_id):
            calls.append(user_id)

        # 18.10.2026 - воскресенье
        monkeypatch.setattr("services.scheduler.local_now", lambda tz: datetime(2026, 10, 18, 22, 0))
        monkeypatch.setattr(config, "EVENING_TIME", "22:00")
        monkeypatch.setattr(config, "JOY_TIME", "22:00")
        monkeypatch.setattr(config, "JOY_WEEKDAY", 6)
        monkeypatch.setattr(config, "MORNING_TIME", "09:00")
        monkeypatch.setattr(config, "ANGRY_CHECK_TIME", "12:00")
        monkeypatch.setattr(orchestrator, "send_evening_post", fake_post)
        monkeypatch.setattr(orchestrator, "send_joy_post", fake_post)
        monkeypatch.setattr(orchestrator, "send_morning_post", fake_post)

        await orchestrator.tick()
        await asyncio.gather(*list(orchestrator._tasks))

        assert calls == [111, 111]

    async def test_failing_job_is_contained(self, orchestrator):
        async def broken():
            raise RuntimeError("boom")

        task = orchestrator.spawn(broken(), "broken")
        assert await task is None
        assert orchestrator.pending_tasks == 0


class TestUncompletedSweep:

    async def test_replays_unprocessed_message_once(self, orchestrator, storage, db, make_user):
        await make_user(111)
        await storage.create_interactive_post(500, 111, EveningMessageData(), "breathing", is_dm_mode=True)
        await backdate_posts(db)
        await storage.save_message(111, "Все плохо", author_id=111, chat_id=111, message_id=10)

        assert await orchestrator.check_uncompleted_tasks() == 1
        assert (await storage.get_interactive_post(500)).task1_completed

        assert await orchestrator.check_uncompleted_tasks() == 0

    async def test_skips_practice_step(self, orchestrator, storage, db, make_user):
        await make_user(111)
        await storage.create_interactive_post(500, 111, EveningMessageData(), "breathing", is_dm_mode=True)
        for n in (1, 2):
            await storage.mark_task_completed(500, n)
        await backdate_posts(db)
        await storage.save_message(111, "готово", author_id=111, chat_id=111, message_id=10)

        assert await orchestrator.check_uncompleted_tasks() == 0

    async def test_joy_message_is_not_replayed(self, orchestrator, router, joy, storage, db, make_user):
        await make_user(111)
        await storage.create_interactive_post(500, 111, EveningMessageData(), "breathing", is_dm_mode=True)
        await backdate_posts(db)
        await joy.start(111, session_id=77, kind=JoyKind.SHORT, surface=Surface(111))
        await router.route(text_message(111, 10, "котики"))

        assert await orchestrator.check_uncompleted_tasks() == 0
        assert not (await storage.get_interactive_post(500)).task1_completed

    async def test_reply_is_replayed_only_into_its_own_post(self, orchestrator, router, storage, db, llm, make_user):
        await make_user(111)
        await storage.create_interactive_post(400, 111, EveningMessageData(), "breathing", is_dm_mode=True)
        await db.execute(
            "UPDATE interactive_posts SET created_at = ? WHERE channel_message_id = 400",
            (to_iso(now_utc() - timedelta(hours=26)),),
        )
        await storage.create_interactive_post(500, 111, EveningMessageData(), "breathing", is_dm_mode=True)
        await db.execute(
            "UPDATE interactive_posts SET created_at = ? WHERE channel_message_id = 500",
            (to_iso(now_utc() - timedelta(hours=2)),),
        )
        llm.fail = True
        await router.route(text_message(111, 10, "Все плохо"))
        link = await storage.get_message_link(111, 10)
        assert link.channel_message_id == 500 and not link.processed
        llm.fail = False

        assert await orchestrator.check_uncompleted_tasks() == 1

        assert not (await storage.get_interactive_post(400)).task1_completed
        assert (await storage.get_interactive_post(500)).task1_completed

    async def test_archived_message_is_not_replayed(self, orchestrator, router, storage, db, make_user):
        await make_user(111)
        await make_user(222)
        await storage.create_interactive_post(500, 111, EveningMessageData(), "breathing", is_dm_mode=True)
        await storage.create_interactive_post(600, 222, EveningMessageData(), "breathing", is_dm_mode=False)
        await storage.save_message_link(
            -100500, 900, "bot_task1", post_type="evening", channel_message_id=600, user_id=222
        )
        await backdate_posts(db)
        # Ответ под чужим постом уходит в архив
        await router.route(
            text_message(111, 10, "чужой ответ", chat_id=-100500, reply_to_message_id=900, chat_type="supergroup")
        )

        assert await orchestrator.check_uncompleted_tasks() == 0
        assert not (await storage.get_interactive_post(500)).task1_completed

    async def test_fresh_posts_are_left_alone(self, orchestrator, storage, make_user):
        await make_user(111)
        await storage.create_interactive_post(500, 111, EveningMessageData(), "breathing", is_dm_mode=True)
        await storage.save_message(111, "Все плохо", author_id=111, chat_id=111, message_id=10)

        assert await orchestrator.check_uncompleted_tasks() == 0


class TestAdmin:

    async def test_status(self, orchestrator, storage, sessions, reminders, make_user):
        await make_user(111)
        await storage.save_message(111, "привет", author_id=111, chat_id=111, message_id=1)
        admin = AdminService(orchestrator, storage, sessions, reminders)

        text = await admin.status()

        assert "Пользователей: 1" in text
        assert "Сообщений за сутки: 1" in text

    async def test_forced_angry_is_still_daily_unique(self, orchestrator, storage, sessions, reminders, bot, make_user):
        await make_user(111)
        admin = AdminService(orchestrator, storage, sessions, reminders)

        admin.trigger_angry(111)
        admin.trigger_angry(111)
        await asyncio.gather(*list(orchestrator._tasks))

        assert bot.send_message.await_count == 1


class TestCalendar:

    def test_busy_day(self):
        start = datetime(2026, 10, 19, 9, 0)
        events = [
            CalendarEvent("Работа", start, start + timedelta(hours=2)),
            CalendarEvent("Встреча", start, start + timedelta(hours=1, minutes=30)),
            CalendarEvent("Свободно", start, start + timedelta(hours=5), transparency="transparent"),
        ]
        busy, reason = detect_probably_busy(events)
        assert busy
        assert reason.startswith("3.5")
        assert "Свободно" not in reason

    def test_light_day(self):
        start = datetime(2026, 10, 19, 9, 0)
        assert detect_probably_busy([CalendarEvent("Звонок", start, start + timedelta(hours=1))]) == (False, "")
