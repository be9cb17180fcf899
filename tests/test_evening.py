"""
Tests for the evening three-step post.
"""

from conftest import press, sent_texts, text_message
from services.router import RouteResult
from storage.models import EveningMessageData, EveningState
from utils.helpers import apply_gender
from utils.texts import (
    APOLOGY_TEXT,
    NOT_YOUR_POST_TEXT,
    PRACTICE_DONE_TEXTS,
    SCHEMA_TEXT,
    SUPPORT_TEXTS,
    TASK2_HEADER,
)

POST_ID = 500


async def create_post(storage, relaxation_type="breathing"):
    data = EveningMessageData("Привет!", "Что было плохого?", "Что было хорошего?", "Эмоции?")
    return await storage.create_interactive_post(POST_ID, 111, data, relaxation_type, is_dm_mode=True, reply_chat_id=111)


class TestEveningFlow:

    async def test_happy_path(self, router, evening, storage, bot, llm, make_user):
        await make_user(111)
        await create_post(storage)
        llm.queue("Понимаю, это было тяжело")

        result = await router.route(text_message(111, 10, "Поругался с начальником"))
        assert result == RouteResult.INTERACTIVE
        post = await storage.get_interactive_post(POST_ID)
        assert post.state == EveningState.WAITING_POSITIVE
        assert post.user_task1_message_id == 10
        schema_text = sent_texts(bot)[-1]
        assert "Понимаю, это было тяжело" in schema_text
        assert SCHEMA_TEXT in schema_text
        assert "Что было хорошего?" in schema_text
        assert post.bot_schema_message_id is not None

        await router.route(text_message(111, 11, "Вкусно поужинал"))
        post = await storage.get_interactive_post(POST_ID)
        assert post.state == EveningState.WAITING_PRACTICE
        assert "дыхательная практика" in sent_texts(bot)[-1]
        markup = bot.send_message.call_args.kwargs["reply_markup"]
        assert markup.inline_keyboard[0][0].callback_data == f"pract_done:{POST_ID}"

        # Текст на шаге практики не продвигает пост
        await router.route(text_message(111, 12, "А можно вопрос?"))
        assert sent_texts(bot)[-1] in SUPPORT_TEXTS
        assert (await storage.get_interactive_post(POST_ID)).state == EveningState.WAITING_PRACTICE

        await evening.practice_done(press(111, f"pract_done:{POST_ID}", message_id=post.bot_task3_message_id), POST_ID)
        post = await storage.get_interactive_post(POST_ID)
        assert post.is_finished
        assert post.trophy_set
        assert sent_texts(bot)[-1] in {apply_gender(text, None) for text in PRACTICE_DONE_TEXTS}
        bot.set_message_reaction.assert_awaited_once()
        assert bot.set_message_reaction.call_args.kwargs["chat_id"] == 111

    async def test_body_practice_text(self, router, storage, bot, make_user):
        await make_user(111)
        await create_post(storage, relaxation_type="body")
        await router.route(text_message(111, 10, "плохо"))
        await router.route(text_message(111, 11, "хорошо"))
        assert "телесная практика" in sent_texts(bot)[-1]

    async def test_llm_failure_keeps_step(self, router, storage, bot, llm, make_user):
        await make_user(111)
        await create_post(storage)
        llm.fail = True

        await router.route(text_message(111, 10, "Все плохо"))

        assert sent_texts(bot)[-1] == APOLOGY_TEXT
        post = await storage.get_interactive_post(POST_ID)
        assert post.state == EveningState.WAITING_NEGATIVE
        link = await storage.get_message_link(111, 10)
        assert link.processed is False

        # Правка того же сообщения после восстановления LLM продвигает шаг
        llm.fail = False
        await router.route(text_message(111, 10, "Все плохо, правда", is_edit=True))
        assert (await storage.get_interactive_post(POST_ID)).state == EveningState.WAITING_POSITIVE

    async def test_llm_error_sentinel_is_failure(self, router, storage, bot, llm, make_user):
        await make_user(111)
        await create_post(storage)
        llm.queue("HF_JSON_ERROR")

        await router.route(text_message(111, 10, "Все плохо"))

        assert sent_texts(bot)[-1] == APOLOGY_TEXT
        assert not (await storage.get_interactive_post(POST_ID)).task1_completed


class TestEveningButtons:

    async def test_skip_schema_from_start(self, evening, storage, bot, make_user):
        await make_user(111)
        await create_post(storage)

        await evening.skip_schema(press(111, f"skip_schema:{POST_ID}"), POST_ID)

        post = await storage.get_interactive_post(POST_ID)
        assert post.task1_completed and not post.task2_completed
        assert sent_texts(bot)[-1].startswith(TASK2_HEADER)
        bot.edit_message_reply_markup.assert_awaited()

    async def test_skip_schema_after_positive_only_removes_keyboard(self, evening, storage, bot, make_user):
        await make_user(111)
        await create_post(storage)
        await storage.mark_task_completed(POST_ID, 1)
        await storage.mark_task_completed(POST_ID, 2)

        await evening.skip_schema(press(111, f"skip_schema:{POST_ID}"), POST_ID)

        bot.send_message.assert_not_awaited()
        bot.edit_message_reply_markup.assert_awaited_once()

    async def test_foreign_press_is_rejected(self, evening, storage, bot, make_user):
        await make_user(111)
        await create_post(storage)

        await evening.practice_done(press(222, f"pract_done:{POST_ID}"), POST_ID)

        assert sent_texts(bot) == [NOT_YOUR_POST_TEXT]
        assert not (await storage.get_interactive_post(POST_ID)).task3_completed

    async def test_practice_done_twice(self, evening, storage, bot, make_user):
        await make_user(111)
        await create_post(storage)
        for n in (1, 2):
            await storage.mark_task_completed(POST_ID, n)

        await evening.practice_done(press(111, f"pract_done:{POST_ID}"), POST_ID)
        await evening.practice_done(press(111, f"pract_done:{POST_ID}"), POST_ID)

        bot.set_message_reaction.assert_awaited_once()

    async def test_practice_delay_arms_reminder(self, evening, storage, reminders, make_user):
        await make_user(111)
        await create_post(storage)
        for n in (1, 2):
            await storage.mark_task_completed(POST_ID, n)

        await evening.practice_delay(press(111, f"pract_delay:{POST_ID}"), POST_ID)

        assert reminders.has(111)
