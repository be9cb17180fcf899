"""
Tests for the morning post dialogue.
"""

import json

import pytest

from conftest import press, sent_texts, text_message
from storage.models import MorningStep
from utils.texts import APOLOGY_TEXT, MORNING_MORE_SUFFIX, NOT_YOUR_POST_TEXT, SUPPORT_TEXTS

POST_ID = 800


@pytest.fixture
async def morning_post(storage, make_user):
    await make_user(111)
    return await storage.create_morning_post(POST_ID, 111, "Доброе утро!", reply_chat_id=111)


def analysis(count, reply="Слышу тебя"):
    return json.dumps({"emotions_count": count, "reply": reply}, ensure_ascii=False)


class TestMorningFlow:

    async def test_first_message_gets_eyes_and_button(self, router, storage, bot, morning_post):
        await router.route(text_message(111, 10, "Проснулся уставшим"))

        post = await storage.get_morning_post(POST_ID)
        assert post.step == MorningStep.WAITING_BUTTON_CLICK
        bot.set_message_reaction.assert_awaited_once()
        markup = bot.send_message.call_args.kwargs["reply_markup"]
        assert markup.inline_keyboard[0][0].callback_data == f"morning_respond:{POST_ID}"
        assert post.last_button_message_id is not None

    async def test_button_slides_under_last_message(self, router, storage, bot, morning_post):
        await router.route(text_message(111, 10, "Проснулся уставшим"))
        first_button = (await storage.get_morning_post(POST_ID)).last_button_message_id

        await router.route(text_message(111, 11, "и тревожно"))

        bot.delete_message.assert_awaited_once_with(chat_id=111, message_id=first_button)
        bot.set_message_reaction.assert_awaited_once()

    async def test_enough_emotions_completes(self, router, morning, storage, bot, llm, morning_post):
        await router.route(text_message(111, 10, "Радость, тревога и усталость"))
        llm.queue(analysis(3))

        await morning.respond(press(111, f"morning_respond:{POST_ID}"), POST_ID)

        assert (await storage.get_morning_post(POST_ID)).is_completed
        assert sent_texts(bot)[-1] == f"Слышу тебя\n\n{MORNING_MORE_SUFFIX}"

    async def test_few_emotions_asks_more_then_completes(self, router, morning, storage, bot, llm, morning_post):
        await router.route(text_message(111, 10, "Устал"))
        llm.queue(analysis(1, reply=""))
        llm.queue(analysis(1, reply="А что ты чувствуешь?"))

        # Пустой reply считается ошибкой генерации
        await morning.respond(press(111, f"morning_respond:{POST_ID}"), POST_ID)
        assert sent_texts(bot)[-1] == APOLOGY_TEXT

        await morning.respond(press(111, f"morning_respond:{POST_ID}"), POST_ID)
        assert (await storage.get_morning_post(POST_ID)).step == MorningStep.WAITING_MORE_EMOTIONS
        assert sent_texts(bot)[-1] == "А что ты чувствуешь?"

        llm.queue("Спасибо, что поделился")
        await router.route(text_message(111, 11, "Грусть и злость"))
        assert (await storage.get_morning_post(POST_ID)).is_completed
        assert sent_texts(bot)[-1] == f"Спасибо, что поделился\n\n{MORNING_MORE_SUFFIX}"

    async def test_completed_post_is_not_reentered(self, morning, storage, bot, morning_post):
        await storage.update_morning_post(POST_ID, current_step=MorningStep.COMPLETED.value)
        link = await storage.save_message_link(111, 20, "user", post_type="morning", channel_message_id=POST_ID)
        post = await storage.get_morning_post(POST_ID)

        await morning.handle_text(post, text_message(111, 20, "еще кое-что"), link)

        assert sent_texts(bot)[-1] in SUPPORT_TEXTS
        assert (await storage.get_morning_post(POST_ID)).is_completed

    async def test_stale_button(self, morning, storage, bot, morning_post):
        await morning.respond(press(111, f"morning_respond:{POST_ID}"), POST_ID)

        bot.edit_message_reply_markup.assert_awaited_once()
        bot.send_message.assert_not_awaited()

    async def test_foreign_press(self, morning, bot, morning_post):
        await morning.respond(press(222, f"morning_respond:{POST_ID}"), POST_ID)
        assert sent_texts(bot) == [NOT_YOUR_POST_TEXT]
