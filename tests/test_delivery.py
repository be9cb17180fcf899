"""
Tests for post fan-out between channel and direct messages.
"""

import logging

import pytest
from aiogram.exceptions import TelegramForbiddenError

from conftest import make_bot
from services.delivery import DeliveryFanout, DestinationKind, plan_delivery
from services.telegram_sender import TelegramSender
from storage.models import User
from utils.texts import CHANNEL_CTA

CHANNEL_ID = -1001


def make_user(dm_enabled, channel_enabled, channel_id=CHANNEL_ID):
    return User(chat_id=111, dm_enabled=dm_enabled, channel_enabled=channel_enabled, channel_id=channel_id)


class TestPlanDelivery:

    @pytest.mark.parametrize(
        "dm, channel, expected",
        [
            (True, True, [DestinationKind.CHANNEL, DestinationKind.DM]),
            (True, False, [DestinationKind.DM]),
            (False, False, []),
            (False, True, [DestinationKind.CHANNEL]),
        ],
    )
    def test_table(self, dm, channel, expected):
        assert [d.kind for d in plan_delivery(make_user(dm, channel))] == expected

    def test_channel_without_id_is_skipped(self):
        assert plan_delivery(make_user(False, True, channel_id=None)) == []

    def test_intro_has_no_cta(self):
        destinations = plan_delivery(make_user(True, True), is_intro=True)
        assert not any(d.with_cta for d in destinations)


class TestFanout:

    async def test_cta_only_on_channel_copy(self, fanout, bot):
        report = await fanout.deliver(make_user(True, True), "Привет")

        texts = {call.kwargs["chat_id"]: call.kwargs["text"] for call in bot.send_message.call_args_list}
        assert texts[CHANNEL_ID] == "Привет" + CHANNEL_CTA
        assert texts[111] == "Привет"
        assert report.primary.destination.kind == DestinationKind.CHANNEL
        assert report.channel_message_id and report.dm_message_id

    async def test_muted_user_gets_nothing(self, fanout, bot):
        report = await fanout.deliver(make_user(False, False), "Привет")

        assert not report.delivered
        assert report.primary is None
        bot.send_message.assert_not_awaited()

    async def test_image_goes_as_photo(self, fanout, bot):
        await fanout.deliver(make_user(True, False), "Привет", image=b"png")

        bot.send_photo.assert_awaited_once()
        assert bot.send_photo.call_args.kwargs["caption"] == "Привет"
        bot.send_message.assert_not_awaited()

    async def test_long_text_drops_image_with_warning(self, fanout, bot, caplog):
        text = "Привет " * 200

        with caplog.at_level(logging.WARNING, logger="services.delivery"):
            await fanout.deliver(make_user(True, False), text, image=b"png")

        bot.send_photo.assert_not_awaited()
        assert bot.send_message.call_args.kwargs["text"] == text
        assert "без картинки" in caplog.text

    async def test_channel_permission_error_does_not_block_dm(self):
        bot = make_bot()
        dm_send = bot.send_message.side_effect

        async def send(**kwargs):
            if kwargs["chat_id"] == CHANNEL_ID:
                raise TelegramForbiddenError(method=None, message="bot is not a member of the channel chat")
            return await dm_send(**kwargs)

        bot.send_message.side_effect = send
        fanout = DeliveryFanout(TelegramSender(bot, max_attempts=2, interval=0), admin_chat_id=999)

        report = await fanout.deliver(make_user(True, True), "Привет")

        channel, dm = report.results
        assert channel.permission_denied and not channel.ok
        assert dm.ok
        assert report.primary is dm
        admin_calls = [c for c in bot.send_message.call_args_list if c.kwargs["chat_id"] == 999]
        assert len(admin_calls) == 1
