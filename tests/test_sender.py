"""
Tests for the retrying Telegram sender.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from aiogram.exceptions import TelegramBadRequest, TelegramNetworkError

from services.telegram_sender import DeliveryError, TelegramSender, is_transient_error


class TestTransientErrors:

    @pytest.mark.parametrize(
        "error, expected",
        [
            (TelegramNetworkError(method=None, message="Request timeout error"), True),
            (asyncio.TimeoutError(), True),
            (ConnectionError("ECONNRESET"), True),
            (TelegramBadRequest(method=None, message="message text is empty"), False),
            (ValueError("bad"), False),
        ],
    )
    def test_classification(self, error, expected):
        assert is_transient_error(error) is expected


class TestSendWithRetry:

    async def test_retries_network_error_then_succeeds(self):
        bot = AsyncMock()
        bot.send_message.side_effect = [
            TelegramNetworkError(method=None, message="Bad Gateway"),
            SimpleNamespace(message_id=42),
        ]
        sender = TelegramSender(bot, max_attempts=3, interval=0)

        sent = await sender.send_message(111, "привет")

        assert sent.message_id == 42
        assert bot.send_message.await_count == 2

    async def test_gives_up_after_max_attempts(self):
        bot = AsyncMock()
        bot.send_message.side_effect = TelegramNetworkError(method=None, message="Bad Gateway")
        sender = TelegramSender(bot, max_attempts=3, interval=0)

        with pytest.raises(DeliveryError):
            await sender.send_message(111, "привет")
        assert bot.send_message.await_count == 3

    async def test_non_transient_error_is_not_retried(self):
        bot = AsyncMock()
        bot.send_message.side_effect = TelegramBadRequest(method=None, message="chat not found")
        sender = TelegramSender(bot, max_attempts=3, interval=0)

        with pytest.raises(DeliveryError) as exc_info:
            await sender.send_message(111, "привет", message_type="evening_dm")
        assert bot.send_message.await_count == 1
        assert exc_info.value.message_type == "evening_dm"
        assert isinstance(exc_info.value.__cause__, TelegramBadRequest)

    async def test_on_success_called_once(self):
        sender = TelegramSender(AsyncMock(), max_attempts=2, interval=0)
        func = AsyncMock(return_value="ok")
        on_success = AsyncMock()

        assert await sender.send_with_retry(func, on_success=on_success) == "ok"
        on_success.assert_awaited_once_with("ok")

    async def test_reply_parameters_only_on_first_part(self):
        bot = AsyncMock()
        bot.send_message.return_value = SimpleNamespace(message_id=1)
        sender = TelegramSender(bot, max_attempts=1, interval=0)
        long_text = "\n\n".join(["а" * 3000, "б" * 3000])

        await sender.send_message(111, long_text, reply_to_message_id=7)

        first, second = bot.send_message.call_args_list
        assert first.kwargs["reply_parameters"].message_id == 7
        assert "reply_parameters" not in second.kwargs


class TestBestEffortCalls:

    async def test_delete_missing_message(self):
        bot = AsyncMock()
        bot.delete_message.side_effect = TelegramBadRequest(method=None, message="message to delete not found")
        assert await TelegramSender(bot).delete_message(111, 5) is False

    async def test_edit_bad_request_returns_false(self):
        bot = AsyncMock()
        bot.edit_message_text.side_effect = TelegramBadRequest(method=None, message="message is not modified")
        assert await TelegramSender(bot, max_attempts=1, interval=0).edit_text(111, 5, "текст") is False
