"""
pytest configuration and fixtures for the support bot tests.
"""

import itertools
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from handlers.angry import AngryHandler
from handlers.evening import EveningHandler
from handlers.joy import JoyHandler
from handlers.morning import MorningHandler
from services.delivery import DeliveryFanout
from services.events import ButtonPress, IncomingMessage
from services.openai_client import OpenAIError
from services.reminders import ReminderRegistry
from services.router import MessageRouter
from services.session_store import SessionStore
from services.telegram_sender import TelegramSender
from storage.database import Database, init_db
from storage.repository import Storage


class FakeLLM:
    """LLM с заранее заданными ответами"""

    def __init__(self, default: str = "Ты молодец, что поделился 💚"):
        self.default = default
        self.responses: list = []
        self.prompts: list[str] = []
        self.image_calls = 0
        self.fail = False

    def queue(self, *responses) -> None:
        self.responses.extend(responses)

    async def generate(self, prompt: str, **kwargs) -> str:
        self.prompts.append(prompt)
        if self.fail:
            raise OpenAIError("Сервис временно недоступен")
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return self.default

    async def generate_image(self, prompt: str) -> bytes:
        self.image_calls += 1
        if self.fail:
            raise OpenAIError("Сервис временно недоступен")
        return b"\x89PNG fake"


def make_bot() -> AsyncMock:
    """Bot, который возвращает сообщения с растущими message_id"""
    counter = itertools.count(1000)
    bot = AsyncMock()

    async def _sent(**kwargs):
        return SimpleNamespace(message_id=next(counter), chat=SimpleNamespace(id=kwargs.get("chat_id")))

    bot.send_message.side_effect = _sent
    bot.send_photo.side_effect = _sent
    return bot


def sent_texts(bot: AsyncMock) -> list[str]:
    return [call.kwargs["text"] for call in bot.send_message.call_args_list]


def sent_chats(bot: AsyncMock) -> list[int]:
    chats = [call.kwargs["chat_id"] for call in bot.send_message.call_args_list]
    return chats + [call.kwargs["chat_id"] for call in bot.send_photo.call_args_list]


@pytest.fixture
async def db():
    database = Database(":memory:")
    await database.connect()
    await init_db(database)
    yield database
    await database.close()


@pytest.fixture
async def storage(db):
    return Storage(db)


@pytest.fixture
def bot():
    return make_bot()


@pytest.fixture
def sender(bot):
    return TelegramSender(bot, max_attempts=3, interval=0)


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def sessions():
    return SessionStore(workflow_ttl=3600)


@pytest.fixture
async def reminders():
    registry = ReminderRegistry()
    yield registry
    registry.cancel_all()


@pytest.fixture
def fanout(sender):
    return DeliveryFanout(sender)


@pytest.fixture
def evening(storage, sender, llm, reminders):
    return EveningHandler(storage, sender, llm, reminders, reminder_delay_minutes=30, postpone_minutes=60)


@pytest.fixture
def morning(storage, sender, llm):
    return MorningHandler(storage, sender, llm)


@pytest.fixture
def angry(storage, sender, fanout, llm):
    return AngryHandler(storage, sender, fanout, llm, images_enabled=False)


@pytest.fixture
def joy(storage, sender, sessions, llm):
    return JoyHandler(storage, sender, sessions, llm, buttons_limit=10, max_attempts=2, interval=0)


@pytest.fixture
def router(storage, sessions, joy, evening, morning, angry, reminders, sender):
    return MessageRouter(
        storage=storage,
        sessions=sessions,
        joy=joy,
        evening=evening,
        morning=morning,
        angry=angry,
        reminders=reminders,
        sender=sender,
    )


@pytest.fixture
def make_user(storage):
    async def _make(chat_id: int = 111, dm_enabled: bool = True, channel_enabled: bool = False,
                    channel_id=None, gender=None, name="Аня"):
        await storage.upsert_user(chat_id, name=name)
        await storage.update_user(
            chat_id,
            dm_enabled=int(dm_enabled),
            channel_enabled=int(channel_enabled),
            channel_id=channel_id,
            gender=gender,
            timezone="Europe/Moscow",
        )
        return await storage.get_user(chat_id)

    return _make


def text_message(user_id: int, message_id: int, text: str, **kwargs) -> IncomingMessage:
    kwargs.setdefault("chat_id", user_id)
    return IncomingMessage(user_id=user_id, message_id=message_id, text=text, **kwargs)


def press(user_id: int, data: str, message_id: int = 5000, chat_id: int = None) -> ButtonPress:
    return ButtonPress(chat_id=chat_id or user_id, user_id=user_id, message_id=message_id, data=data)
