"""
Froggy Support Bot - Telegram Bot
=================================
Бот ежедневной психологической практики: вечерний пост в три шага,
утреннее приветствие, список радости и "злой" пост для пропавших.
"""

import asyncio
import logging

from aiogram import Bot, Dispatcher, types, F
from aiogram.filters import Command, CommandObject, CommandStart
from aiogram.types import MessageOriginChannel

from config import config

# Настройка логирования
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def main():
    """Главная функция запуска бота"""

    # Проверяем конфигурацию
    errors = config.validate()
    if errors:
        for err in errors:
            logger.error(f"Config error: {err}")
        return

    # Импорты внутри async функции
    from handlers.angry import AngryHandler
    from handlers.evening import EveningHandler
    from handlers.joy import JoyHandler
    from handlers.morning import MorningHandler
    from services.admin import AdminService
    from services.bot_commands import setup_bot_commands
    from services.delivery import DeliveryFanout
    from services.events import ButtonPress, IncomingMessage
    from services.openai_client import get_openai_client
    from services.reminders import ReminderRegistry
    from services.router import MessageRouter
    from services.scheduler import Orchestrator
    from services.session_store import JoyKind, SessionStore, Surface
    from services.telegram_sender import DeliveryError, TelegramSender
    from services.workflow import WorkflowBridge
    from storage.database import Database, init_db
    from storage.repository import Storage
    from utils.helpers import hash_user_id, parse_callback
    from utils.keyboards import get_reset_keyboard
    from utils.texts import (
        ERROR_TEXT,
        RESET_CANCELLED_TEXT,
        RESET_DONE_TEXT,
        RESET_PROMPT_TEXT,
        WELCOME_TEXT,
    )

    # Инициализация
    bot = Bot(token=config.TELEGRAM_BOT_TOKEN)
    dp = Dispatcher()

    db = Database(config.DATABASE_PATH)
    await db.connect()
    await init_db(db)

    # Компоненты
    storage = Storage(db)
    sender = TelegramSender(bot)
    sessions = SessionStore()
    reminders = ReminderRegistry()
    llm = get_openai_client()
    admin_chat_id = config.ADMIN_CHAT_ID or None
    fanout = DeliveryFanout(sender, admin_chat_id=admin_chat_id)

    evening_handler = EveningHandler(storage, sender, llm, reminders)
    morning_handler = MorningHandler(storage, sender, llm)
    angry_handler = AngryHandler(storage, sender, fanout, llm, admin_chat_id=admin_chat_id)
    joy_handler = JoyHandler(storage, sender, sessions, llm)
    workflow = WorkflowBridge(sessions, sender)

    message_router = MessageRouter(
        storage=storage,
        sessions=sessions,
        joy=joy_handler,
        evening=evening_handler,
        morning=morning_handler,
        angry=angry_handler,
        reminders=reminders,
        sender=sender,
        workflow=workflow,
        llm=llm,
        auto_responses_enabled=config.AUTO_RESPONSES_ENABLED,
    )
    orchestrator = Orchestrator(
        storage=storage,
        sender=sender,
        fanout=fanout,
        llm=llm,
        router=message_router,
        joy=joy_handler,
        angry=angry_handler,
        admin_chat_id=admin_chat_id,
    )
    admin = AdminService(orchestrator, storage, sessions, reminders)

    # ==================== КОМАНДЫ ====================

    @dp.message(CommandStart())
    async def cmd_start(message: types.Message):
        """Регистрация и полный сброс эфемерных сессий"""
        user_id = message.from_user.id
        await storage.upsert_user(user_id, name=message.from_user.first_name)
        sessions.clear_user(user_id)
        reminders.clear(user_id)
        logger.info(f"/start от {hash_user_id(user_id)}")
        await message.answer(WELCOME_TEXT, parse_mode="HTML")

    @dp.message(Command("joy"))
    async def cmd_joy(message: types.Message):
        """Короткий список радости в любом чате"""
        user_id = message.from_user.id
        await storage.upsert_user(user_id, name=message.from_user.first_name)
        reply_to = message.message_id if message.chat.type != "private" else None
        await joy_handler.start(
            user_id,
            session_id=message.message_id,
            kind=JoyKind.SHORT,
            surface=Surface(message.chat.id, reply_to),
        )

    @dp.message(Command("reset"))
    async def cmd_reset(message: types.Message):
        await message.answer(RESET_PROMPT_TEXT, parse_mode="HTML", reply_markup=get_reset_keyboard())

    # ==================== АДМИН-КОМАНДЫ ====================

    def admin_target(message: types.Message, command: CommandObject):
        """user_id из аргумента команды, по умолчанию сам админ"""
        if not config.is_admin(message.from_user.id):
            return None
        arg = (command.args or "").strip()
        return int(arg) if arg.lstrip("-").isdigit() else message.from_user.id

    @dp.message(Command("evening"))
    async def cmd_evening(message: types.Message, command: CommandObject):
        user_id = admin_target(message, command)
        if user_id is None:
            return
        admin.trigger_evening(user_id)
        await message.answer(f"🌙 Вечерний пост для {user_id} запущен")

    @dp.message(Command("morning"))
    async def cmd_morning(message: types.Message, command: CommandObject):
        user_id = admin_target(message, command)
        if user_id is None:
            return
        admin.trigger_morning(user_id)
        await message.answer(f"☀️ Утренний пост для {user_id} запущен")

    @dp.message(Command("angry"))
    async def cmd_angry(message: types.Message, command: CommandObject):
        user_id = admin_target(message, command)
        if user_id is None:
            return
        admin.trigger_angry(user_id)
        await message.answer(f"😤 Злой пост для {user_id} запущен")

    @dp.message(Command("joypost"))
    async def cmd_joypost(message: types.Message, command: CommandObject):
        user_id = admin_target(message, command)
        if user_id is None:
            return
        admin.trigger_joy(user_id)
        await message.answer(f"⚡️ Пост радости для {user_id} запущен")

    @dp.message(Command("sweep"))
    async def cmd_sweep(message: types.Message):
        if not config.is_admin(message.from_user.id):
            return
        replayed = await admin.run_sweep()
        await message.answer(f"🧹 Доиграно сообщений: {replayed}")

    @dp.message(Command("status"))
    async def cmd_status(message: types.Message):
        if not config.is_admin(message.from_user.id):
            return
        await message.answer(await admin.status(), parse_mode="HTML")

    # ==================== CALLBACKS ====================

    async def run_press(callback: types.CallbackQuery, action) -> None:
        """Граница ошибок для нажатий кнопок"""
        await callback.answer()
        press = ButtonPress.from_aiogram(callback)
        try:
            await action(press)
        except Exception as e:
            logger.error(
                f"Ошибка кнопки {press.data} от {hash_user_id(press.user_id)}: {e}", exc_info=True
            )
            try:
                await sender.send_message(press.chat_id, ERROR_TEXT, message_type="error", max_attempts=1)
            except DeliveryError as send_error:
                logger.error(f"Не удалось отправить сообщение об ошибке: {send_error}")

    def post_id_of(press: ButtonPress, prefix: str) -> int:
        parts = parse_callback(press.data, prefix)
        if not parts or not parts[0].lstrip("-").isdigit():
            raise ValueError(f"Некорректная кнопка: {press.data}")
        return int(parts[0])

    @dp.callback_query(F.data.startswith("skip_schema:"))
    async def cb_skip_schema(callback: types.CallbackQuery):
        await run_press(callback, lambda p: evening_handler.skip_schema(p, post_id_of(p, "skip_schema")))

    @dp.callback_query(F.data.startswith("pract_done:"))
    async def cb_practice_done(callback: types.CallbackQuery):
        await run_press(callback, lambda p: evening_handler.practice_done(p, post_id_of(p, "pract_done")))

    @dp.callback_query(F.data.startswith("pract_delay:"))
    async def cb_practice_delay(callback: types.CallbackQuery):
        await run_press(callback, lambda p: evening_handler.practice_delay(p, post_id_of(p, "pract_delay")))

    @dp.callback_query(F.data.startswith("morning_respond:"))
    async def cb_morning_respond(callback: types.CallbackQuery):
        await run_press(callback, lambda p: morning_handler.respond(p, post_id_of(p, "morning_respond")))

    @dp.callback_query(F.data.startswith("joy:"))
    async def cb_joy(callback: types.CallbackQuery):
        async def action(press: ButtonPress):
            parts = parse_callback(press.data, "joy") or []
            if not parts:
                return
            await joy_handler.handle_button(press, parts[0], parts[1:])

        await run_press(callback, action)

    @dp.callback_query(F.data.startswith("reset:"))
    async def cb_reset(callback: types.CallbackQuery):
        async def action(press: ButtonPress):
            choice = (parse_callback(press.data, "reset") or ["cancel"])[0]
            if choice == "cancel":
                await sender.edit_text(press.chat_id, press.message_id, RESET_CANCELLED_TEXT)
                return
            await storage.reset_user(press.user_id, full=choice == "full")
            sessions.clear_user(press.user_id)
            reminders.clear(press.user_id)
            await sender.edit_text(press.chat_id, press.message_id, RESET_DONE_TEXT)

        await run_press(callback, action)

    @dp.callback_query()
    async def cb_unclaimed(callback: types.CallbackQuery):
        """Кнопки внешнего сценария"""
        async def action(press: ButtonPress):
            if not await message_router.route_unclaimed_press(press):
                logger.info(f"Кнопка {press.data} без обработчика")

        await run_press(callback, action)

    # ==================== СООБЩЕНИЯ ====================

    @dp.message(F.is_automatic_forward)
    async def handle_automatic_forward(message: types.Message):
        """Пост канала попал в группу обсуждения: запоминаем ветку"""
        origin = message.forward_origin
        if not isinstance(origin, MessageOriginChannel):
            return
        await storage.save_thread_mapping(origin.message_id, message.message_id, message.chat.id)
        logger.info(f"🧵 Пост {origin.message_id} -> ветка {message.message_id} в чате {message.chat.id}")

    @dp.message(F.text)
    async def handle_text(message: types.Message):
        await message_router.route(IncomingMessage.from_aiogram(message))

    @dp.edited_message(F.text)
    async def handle_edited_text(message: types.Message):
        await message_router.route(IncomingMessage.from_aiogram(message, is_edit=True))

    # ==================== ЗАПУСК ====================

    logger.info("🐸 Starting Froggy Support Bot...")

    try:
        await bot.delete_webhook(drop_pending_updates=False)
    except Exception as e:
        logger.warning(f"Не удалось удалить webhook: {e}")

    # Устанавливаем команды бота (меню "/" в Telegram)
    await setup_bot_commands(bot, list(config.ADMIN_IDS))

    orchestrator.start()
    if config.WORKFLOW_SERVER_ENABLED:
        await workflow.start()

    try:
        await dp.start_polling(
            bot,
            allowed_updates=dp.resolve_used_update_types(),
            close_bot_session=True
        )
    finally:
        await orchestrator.shutdown()
        await workflow.stop()
        reminders.cancel_all()
        await db.close()


if __name__ == "__main__":
    asyncio.run(main())
