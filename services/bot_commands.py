"""
Bot Commands Setup
==================
Регистрация команд бота для показа в меню "/" в Telegram.
"""

import logging
from aiogram import Bot
from aiogram.exceptions import TelegramAPIError
from aiogram.types import BotCommand, BotCommandScopeDefault, BotCommandScopeChat

logger = logging.getLogger(__name__)


# Команды для всех пользователей
USER_COMMANDS = [
    BotCommand(command="start", description="🐸 Запустить бота"),
    BotCommand(command="joy", description="⚡️ Что меня радует"),
    BotCommand(command="reset", description="🔄 Начать заново"),
]

# Дополнительные команды для админов
ADMIN_COMMANDS = USER_COMMANDS + [
    BotCommand(command="evening", description="🌙 Вечерний пост сейчас"),
    BotCommand(command="morning", description="☀️ Утренний пост сейчас"),
    BotCommand(command="angry", description="😤 Злой пост сейчас"),
    BotCommand(command="joypost", description="⚡️ Пост радости сейчас"),
    BotCommand(command="sweep", description="🧹 Проверить незавершённые задания"),
    BotCommand(command="status", description="📊 Статистика"),
]


async def setup_bot_commands(bot: Bot, admin_ids: list[int]) -> None:
    """
    Устанавливает команды бота для меню "/" в Telegram.

    Args:
        bot: Экземпляр бота
        admin_ids: Список ID администраторов
    """
    try:
        await bot.set_my_commands(commands=USER_COMMANDS, scope=BotCommandScopeDefault())
        logger.info("✅ Команды бота установлены для всех пользователей")
    except TelegramAPIError as e:
        logger.error(f"❌ Ошибка установки команд бота: {e}")
        return

    for admin_id in admin_ids:
        try:
            await bot.set_my_commands(commands=ADMIN_COMMANDS, scope=BotCommandScopeChat(chat_id=admin_id))
            logger.info(f"✅ Админ-команды установлены для user_id={admin_id}")
        except TelegramAPIError as e:
            # Админ мог не начать чат с ботом
            logger.warning(f"⚠️ Не удалось установить команды для admin_id={admin_id}: {e}")
