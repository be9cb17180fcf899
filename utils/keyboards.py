"""
Inline Keyboards
================
Все клавиатуры бота в одном месте.
"""

from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton

from storage.models import JoySource


# ==================== EVENING ====================

def get_schema_keyboard(post_id: int) -> InlineKeyboardMarkup:
    """Кнопка пропуска разбора по схеме"""
    return InlineKeyboardMarkup(inline_keyboard=[
        [
            InlineKeyboardButton(text="Пропустить схему ➡️", callback_data=f"skip_schema:{post_id}"),
        ],
    ])


def get_practice_keyboard(post_id: int) -> InlineKeyboardMarkup:
    """Кнопки финального шага"""
    return InlineKeyboardMarkup(inline_keyboard=[
        [
            InlineKeyboardButton(text="✅ Сделал", callback_data=f"pract_done:{post_id}"),
        ],
        [
            InlineKeyboardButton(text="⏰ Отложить на 1 час", callback_data=f"pract_delay:{post_id}"),
        ],
    ])


def get_practice_reminder_keyboard(post_id: int) -> InlineKeyboardMarkup:
    """Кнопка в напоминании о практике"""
    return InlineKeyboardMarkup(inline_keyboard=[
        [
            InlineKeyboardButton(text="✅ Сделал", callback_data=f"pract_done:{post_id}"),
        ],
    ])


# ==================== MORNING ====================

def get_morning_respond_keyboard(post_id: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [
            InlineKeyboardButton(text="Ответь мне", callback_data=f"morning_respond:{post_id}"),
        ],
    ])


# ==================== JOY ====================

def get_joy_add_keyboard(session_id: int) -> InlineKeyboardMarkup:
    """Кнопка под скользящей подсказкой: сохранить написанное"""
    return InlineKeyboardMarkup(inline_keyboard=[
        [
            InlineKeyboardButton(text="Добавить 🔥", callback_data=f"joy:commit:{session_id}"),
        ],
    ])


def get_joy_menu_keyboard(session_id: int) -> InlineKeyboardMarkup:
    """Меню после сохранения"""
    return InlineKeyboardMarkup(inline_keyboard=[
        [
            InlineKeyboardButton(text="Добавить еще ⚡️", callback_data=f"joy:add:{session_id}"),
        ],
        [
            InlineKeyboardButton(text="Посмотреть список 📝", callback_data=f"joy:view:{session_id}"),
        ],
        [
            InlineKeyboardButton(text="Завершить", callback_data=f"joy:finish:{session_id}"),
        ],
    ])


def get_joy_list_keyboard(session_id: int, has_items: bool = True) -> InlineKeyboardMarkup:
    """Кнопки под списком"""
    rows = [
        [InlineKeyboardButton(text="Добавить еще ⚡️", callback_data=f"joy:add:{session_id}")],
    ]
    if has_items:
        rows.append([InlineKeyboardButton(text="Убрать лишнее 🙅🏻", callback_data=f"joy:remove:{session_id}")])
    rows.append([InlineKeyboardButton(text="Завершить", callback_data=f"joy:finish:{session_id}")])
    return InlineKeyboardMarkup(inline_keyboard=rows)


def get_joy_remove_keyboard(session_id: int, sources: list[JoySource]) -> InlineKeyboardMarkup:
    """По кнопке на каждый пункт списка"""
    rows = []
    for index, source in enumerate(sources, 1):
        label = source.text if len(source.text) <= 30 else source.text[:30] + "..."
        rows.append([
            InlineKeyboardButton(
                text=f"❌ {index}. {label}",
                callback_data=f"joy:rm_item:{session_id}:{source.id}",
            )
        ])
    rows.append([InlineKeyboardButton(text="Очистить весь список 🗑", callback_data=f"joy:clear:{session_id}")])
    rows.append([InlineKeyboardButton(text="← Назад", callback_data=f"joy:view:{session_id}")])
    return InlineKeyboardMarkup(inline_keyboard=rows)


def get_joy_remove_confirm_keyboard(session_id: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [
            InlineKeyboardButton(text="Удалить ✅", callback_data=f"joy:rm_confirm:{session_id}"),
        ],
        [
            InlineKeyboardButton(text="Очистить весь список 🗑", callback_data=f"joy:clear:{session_id}"),
        ],
        [
            InlineKeyboardButton(text="← Назад", callback_data=f"joy:view:{session_id}"),
        ],
    ])


def get_joy_clear_confirm_keyboard(session_id: int) -> InlineKeyboardMarkup:
    """Подтверждение полной очистки"""
    return InlineKeyboardMarkup(inline_keyboard=[
        [
            InlineKeyboardButton(text="Да, очистить", callback_data=f"joy:clear_yes:{session_id}"),
            InlineKeyboardButton(text="Отмена", callback_data=f"joy:view:{session_id}"),
        ],
    ])


# ==================== RESET ====================

def get_reset_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [
            InlineKeyboardButton(text="🧹 Историю", callback_data="reset:soft"),
            InlineKeyboardButton(text="🗑 Все", callback_data="reset:full"),
        ],
        [
            InlineKeyboardButton(text="Отмена", callback_data="reset:cancel"),
        ],
    ])
