"""
Вспомогательные утилиты
=======================
Время, разбор ответов LLM, склонение по полу и прочие мелочи.
"""

import re
import json
import hashlib
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import config

logger = logging.getLogger(__name__)

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


def hash_user_id(user_id: int) -> str:
    """Хеширует user_id для логов (приватность)"""
    return hashlib.sha256(str(user_id).encode()).hexdigest()[:8]


# ==================== ВРЕМЯ ====================

def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """UTC-время в строку фиксированного формата (сравнимую как строку)"""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.strftime(ISO_FORMAT)


def now_iso() -> str:
    return to_iso(now_utc())


def parse_iso(value: str) -> datetime:
    """Обратное к to_iso, возвращает aware datetime в UTC"""
    try:
        dt = datetime.strptime(value, ISO_FORMAT)
    except ValueError:
        dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def get_zone(tz_name: Optional[str]) -> ZoneInfo:
    """Часовой пояс пользователя, при ошибке - пояс по умолчанию"""
    try:
        return ZoneInfo(tz_name or config.DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Неизвестный часовой пояс {tz_name!r}, используем {config.DEFAULT_TIMEZONE}")
        return ZoneInfo(config.DEFAULT_TIMEZONE)


def local_now(tz_name: Optional[str]) -> datetime:
    return now_utc().astimezone(get_zone(tz_name))


def local_date(tz_name: Optional[str]) -> str:
    """Дата пользователя в формате YYYY-MM-DD"""
    return local_now(tz_name).strftime("%Y-%m-%d")


def start_of_local_day(tz_name: Optional[str]) -> str:
    """Начало текущих суток пользователя в UTC-строке"""
    local = local_now(tz_name)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return to_iso(midnight)


def parse_hhmm(value: str) -> tuple[int, int]:
    hours, minutes = value.split(":")
    return int(hours), int(minutes)


# ==================== LLM ====================

def is_llm_error(text: Optional[str]) -> bool:
    """Проверяет, что ответ генерации - маркер ошибки или пустота"""
    if text is None:
        return True
    stripped = text.strip()
    return not stripped or stripped == config.LLM_ERROR_SENTINEL


def extract_json(text: str) -> Optional[Any]:
    """
    Достаёт JSON из ответа модели.

    Модель иногда заворачивает JSON в ```json ... ``` или добавляет текст вокруг,
    поэтому берём первый объект или массив.

    Returns:
        dict / list или None, если разобрать не удалось
    """
    if is_llm_error(text):
        return None

    cleaned = re.sub(r"```(?:json)?", "", text).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    match = re.search(r"(\{.*\}|\[.*\])", cleaned, re.DOTALL)
    if not match:
        return None
    try:
        return json.loads(match.group(1))
    except json.JSONDecodeError:
        return None


# ==================== ТЕКСТ ====================

_GENDER_PATTERN = re.compile(r"\{([^{}|]*)\|([^{}|]*)\}")


def apply_gender(text: str, gender: Optional[str]) -> str:
    """
    Склоняет текст по полу: "{сделал|сделала}" -> вариант для пола.

    Пол не указан - мужской вариант, как в остальных текстах бота.
    """
    use_female = (gender or "").lower() in ("female", "f", "ж", "женский")
    return _GENDER_PATTERN.sub(lambda m: m.group(2) if use_female else m.group(1), text)


def parse_numbers(text: str) -> list[int]:
    """Достаёт положительные номера пунктов из текста: "1, 3 5" -> [1, 3, 5]"""
    numbers = []
    for raw in re.findall(r"\d+", text):
        value = int(raw)
        if value > 0 and value not in numbers:
            numbers.append(value)
    return numbers


def split_long_message(text: str, max_length: int = None) -> list[str]:
    """Разбивает длинное сообщение на части"""
    max_length = max_length or config.MAX_MESSAGE_LENGTH

    if len(text) <= max_length:
        return [text]

    parts = []
    current_part = ""

    for paragraph in text.split("\n\n"):
        if len(current_part) + len(paragraph) + 2 <= max_length:
            if current_part:
                current_part += "\n\n"
            current_part += paragraph
            continue

        if current_part:
            parts.append(current_part)

        if len(paragraph) > max_length:
            current_part = ""
            for sentence in paragraph.replace(". ", ".|").split("|"):
                if len(current_part) + len(sentence) + 1 <= max_length:
                    current_part += sentence
                else:
                    if current_part:
                        parts.append(current_part)
                    current_part = sentence[:max_length]
        else:
            current_part = paragraph

    if current_part:
        parts.append(current_part)

    return parts


def parse_callback(data: str, prefix: str) -> Optional[list[str]]:
    """
    Разбирает callback_data вида "prefix:a:b".

    Returns:
        Части после префикса или None, если префикс не совпал
    """
    if not data or not data.startswith(f"{prefix}:"):
        return None
    return data[len(prefix) + 1:].split(":")
