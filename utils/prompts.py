"""
Prompts
=======
Промпты для генерации текстов и картинок.
"""

import json
from typing import Optional

SYSTEM_PROMPT = """Ты - Froggy, теплая и заботливая лягушка-помощник, которая поддерживает людей \
в ежедневной психологической практике. Пишешь на русском, коротко, на "ты", без поучений и диагнозов. \
Можно 1-2 эмодзи. Никогда не давай медицинских рекомендаций."""


def build_evening_prompt(name: Optional[str], request: Optional[str], busy: bool, busy_reason: str = "") -> str:
    """Промпт вечернего поста, ответ - JSON с четырьмя полями"""
    context = []
    if name:
        context.append(f"Имя пользователя: {name}")
    if request:
        context.append(f"Запрос пользователя к практике: {request}")
    if busy:
        context.append(
            "Сегодня у пользователя был насыщенный день"
            + (f" ({busy_reason})" if busy_reason else "")
            + ". Учти это: больше бережности, меньше требований."
        )
    context_text = "\n".join(context) if context else "Дополнительной информации нет."

    return f"""Сгенерируй вечерний пост для ежедневной практики.

{context_text}

Ответь строго JSON без пояснений:
{{
  "encouragement": "короткое теплое приветствие, 1-2 предложения",
  "negative_part": "приглашение выгрузить неприятные переживания дня, 1-2 предложения",
  "positive_part": "приглашение вспомнить хорошее за день (плюшки), 1-2 предложения",
  "emotions": "вопрос про эмоции дня, 1 предложение"
}}"""


def build_support_prompt(user_text: str) -> str:
    """Короткие слова поддержки после выгрузки негатива"""
    return f"""Человек поделился неприятными переживаниями дня:

\"\"\"{user_text[:2000]}\"\"\"

Напиши 1-2 коротких предложения поддержки: признай чувства, без советов и оценок. \
Только текст ответа, без кавычек."""


def build_joy_dedup_prompt(existing: list[str], new_items: list[str]) -> str:
    """
    Промпт исправления и дедупликации новых пунктов списка радости.

    Ответ - JSON-массив строк, которые нужно добавить.
    """
    return f"""У пользователя есть список того, что его радует и дает энергию.

Уже в списке:
{json.dumps(existing, ensure_ascii=False)}

Новые ответы пользователя:
{json.dumps(new_items, ensure_ascii=False)}

Задача:
1. Если в одном ответе перечислено несколько вещей - раздели их на отдельные пункты.
2. Исправь орфографию и опечатки, сохрани стиль и строчные буквы пользователя.
3. Убери пункты, которые по смыслу повторяют уже существующие или друг друга.

Ответь строго JSON-массивом строк без пояснений, например: ["прогулки в парке", "кофе с подругой"].
Если добавлять нечего - ответь []."""


def build_morning_greeting_prompt(name: Optional[str]) -> str:
    who = f" для {name}" if name else ""
    return f"""Напиши короткое утреннее приветствие{who}: пожелай хорошего дня и спроси, \
с каким настроением человек просыпается и что у него на душе. 2-3 предложения, 1-2 эмодзи. \
Только текст."""


def build_morning_analysis_prompt(user_messages: list[str]) -> str:
    """Анализ утреннего ответа: сколько эмоций названо и текст ответа"""
    joined = "\n".join(f"- {m}" for m in user_messages)
    return f"""Пользователь ответил на утреннее приветствие:
{joined}

Определи тон ответа и сколько разных эмоций он явно называет. Напиши теплый ответ \
в 2-3 предложения. Если эмоций названо меньше трех - в конце ответа мягко попроси \
назвать, что человек сейчас чувствует.

Ответь строго JSON без пояснений:
{{"sentiment": "positive|neutral|negative", "emotions_count": 0, "reply": "текст ответа"}}"""


def build_morning_final_prompt(user_messages: list[str]) -> str:
    joined = "\n".join(f"- {m}" for m in user_messages)
    return f"""Пользователь рассказал о своем утре и эмоциях:
{joined}

Напиши теплый поддерживающий ответ в 2-3 предложения, отрази названные эмоции, \
пожелай хорошего дня. Только текст."""


def build_angry_prompt(name: Optional[str]) -> str:
    who = name or "пользователь"
    return f"""{who} не выполнил вчерашние вечерние задания. Напиши короткий шутливо-обиженный пост \
от лица лягушки: она ждала, немного сердится, но любит и зовет вернуться к заданиям под вчерашним постом. \
2-3 предложения, 1-2 эмодзи. Без упреков и давления. Только текст."""


def build_auto_response_prompt(history: list[str], text: str) -> str:
    history_text = "\n".join(history[-10:]) if history else "нет"
    return f"""Предыдущие сообщения пользователя:
{history_text}

Новое сообщение:
\"\"\"{text[:2000]}\"\"\"

Ответь коротко и тепло, 1-3 предложения."""


EVENING_IMAGE_PROMPT = (
    "A cute cartoon frog sitting on a lily pad at dusk, cozy calm atmosphere, "
    "soft pastel colors, warm lantern light, children's book illustration"
)

ANGRY_IMAGE_PROMPT = (
    "A cute cartoon frog with a grumpy pouting face and crossed arms, "
    "soft pastel colors, funny, children's book illustration"
)

JOY_IMAGE_PROMPT = (
    "A happy cartoon frog surrounded by small glowing things it loves: tea, books, flowers, sun, "
    "soft pastel colors, children's book illustration"
)
