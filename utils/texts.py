"""
Bot Texts
=========
Тексты сообщений бота. Варианты "{м|ж}" склоняются через apply_gender.
"""

import random

# ==================== ОБЩЕЕ ====================

WELCOME_TEXT = (
    "Привет! Я лягушка-помогушка 🐸\n\n"
    "Каждый вечер я буду приходить с небольшими заданиями: выгрузить переживания, "
    "найти плюшки дня и сделать короткую практику. А утром - просто поздороваться.\n\n"
    "<b>Команды:</b>\n"
    "/joy - список того, что радует и дает энергию\n"
    "/reset - сбросить историю"
)

ERROR_TEXT = "Что-то пошло не так 😔 Попробуй еще раз или нажми /start"

APOLOGY_TEXT = "Прости, у меня сейчас не получилось ответить 🙈 Напиши мне еще раз чуть позже"

POST_NOT_FOUND_TEXT = "Не нашел это задание 🤔 Возможно, оно уже устарело"

NOT_YOUR_POST_TEXT = "Это задание для другого человека 🙂"

CHANNEL_CTA = "\n\nПереходи в комментарии и продолжим 😉"

SUPPORT_TEXTS = [
    "Спасибо, что поделился 💚",
    "Понимаю тебя 🤗",
    "Это действительно непросто 💛",
    "Ты молодец, что проговариваешь это 🌱",
    "Твои чувства важны 💙",
    "Слышу тебя 🤍",
    "Благодарю за доверие 🌿",
]


def random_support_text() -> str:
    return random.choice(SUPPORT_TEXTS)


# ==================== ВЕЧЕР ====================

EVENING_INTRO_TEXT = (
    "<b>Как это работает</b> 🐸\n\n"
    "Вечером я присылаю пост с тремя шагами:\n"
    "1. Выгрузка неприятных переживаний\n"
    "2. Плюшки для лягушки - хорошее за день\n"
    "3. Короткая практика расслабления\n\n"
    "Отвечай в свободной форме, я подскажу, что дальше."
)

TASK1_HEADER = "<b>1. Выгрузка неприятных переживаний</b>"
TASK2_HEADER = "<b>2. Плюшки для лягушки</b>"
TASK3_HEADER = "<b>3. Минутка расслабления</b>"

FALLBACK_ENCOURAGEMENT = "Привет! Как прошел твой день? Давай выдохнем вместе 🌙"
FALLBACK_NEGATIVE_PART = "Что сегодня было неприятного? Напиши все, что беспокоит или тревожит."
FALLBACK_POSITIVE_PART = "А теперь вспомни хорошее: что порадовало, получилось или просто было приятно?"
FALLBACK_EMOTIONS = "Какие эмоции ты испытывал{|а} сегодня?"

SCHEMA_TEXT = (
    "Давай <b>разложим</b> минимум одну ситуацию <b>по схеме</b>:\n"
    "🗓 Триггер - Мысли - Эмоции - Ощущения в теле - Поведение или импульс к действию"
)

PRACTICE_TEXTS = {
    "breathing": (
        "Отлично! Последний шаг - <b>дыхательная практика</b> 🫁\n\n"
        "Дыхание по квадрату: Вдох на 4 счета, задержка на 4, выдох на 4, задержка на 4. "
        "Повтори 4-5 кругов."
    ),
    "body": (
        "Отлично! Последний шаг - <b>телесная практика</b> 🧘\n\n"
        "Релаксация: по очереди напряги на 5 секунд и расслабь стопы, ноги, живот, руки, плечи и лицо. "
        "Почувствуй, как уходит напряжение."
    ),
}

PRACTICE_DONE_TEXTS = [
    "Ты {справился|справилась} со всеми заданиями! 🏆 Горжусь тобой",
    "Вот это да! Все три шага позади 🐸✨",
    "Супер! Ты {сделал|сделала} важное дело для себя сегодня 💚",
    "Молодец! Теперь можно спокойно отдыхать 🌙",
]

PRACTICE_ALREADY_DONE_TEXT = "Эта практика уже отмечена ✅"
PRACTICE_DELAY_TEXT = "⏳ Жду тебя через час"
PRACTICE_REMINDER_TEXT = "Напоминаю про практику 🐸 Как будешь готов{|а} - нажми кнопку"

INCOMPLETE_REMINDER_TEXT = (
    "Ты не закончил{|а} вечерние задания 🐸\n"
    "Возвращайся, когда будет минутка - я подожду"
)

# ==================== УТРО ====================

MORNING_FALLBACK_GREETINGS = [
    "Доброе утро! ☀️ Как ты себя чувствуешь? Расскажи, с каким настроением начинаешь день",
    "Привет-привет! 🐸 Как спалось? Что сегодня на душе?",
    "Утро доброе! 🌿 Поделись, что планируешь и как настроение",
]

MORNING_BUTTON_PROMPT = "Дописал{|а}? Тыкай на кнопку 🐸"
MORNING_MORE_SUFFIX = "Если захочешь еще чем-то поделиться - я рядом 🤗"
MORNING_EMOTIONS_QUESTION = (
    "А какие эмоции ты сейчас испытываешь? Попробуй назвать хотя бы три 💭"
)

# ==================== ЗЛОЙ ПОСТ ====================

ANGRY_FALLBACK_TEXTS = [
    "Эй! Я вчера тебя ждал, а ты так и не пришел 😤🐸\nЗагляни под вчерашний пост, задания ждут!",
    "Лягушка обиделась 😠 Вчерашние задания никто не сделал!\nДавай исправим это сегодня?",
    "Так-так-так... 🐸 Кто-то пропустил вечерние задания. Возвращайся, я не кусаюсь!",
]

ANGRY_FIRST_REPLY = "Я рад тебя слышать! 🤗\nВыполни задания под вчерашним постом ✍🏻"
ANGRY_SECOND_REPLY = "Буду ждать тебя там 🐸"

# ==================== РАДОСТЬ ====================

JOY_INTRO_TEXT = "Теперь подумай и напиши:\n\n<b>Что тебя радует и дает энергию? ❤️‍🔥</b>"
JOY_ADD_MORE_TEXT = "Напиши, что еще тебя радует и дает энергию ⚡️"
JOY_SLIDING_PROMPT = "Когда перечислишь все - нажми кнопку ниже"
JOY_NOTHING_TO_ADD = "Ты еще ничего не написал{|а} 🤔 Напиши, что тебя радует, а потом нажми кнопку"
JOY_COLLECTING_TEXT = "Froggy собирает твои ответы..."
JOY_SAVED_TEXT = "Записал{|а}! Добавлено пунктов: {count} 🔥"
JOY_NOTHING_NEW_TEXT = "Все это уже есть в твоем списке 😊"
JOY_LIST_HEADER = "<b>Мои источники радости и энергии 🤩</b>"
JOY_EMPTY_LIST_TEXT = "Список пока пуст 🌱"
JOY_HINT_TEXT = "Чтобы пополнить список, нажми кнопку «Добавить еще ⚡️» 🐸"
JOY_REMOVE_BUTTONS_TEXT = "Нажми на пункт, который хочешь убрать:"
JOY_REMOVE_NUMBERS_TEXT = (
    "Напиши номера пунктов, которые хочешь убрать, через запятую или пробел.\n"
    "Например: 2, 5 7"
)
JOY_REMOVE_CONFIRM_PROMPT = "Убрать пункты: {numbers}?"
JOY_REMOVE_NO_NUMBERS = "Не вижу номеров 🤔 Напиши номера пунктов цифрами"
JOY_REMOVED_TEXT = "Убрал{|а} пунктов: {count} ✅"
JOY_CLEAR_CONFIRM_TEXT = "Точно очистить весь список? Это действие нельзя отменить"
JOY_CLEARED_TEXT = "Список очищен 🗑"
JOY_FINISH_TEXT = "Возвращайся к списку, когда захочется подзарядиться 🔋"
JOY_WEEKLY_POST_TEXT = (
    "<b>Время радости! ❤️‍🔥</b>\n\n"
    "В твоем списке уже {total} пунктов, за неделю добавилось {added}.\n"
    "Давай пополним его?"
)

# ==================== СБРОС ====================

RESET_PROMPT_TEXT = (
    "Что сбросить?\n\n"
    "<b>Историю</b> - удалю переписку, посты и счетчики, профиль и список радости сохранятся.\n"
    "<b>Все</b> - дополнительно сотру профиль и список радости."
)
RESET_DONE_TEXT = "Готово, начинаем с чистого листа 🌱"
RESET_CANCELLED_TEXT = "Ничего не трогаю 👌"
