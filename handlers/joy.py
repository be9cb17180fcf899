"""
Joy Handler
===========
Список "что меня радует и дает энергию".

Один обработчик для обоих вариантов: короткий /joy в любом чате и
еженедельный пост в канале. Вариант задаёт JoyKind (стратегия ключа сессии),
место ответа задаёт Surface.

Режимы сессии:
- добавление: сообщения копятся в буфере, под последним висит кнопка "Добавить 🔥";
- удаление по номерам (если пунктов больше лимита кнопок): номера копятся по id
  сообщений и сводятся к позициям текущего списка в момент подтверждения;
- просмотр / ожидание: на первое сообщение - подсказка нажать кнопку.
"""

import logging
from typing import Optional

from config import config
from services.events import ButtonPress, IncomingMessage
from services.openai_client import OpenAIError
from services.session_store import JoyKind, JoySession, RemovalSession, SessionStore, Surface
from services.telegram_sender import TelegramSender
from storage.models import JoySource
from storage.repository import Storage
from utils.helpers import apply_gender, extract_json, hash_user_id, parse_numbers
from utils.keyboards import (
    get_joy_add_keyboard,
    get_joy_clear_confirm_keyboard,
    get_joy_list_keyboard,
    get_joy_menu_keyboard,
    get_joy_remove_confirm_keyboard,
    get_joy_remove_keyboard,
)
from utils.prompts import build_joy_dedup_prompt
from utils.texts import (
    JOY_ADD_MORE_TEXT,
    JOY_CLEAR_CONFIRM_TEXT,
    JOY_CLEARED_TEXT,
    JOY_COLLECTING_TEXT,
    JOY_EMPTY_LIST_TEXT,
    JOY_FINISH_TEXT,
    JOY_HINT_TEXT,
    JOY_INTRO_TEXT,
    JOY_LIST_HEADER,
    JOY_NOTHING_NEW_TEXT,
    JOY_NOTHING_TO_ADD,
    JOY_REMOVE_BUTTONS_TEXT,
    JOY_REMOVE_CONFIRM_PROMPT,
    JOY_REMOVE_NO_NUMBERS,
    JOY_REMOVE_NUMBERS_TEXT,
    JOY_REMOVED_TEXT,
    JOY_SAVED_TEXT,
    JOY_SLIDING_PROMPT,
)

logger = logging.getLogger(__name__)

SOURCE_MANUAL = "manual"


def naive_dedup(candidates: list[str], existing: list[str]) -> list[str]:
    """Убирает точные повторы без учёта регистра - и со списком, и внутри новых"""
    seen = {item.strip().lower() for item in existing}
    result = []
    for candidate in candidates:
        text = candidate.strip()
        key = text.lower()
        if not key or key in seen:
            continue
        seen.add(key)
        result.append(text)
    return result


def format_joy_list(sources: list[JoySource]) -> str:
    """Нумерованный список; от 5 пунктов - группы по 3 через пустую строку"""
    if not sources:
        return f"{JOY_LIST_HEADER}\n\n{JOY_EMPTY_LIST_TEXT}"

    lines = [JOY_LIST_HEADER, ""]
    grouped = len(sources) >= 5
    for index, source in enumerate(sources, 1):
        lines.append(f"{index} ⚡️ {source.text}")
        if grouped and index % 3 == 0 and index != len(sources):
            lines.append("")
    return "\n".join(lines)


def resolve_positions(sources: list[JoySource], numbers: list[int]) -> list[int]:
    """Номера (с 1) -> id пунктов по текущему порядку; лишние номера игнорируются"""
    ids = []
    for number in numbers:
        if 1 <= number <= len(sources):
            source_id = sources[number - 1].id
            if source_id not in ids:
                ids.append(source_id)
    return ids


class JoyHandler:
    """Накопление и редактирование списка радости"""

    def __init__(
        self,
        storage: Storage,
        sender: TelegramSender,
        sessions: SessionStore,
        llm,
        buttons_limit: int = None,
        max_attempts: int = None,
        interval: float = None,
    ):
        self.storage = storage
        self.sender = sender
        self.sessions = sessions
        self.llm = llm
        self.buttons_limit = buttons_limit or config.JOY_BUTTONS_LIMIT
        self.max_attempts = max_attempts or config.JOY_SEND_MAX_ATTEMPTS
        self.interval = interval if interval is not None else config.JOY_SEND_RETRY_INTERVAL

    # ==================== СЕССИЯ ====================

    async def start(self, user_id: int, session_id: int, kind: JoyKind, surface: Surface) -> JoySession:
        """Открывает сессию: есть список - показывает его, нет - просит написать"""
        session = JoySession(user_id=user_id, session_id=session_id, kind=kind, surface=surface)
        self.sessions.set_joy_session(session)

        sources = await self.storage.get_joy_sources(user_id)
        if sources:
            await self.view(session)
        else:
            await self.start_accumulation(session, intro=True)
        return session

    def active_session(self, user_id: int) -> Optional[JoySession]:
        return self.sessions.get_joy_session(user_id)

    async def session_for_press(self, press: ButtonPress, session_id: int) -> JoySession:
        """
        Сессия для нажатой кнопки; после рестарта восстанавливается по кнопке.
        Id еженедельного поста радости лежит в user_daily_posts - так
        восстанавливается вариант сессии и её ключ.
        """
        session = self.sessions.get_joy_session(press.user_id)
        if session is not None and session.session_id == session_id:
            return session

        is_weekly = await self.storage.is_daily_post_message(press.user_id, "joy", session_id)
        kind = JoyKind.WEEKLY if is_weekly else JoyKind.SHORT
        if session is not None:
            logger.info(f"Кнопка старой joy-сессии {session_id}, активная была {session.key}")
        restored = JoySession(
            user_id=press.user_id,
            session_id=session_id,
            kind=kind,
            surface=Surface(press.chat_id, press.message_id if press.thread_id else None),
        )
        self.sessions.set_joy_session(restored)
        return restored

    async def finish(self, session: JoySession) -> None:
        old_button = self.sessions.pop_last_button(session.key)
        if old_button:
            await self.sender.remove_keyboard(session.surface.chat_id, old_button)
        self.sessions.delete_joy_session(session.user_id)
        await self._send(session, JOY_FINISH_TEXT)

    # ==================== ДОБАВЛЕНИЕ ====================

    async def start_accumulation(self, session: JoySession, intro: bool = False) -> None:
        key = session.key
        self.sessions.set_adding(key, True)
        self.sessions.delete_removal(key)
        await self._send(session, JOY_INTRO_TEXT if intro else JOY_ADD_MORE_TEXT)

    async def handle_text(self, session: JoySession, message: IncomingMessage) -> None:
        """Свободный текст пользователя при активной сессии"""
        key = session.key

        removal = self.sessions.get_removal(key)
        if removal is not None:
            await self._handle_removal_numbers(session, removal, message)
            return

        if self.sessions.is_adding(key):
            is_new = self.sessions.put_pending(key, message.message_id, message.text)
            logger.info(
                f"Joy {key}: {'новый' if is_new else 'исправленный'} фрагмент, "
                f"в буфере {len(self.sessions.get_pending(key))}"
            )
            if is_new:
                await self._slide_prompt(session, message.message_id)
            return

        if not session.hint_sent:
            session.hint_sent = True
            await self._send(
                session, JOY_HINT_TEXT,
                reply_markup=get_joy_menu_keyboard(session.session_id),
                reply_to=message.message_id,
            )

    async def _slide_prompt(self, session: JoySession, reply_to: int) -> None:
        """Оставляет видимой только одну подсказку с кнопкой - под последним сообщением"""
        old_button = self.sessions.pop_last_button(session.key)
        if old_button:
            await self.sender.delete_message(session.surface.chat_id, old_button)
        sent = await self._send(
            session, JOY_SLIDING_PROMPT,
            reply_markup=get_joy_add_keyboard(session.session_id),
            reply_to=reply_to,
        )
        self.sessions.set_last_button(session.key, sent.message_id)

    async def commit(self, session: JoySession) -> int:
        """
        Сохраняет накопленные ответы.

        Returns:
            Количество новых пунктов
        """
        key = session.key
        gender = await self._gender(session.user_id)
        fragments = [f for f in self.sessions.pop_pending(key) if f.strip()]

        if not fragments:
            await self._send(session, apply_gender(JOY_NOTHING_TO_ADD, gender))
            return 0

        old_button = self.sessions.pop_last_button(key)
        if old_button:
            await self.sender.delete_message(session.surface.chat_id, old_button)

        status = await self._send(session, JOY_COLLECTING_TEXT)

        existing = [source.text for source in await self.storage.get_joy_sources(session.user_id)]
        new_items = await self._dedup(existing, fragments)
        saved = await self.storage.add_joy_sources(session.user_id, new_items, SOURCE_MANUAL)
        if saved:
            await self.storage.update_joy_checkpoint(session.user_id)
        self.sessions.set_adding(key, False)
        logger.info(
            f"Joy {key}: пользователь {hash_user_id(session.user_id)} сохранил {saved} из {len(fragments)}"
        )

        await self.sender.delete_message(session.surface.chat_id, status.message_id)
        text = apply_gender(JOY_SAVED_TEXT, gender).format(count=saved) if saved else JOY_NOTHING_NEW_TEXT
        await self._send(session, text, reply_markup=get_joy_menu_keyboard(session.session_id))
        return saved

    async def _dedup(self, existing: list[str], fragments: list[str]) -> list[str]:
        """Исправление и смысловая дедупликация через LLM, при сбое - точное совпадение"""
        items: Optional[list[str]] = None
        try:
            raw = await self.llm.generate(build_joy_dedup_prompt(existing, fragments))
        except OpenAIError as e:
            logger.warning(f"LLM недоступна, дедупликация по точному совпадению: {e}")
            raw = None

        parsed = extract_json(raw) if raw else None
        if isinstance(parsed, list):
            items = [str(item).strip() for item in parsed if str(item).strip()]
        else:
            logger.warning("Ответ дедупликации не разобран, используем точное совпадение")
            items = fragments

        # Финальная страховка от точных повторов
        return naive_dedup(items, existing)

    # ==================== ПРОСМОТР ====================

    async def view(self, session: JoySession) -> None:
        key = session.key
        self.sessions.set_adding(key, False)
        self.sessions.delete_removal(key)
        session.hint_sent = False

        sources = await self.storage.get_joy_sources(session.user_id)
        await self._send(
            session,
            format_joy_list(sources),
            reply_markup=get_joy_list_keyboard(session.session_id, has_items=bool(sources)),
        )

    # ==================== УДАЛЕНИЕ ====================

    async def remove(self, session: JoySession) -> None:
        """Кнопки на каждый пункт или, для длинного списка, удаление по номерам"""
        key = session.key
        sources = await self.storage.get_joy_sources(session.user_id)
        if not sources:
            await self.view(session)
            return

        self.sessions.set_adding(key, False)
        if len(sources) <= self.buttons_limit:
            await self._send(
                session, JOY_REMOVE_BUTTONS_TEXT,
                reply_markup=get_joy_remove_keyboard(session.session_id, sources),
            )
            return

        sent = await self._send(session, f"{format_joy_list(sources)}\n\n{JOY_REMOVE_NUMBERS_TEXT}")
        self.sessions.start_removal(key, sent.message_id)

    async def remove_item(self, session: JoySession, source_id: int, press: ButtonPress) -> None:
        deleted = await self.storage.delete_joy_sources(session.user_id, [source_id])
        if deleted:
            await self.storage.update_joy_checkpoint(session.user_id)
        logger.info(f"Joy {session.key}: удалён пункт {source_id} ({deleted})")

        sources = await self.storage.get_joy_sources(session.user_id)
        if not sources:
            await self.sender.remove_keyboard(press.chat_id, press.message_id)
            await self.start_accumulation(session, intro=True)
            return

        await self.sender.edit_text(
            press.chat_id,
            press.message_id,
            JOY_REMOVE_BUTTONS_TEXT,
            reply_markup=get_joy_remove_keyboard(session.session_id, sources),
        )

    async def _handle_removal_numbers(self, session: JoySession, removal: RemovalSession, message: IncomingMessage) -> None:
        numbers = parse_numbers(message.text)
        if numbers:
            removal.numbers_by_message[message.message_id] = numbers
        elif message.message_id in removal.numbers_by_message:
            # Правка убрала все номера из сообщения
            del removal.numbers_by_message[message.message_id]
        else:
            await self._send(session, JOY_REMOVE_NO_NUMBERS, reply_to=message.message_id)
            return

        all_numbers = removal.all_numbers()
        old_button = self.sessions.pop_last_button(session.key)
        if old_button:
            await self.sender.delete_message(session.surface.chat_id, old_button)
        if not all_numbers:
            return

        sent = await self._send(
            session,
            JOY_REMOVE_CONFIRM_PROMPT.format(numbers=", ".join(str(n) for n in all_numbers)),
            reply_markup=get_joy_remove_confirm_keyboard(session.session_id),
            reply_to=message.message_id,
        )
        self.sessions.set_last_button(session.key, sent.message_id)

    async def confirm_removal(self, session: JoySession) -> int:
        """
        Удаляет пункты по накопленным номерам.

        Номера сводятся к позициям списка на момент подтверждения.

        Returns:
            Количество удалённых пунктов
        """
        key = session.key
        removal = self.sessions.get_removal(key)
        if removal is None or not removal.all_numbers():
            await self.view(session)
            return 0

        sources = await self.storage.get_joy_sources(session.user_id)
        ids = resolve_positions(sources, removal.all_numbers())
        deleted = await self.storage.delete_joy_sources(session.user_id, ids)
        if deleted:
            await self.storage.update_joy_checkpoint(session.user_id)

        self.sessions.delete_removal(key)
        old_button = self.sessions.pop_last_button(key)
        if old_button:
            await self.sender.remove_keyboard(session.surface.chat_id, old_button)

        gender = await self._gender(session.user_id)
        await self._send(session, apply_gender(JOY_REMOVED_TEXT, gender).format(count=deleted))
        await self.view(session)
        return deleted

    async def clear_prompt(self, session: JoySession) -> None:
        await self._send(
            session, JOY_CLEAR_CONFIRM_TEXT,
            reply_markup=get_joy_clear_confirm_keyboard(session.session_id),
        )

    async def clear_all(self, session: JoySession) -> int:
        deleted = await self.storage.clear_joy_sources(session.user_id)
        await self.storage.update_joy_checkpoint(session.user_id)
        self.sessions.delete_removal(session.key)
        logger.info(f"Joy {session.key}: список очищен ({deleted})")
        await self._send(session, JOY_CLEARED_TEXT)
        await self.start_accumulation(session, intro=True)
        return deleted

    # ==================== КНОПКИ ====================

    async def handle_button(self, press: ButtonPress, action: str, args: list[str]) -> None:
        """
        Кнопки вида joy:<action>:<session_id>[:<source_id>].

        Args:
            press: Нажатие
            action: Действие
            args: Аргументы после действия
        """
        if not args or not args[0].lstrip("-").isdigit():
            logger.warning(f"Некорректная joy-кнопка: {press.data}")
            return
        session = await self.session_for_press(press, int(args[0]))

        if action == "commit":
            await self.commit(session)
        elif action == "add":
            await self.sender.remove_keyboard(press.chat_id, press.message_id)
            await self.start_accumulation(session)
        elif action == "view":
            await self.view(session)
        elif action == "remove":
            await self.remove(session)
        elif action == "rm_item" and len(args) > 1 and args[1].isdigit():
            await self.remove_item(session, int(args[1]), press)
        elif action == "rm_confirm":
            await self.confirm_removal(session)
        elif action == "clear":
            await self.clear_prompt(session)
        elif action == "clear_yes":
            await self.sender.remove_keyboard(press.chat_id, press.message_id)
            await self.clear_all(session)
        elif action == "finish":
            await self.sender.remove_keyboard(press.chat_id, press.message_id)
            await self.finish(session)
        else:
            logger.warning(f"Неизвестное joy-действие: {press.data}")

    # ==================== ОБЩЕЕ ====================

    async def _send(self, session: JoySession, text: str, reply_markup=None, reply_to: Optional[int] = None):
        return await self.sender.send_message(
            session.surface.chat_id,
            text,
            reply_to_message_id=reply_to or session.surface.reply_to_message_id,
            reply_markup=reply_markup,
            message_type=f"joy_{session.kind.value}",
            max_attempts=self.max_attempts,
            interval=self.interval,
        )

    async def _gender(self, user_id: int) -> Optional[str]:
        user = await self.storage.get_user(user_id)
        return user.gender if user else None
