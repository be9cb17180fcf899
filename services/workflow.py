"""
Workflow Bridge
===============
Связь с внешним сценарием n8n.

n8n вызывает HTTP API бота:
- POST /api/register-wait - ждать ответа пользователя (resume url, шаг, сообщение)
- POST /api/send-message - отправить сообщение, при clear_session снять ожидание

Следующий ответ пользователя бот отправляет POST-запросом на resume url.
"""

import asyncio
import logging
from typing import Any, Optional

import aiohttp
from aiohttp import web
from aiogram.types import InlineKeyboardMarkup

from config import config
from services.session_store import SessionStore, WaitingSession
from services.telegram_sender import DeliveryError, TelegramSender
from utils.helpers import now_iso

logger = logging.getLogger(__name__)


class WorkflowError(Exception):
    """Ошибка возобновления сценария"""
    pass


def build_resume_url(
    resume_url: Optional[str] = None,
    execution_id: Optional[str] = None,
    webhook_suffix: Optional[str] = None,
    base_url: str = None,
) -> Optional[str]:
    """Готовый resume url или собранный из executionId и суффикса"""
    if resume_url:
        return resume_url
    if execution_id and webhook_suffix:
        base = (base_url or config.N8N_BASE_URL).rstrip("/")
        return f"{base}/webhook-waiting/{execution_id}{webhook_suffix}"
    return None


def build_resume_payload(
    chat_id: int,
    user_id: Optional[int],
    step_name: Optional[str],
    text: Optional[str] = None,
    callback_data: Optional[str] = None,
) -> dict[str, Any]:
    """Тело запроса к resume url; id передаются строками"""
    return {
        "chat_id": str(chat_id),
        "user_id": str(user_id) if user_id is not None else None,
        "text": text,
        "callback_data": callback_data,
        "message_type": "callback" if callback_data is not None else "text",
        "timestamp": now_iso(),
        "step_name": step_name,
    }


class WorkflowBridge:
    """HTTP API для n8n и возобновление ожидающих сценариев"""

    def __init__(
        self,
        sessions: SessionStore,
        sender: TelegramSender,
        timeout: float = None,
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        self.sessions = sessions
        self.sender = sender
        self.timeout = timeout or config.WORKFLOW_RESUME_TIMEOUT
        self._http = http_session
        self._runner: Optional[web.AppRunner] = None

    # ==================== ВОЗОБНОВЛЕНИЕ ====================

    async def resume(
        self,
        waiting: WaitingSession,
        user_id: Optional[int] = None,
        text: Optional[str] = None,
        callback_data: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Возобновляет сценарий ответом пользователя.

        Таймаут считается ошибкой и не повторяется.

        Raises:
            WorkflowError: n8n недоступен, ответил ошибкой или не уложился в таймаут
        """
        payload = build_resume_payload(waiting.chat_id, user_id, waiting.step_name, text, callback_data)
        logger.info(f"🔁 Возобновление сценария для чата {waiting.chat_id}, шаг {waiting.step_name}")

        # Ответ доставлен, ожидание больше не нужно
        self.sessions.clear_waiting(waiting.chat_id)

        client_timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            if self._http is not None:
                return await self._post(self._http, waiting.resume_url, payload, client_timeout)
            async with aiohttp.ClientSession() as session:
                return await self._post(session, waiting.resume_url, payload, client_timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"⏱ Таймаут возобновления сценария ({self.timeout}s): {waiting.resume_url}")
            raise WorkflowError(f"Таймаут {self.timeout}s") from e
        except aiohttp.ClientError as e:
            logger.error(f"Ошибка запроса к n8n: {e}")
            raise WorkflowError(str(e)) from e

    async def _post(
        self,
        session: aiohttp.ClientSession,
        url: str,
        payload: dict[str, Any],
        timeout: aiohttp.ClientTimeout,
    ) -> dict[str, Any]:
        async with session.post(url, json=payload, timeout=timeout) as resp:
            body = await resp.text()
            if resp.status >= 400:
                logger.error(f"n8n вернул {resp.status}: {body[:500]}")
                raise WorkflowError(f"n8n вернул {resp.status}: {body[:200]}")
            try:
                return await resp.json(content_type=None)
            except ValueError:
                return {"message": body}

    # ==================== HTTP API ====================

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/api/register-wait", self.handle_register_wait)
        app.router.add_post("/api/send-message", self.handle_send_message)
        app.router.add_get("/api/sessions", self.handle_sessions)
        app.router.add_get("/health", self.handle_health)
        return app

    async def handle_register_wait(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except ValueError:
            return web.json_response({"error": "Invalid JSON"}, status=400)

        chat_id = body.get("chatId")
        resume_url = build_resume_url(body.get("resumeUrl"), body.get("executionId"), body.get("webhookSuffix"))
        if chat_id is None or not resume_url:
            return web.json_response({"error": "chatId and resumeUrl are required"}, status=400)

        try:
            chat_id = int(chat_id)
            self.sessions.set_waiting(chat_id, resume_url, body.get("stepName"))
            logger.info(f"⏸ Сценарий ждёт ответа в чате {chat_id}, шаг {body.get('stepName')}")
            if body.get("message"):
                await self._send(chat_id, body["message"], body.get("reply_markup"))
        except (ValueError, DeliveryError) as e:
            logger.error(f"Ошибка в register-wait: {e}")
            return web.json_response({"error": "Failed to register wait state"}, status=500)

        return web.json_response({"success": True})

    async def handle_send_message(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except ValueError:
            return web.json_response({"error": "Invalid JSON"}, status=400)

        chat_id = body.get("chatId")
        if chat_id is None or not body.get("message"):
            return web.json_response({"error": "chatId and message are required"}, status=400)

        try:
            chat_id = int(chat_id)
            await self._send(chat_id, body["message"], body.get("reply_markup"))
        except (ValueError, DeliveryError) as e:
            logger.error(f"Ошибка в send-message: {e}")
            return web.json_response({"error": "Failed to send message"}, status=500)

        if body.get("clear_session"):
            self.sessions.clear_waiting(chat_id)
            self.sessions.clear_workflow_data(chat_id)
            logger.info(f"Сценарий для чата {chat_id} завершён")

        return web.json_response({"success": True})

    async def handle_sessions(self, request: web.Request) -> web.Response:
        return web.json_response({"sessions": self.sessions.stats()})

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok", "timestamp": now_iso()})

    async def _send(self, chat_id: int, text: str, reply_markup: Optional[dict] = None) -> None:
        markup = InlineKeyboardMarkup.model_validate(reply_markup) if reply_markup else None
        await self.sender.send_message(
            chat_id, text, reply_markup=markup, message_type="workflow", parse_mode="Markdown"
        )

    # ==================== ЗАПУСК ====================

    async def start(self, host: str = None, port: int = None) -> None:
        host = host or config.WORKFLOW_SERVER_HOST
        port = port or config.WORKFLOW_SERVER_PORT
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        logger.info(f"🌐 API для n8n запущен на {host}:{port}")

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
