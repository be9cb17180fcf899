"""
Tests for the n8n workflow bridge.
"""

import asyncio

import pytest
from aiohttp import web
from aiohttp import test_utils

from conftest import sent_texts
from services.workflow import WorkflowBridge, WorkflowError, build_resume_payload, build_resume_url


@pytest.fixture
def bridge(sessions, sender):
    return WorkflowBridge(sessions, sender, timeout=5)


async def start_n8n(handler):
    """Поддельный n8n с одним webhook-waiting эндпоинтом"""
    app = web.Application()
    app.router.add_post("/webhook-waiting/1", handler)
    server = test_utils.TestServer(app)
    await server.start_server()
    return server


class TestPayload:

    def test_resume_url_from_execution(self):
        url = build_resume_url(execution_id="42", webhook_suffix="/answer", base_url="http://n8n:5678/")
        assert url == "http://n8n:5678/webhook-waiting/42/answer"

    def test_explicit_resume_url_wins(self):
        assert build_resume_url("http://x/resume", "42", "/answer") == "http://x/resume"

    def test_missing_parts(self):
        assert build_resume_url(execution_id="42") is None

    def test_text_payload(self):
        payload = build_resume_payload(111, 222, "ask_name", text="Аня")
        assert payload["chat_id"] == "111"
        assert payload["user_id"] == "222"
        assert payload["message_type"] == "text"
        assert payload["callback_data"] is None
        assert payload["step_name"] == "ask_name"
        assert payload["timestamp"]

    def test_callback_payload(self):
        payload = build_resume_payload(111, 222, None, callback_data="yes")
        assert payload["message_type"] == "callback"


class TestResume:

    async def test_posts_payload_and_clears_waiting(self, bridge, sessions):
        received = []

        async def handler(request):
            received.append(await request.json())
            return web.json_response({"ok": True})

        server = await start_n8n(handler)
        try:
            waiting = sessions.set_waiting(111, str(server.make_url("/webhook-waiting/1")), "ask_name")
            result = await bridge.resume(waiting, user_id=111, text="Аня")
        finally:
            await server.close()

        assert result == {"ok": True}
        assert received[0]["text"] == "Аня"
        assert received[0]["step_name"] == "ask_name"
        assert sessions.get_waiting(111) is None

    async def test_plain_text_response(self, bridge, sessions):
        async def handler(request):
            return web.Response(text="Workflow was started")

        server = await start_n8n(handler)
        try:
            waiting = sessions.set_waiting(111, str(server.make_url("/webhook-waiting/1")))
            result = await bridge.resume(waiting, user_id=111, text="да")
        finally:
            await server.close()

        assert result == {"message": "Workflow was started"}

    async def test_error_status(self, bridge, sessions):
        async def handler(request):
            return web.Response(status=500, text="boom")

        server = await start_n8n(handler)
        try:
            waiting = sessions.set_waiting(111, str(server.make_url("/webhook-waiting/1")))
            with pytest.raises(WorkflowError):
                await bridge.resume(waiting, user_id=111, text="да")
        finally:
            await server.close()

    async def test_timeout_is_error(self, sessions, sender):
        async def handler(request):
            await asyncio.sleep(0.5)
            return web.json_response({"ok": True})

        bridge = WorkflowBridge(sessions, sender, timeout=0.05)
        server = await start_n8n(handler)
        try:
            waiting = sessions.set_waiting(111, str(server.make_url("/webhook-waiting/1")))
            with pytest.raises(WorkflowError):
                await bridge.resume(waiting, user_id=111, text="да")
        finally:
            await server.close()


class TestHttpApi:

    async def test_register_wait_sends_message(self, bridge, sessions, bot):
        async with test_utils.TestClient(test_utils.TestServer(bridge.create_app())) as client:
            resp = await client.post("/api/register-wait", json={
                "chatId": "111",
                "executionId": "42",
                "webhookSuffix": "/answer",
                "stepName": "ask_name",
                "message": "Как тебя зовут?",
                "reply_markup": {"inline_keyboard": [[{"text": "Пропустить", "callback_data": "skip"}]]},
            })
            assert resp.status == 200

        waiting = sessions.get_waiting(111)
        assert waiting.resume_url.endswith("/webhook-waiting/42/answer")
        assert waiting.step_name == "ask_name"
        assert sent_texts(bot) == ["Как тебя зовут?"]
        call = bot.send_message.call_args
        assert call.kwargs["parse_mode"] == "Markdown"
        assert call.kwargs["reply_markup"].inline_keyboard[0][0].callback_data == "skip"

    async def test_register_wait_requires_resume_url(self, bridge):
        async with test_utils.TestClient(test_utils.TestServer(bridge.create_app())) as client:
            resp = await client.post("/api/register-wait", json={"chatId": 111})
            assert resp.status == 400

    async def test_send_message_clear_session(self, bridge, sessions, bot):
        sessions.set_waiting(111, "http://n8n/resume")
        sessions.set_workflow_data(111, {"name": "Аня"})

        async with test_utils.TestClient(test_utils.TestServer(bridge.create_app())) as client:
            resp = await client.post("/api/send-message", json={
                "chatId": 111, "message": "Готово!", "clear_session": True,
            })
            assert resp.status == 200

        assert sessions.get_waiting(111) is None
        assert sessions.get_workflow_data(111) == {}
        assert sent_texts(bot) == ["Готово!"]

    async def test_invalid_json(self, bridge):
        async with test_utils.TestClient(test_utils.TestServer(bridge.create_app())) as client:
            resp = await client.post("/api/send-message", data="not json")
            assert resp.status == 400

    async def test_health(self, bridge):
        async with test_utils.TestClient(test_utils.TestServer(bridge.create_app())) as client:
            resp = await client.get("/health")
            assert (await resp.json())["status"] == "ok"
