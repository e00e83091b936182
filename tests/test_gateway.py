import json

import httpx
import pytest

from shopbot.common.circuit_breaker import CircuitBreaker
from shopbot.common.exceptions import GatewayAuthError, GatewayError, GatewayUnavailable
from shopbot.gateway.client import BotGateway
from shopbot.gateway.keyboards import button, inline_keyboard


class Recorder:
    """MockTransport handler: replies from a per-method script and keeps every request body."""

    def __init__(self, script):
        self.script = script
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        self.calls.append((method, json.loads(request.content or b"{}")))
        replies = self.script[method]
        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if isinstance(reply, httpx.Response):
            return reply
        status, body = reply
        return httpx.Response(status, json=body)

    def methods(self):
        return [m for m, _ in self.calls]


def ok(result=True):
    return 200, {"ok": True, "result": result}


def fail(code, description="boom"):
    return code, {"ok": False, "error_code": code, "description": description}


def make_gateway(settings, script, **kwargs):
    recorder = Recorder(script)
    client = httpx.AsyncClient(base_url=settings.bot_api_url, transport=httpx.MockTransport(recorder))
    return BotGateway(settings, client=client, **kwargs), recorder


@pytest.mark.asyncio
async def test_send_message_payload(settings):
    gateway, recorder = make_gateway(settings, {"sendMessage": [ok({"message_id": 5})]})
    keyboard = inline_keyboard([[button("Buy", "addcart_1")]])

    result = await gateway.send_message(42, "x" * 5000, keyboard)

    assert result == {"message_id": 5}
    [(method, payload)] = recorder.calls
    assert method == "sendMessage"
    assert payload["chat_id"] == 42
    assert len(payload["text"]) == 4096
    assert payload["reply_markup"] == keyboard
    await gateway.aclose()


@pytest.mark.asyncio
async def test_requests_go_to_the_token_path(settings):
    seen = []

    def handler(request):
        seen.append(request.url.path)
        return httpx.Response(200, json={"ok": True, "result": {"id": 1}})

    client = httpx.AsyncClient(base_url=settings.bot_api_url, transport=httpx.MockTransport(handler))
    gateway = BotGateway(settings, client=client)
    await gateway.get_me()
    assert seen == [f"/bot{settings.BOT_TOKEN}/getMe"]
    await gateway.aclose()


@pytest.mark.asyncio
async def test_send_photo_falls_back_to_text(settings):
    gateway, recorder = make_gateway(settings, {
        "sendPhoto": [fail(400, "wrong file identifier")],
        "sendMessage": [ok({"message_id": 9})],
    })

    result = await gateway.send_photo(42, "bad-file", "caption text")

    assert result == {"message_id": 9}
    assert recorder.methods() == ["sendPhoto", "sendMessage"]
    assert recorder.calls[1][1]["text"] == "caption text"
    await gateway.aclose()


@pytest.mark.asyncio
async def test_server_errors_are_retried(settings):
    gateway, recorder = make_gateway(settings, {"sendMessage": [fail(500), ok({"message_id": 1})]})

    assert await gateway.send_message(42, "hi") == {"message_id": 1}
    assert recorder.methods() == ["sendMessage", "sendMessage"]
    await gateway.aclose()


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(settings):
    gateway, recorder = make_gateway(settings, {"sendMessage": [fail(403, "Forbidden: bot was blocked")]})

    with pytest.raises(GatewayError) as info:
        await gateway.send_message(42, "hi")
    assert info.value.status_code == 403
    assert info.value.method == "sendMessage"
    assert "blocked" in info.value.message
    assert len(recorder.calls) == 1
    await gateway.aclose()


@pytest.mark.asyncio
async def test_non_json_body_is_a_gateway_error(settings):
    gateway, _ = make_gateway(settings, {"sendMessage": [httpx.Response(502, text="<html>bad gateway</html>")]},
                              retry_attempts=1)
    with pytest.raises(GatewayError) as info:
        await gateway.send_message(42, "hi")
    assert info.value.status_code == 502
    await gateway.aclose()


@pytest.mark.asyncio
async def test_rejected_token_is_an_auth_error(settings):
    gateway, _ = make_gateway(settings, {"getMe": [fail(401, "Unauthorized")]})
    with pytest.raises(GatewayAuthError):
        await gateway.get_me()
    await gateway.aclose()


@pytest.mark.asyncio
async def test_open_circuit_fails_fast(settings):
    circuit = CircuitBreaker(name="test", failure_threshold=1, recovery_timeout=60)
    gateway, recorder = make_gateway(settings, {"sendMessage": [fail(500)]}, circuit=circuit, retry_attempts=1)

    with pytest.raises(GatewayError):
        await gateway.send_message(42, "hi")
    assert circuit.state == "OPEN"

    with pytest.raises(GatewayUnavailable):
        await gateway.send_message(42, "hi")
    assert len(recorder.calls) == 1
    await gateway.aclose()


@pytest.mark.asyncio
async def test_get_updates_skips_unparsable_entries(settings):
    gateway, recorder = make_gateway(settings, {"getUpdates": [ok([
        {"update_id": 10, "message": {"message_id": 1, "chat": {"id": 5}, "text": "hi"}},
        {"message": {"message_id": 2}},
        {"update_id": 11, "callback_query": {"id": "q", "from": {"id": 5}, "data": "cart_view"}},
    ])]})

    updates = await gateway.get_updates(offset=10, timeout=0)

    assert [u.update_id for u in updates] == [10, 11]
    assert updates[0].message.text == "hi"
    assert updates[1].callback_query.chat_id == 5
    assert recorder.calls[0][1] == {"offset": 10, "timeout": 0}
    await gateway.aclose()


@pytest.mark.asyncio
async def test_answer_callback_payload(settings):
    gateway, recorder = make_gateway(settings, {"answerCallbackQuery": [ok()]})
    await gateway.answer_callback("cb-1", "y" * 300, alert=True)
    payload = recorder.calls[0][1]
    assert payload == {"callback_query_id": "cb-1", "text": "y" * 200, "show_alert": True}
    await gateway.aclose()
