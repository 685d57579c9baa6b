from __future__ import annotations

from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from kisanmitra.config import settings
from kisanmitra.dependencies import get_dispatcher, get_link_registry, get_sender
from kisanmitra.domain_errors import ErrorKind
from kisanmitra.main import app
from kisanmitra.services.gemini import AiReply
from kisanmitra.services.linking import InMemoryLinkStore, LinkingRegistry
from kisanmitra.services.telegram_sender import SendResult
from kisanmitra.use_cases.command_dispatch import CommandDispatcher


class _SenderStub:
    def __init__(self, result: SendResult | None = None):
        self._result = result or SendResult.success()
        self.sent: list[tuple[int, str]] = []

    def send(self, chat_id, text):
        self.sent.append((chat_id, text))
        return self._result


class _GatewayStub:
    def __init__(self, reply: AiReply | None = None):
        self._reply = reply or AiReply("Try millet")
        self.calls = 0

    def complete_chat(self, history, language="en"):
        self.calls += 1
        return self._reply


class _ExplodingDispatcher:
    def handle(self, message):
        raise RuntimeError("dispatcher bug")


@pytest.fixture
def sender() -> _SenderStub:
    return _SenderStub()


@pytest.fixture
def gateway() -> _GatewayStub:
    return _GatewayStub()


@pytest.fixture
def registry() -> LinkingRegistry:
    return LinkingRegistry(InMemoryLinkStore(), code_factory=lambda: "AB12CD")


@pytest.fixture
def client(sender, gateway, registry):
    dispatcher = CommandDispatcher(sender=sender, gateway=gateway, registry=registry, product_name="Kisan Mitra")
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_sender] = lambda: sender
    app.dependency_overrides[get_link_registry] = lambda: registry
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_start_command_replies_with_welcome(client: TestClient, sender: _SenderStub) -> None:
    response = client.post("/api/v1/telegram/webhook", json={"message": {"chat": {"id": 42}, "text": "/start"}})

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert len(sender.sent) == 1
    chat_id, text = sender.sent[0]
    assert chat_id == 42
    assert "Kisan Mitra" in text


def test_ask_command_routes_through_ai(client: TestClient, sender: _SenderStub, gateway: _GatewayStub) -> None:
    response = client.post(
        "/api/v1/telegram/webhook",
        json={"update_id": 1, "message": {"chat": {"id": 7}, "text": "/ask what crop for sandy soil"}},
    )

    assert response.json() == {"ok": True}
    assert gateway.calls == 1
    chat_id, text = sender.sent[0]
    assert chat_id == 7
    assert "what crop for sandy soil" in text
    assert "Try millet" in text


def test_update_without_message_is_acknowledged_without_dispatch(client: TestClient, sender: _SenderStub) -> None:
    response = client.post("/api/v1/telegram/webhook", json={})

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert sender.sent == []


def test_non_message_update_is_ignored(client: TestClient, sender: _SenderStub) -> None:
    response = client.post(
        "/api/v1/telegram/webhook",
        json={"update_id": 5, "edited_message": {"chat": {"id": 42}, "text": "/start"}},
    )

    assert response.json() == {"ok": True}
    assert sender.sent == []


def test_message_without_text_is_acknowledged_without_reply(client: TestClient, sender: _SenderStub) -> None:
    response = client.post("/api/v1/telegram/webhook", json={"message": {"chat": {"id": 42}, "photo": []}})

    assert response.json() == {"ok": True}
    assert sender.sent == []


def test_malformed_json_returns_500(client: TestClient) -> None:
    response = client.post(
        "/api/v1/telegram/webhook",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 500
    assert "error" in response.json()


def test_message_without_chat_returns_500(client: TestClient, sender: _SenderStub) -> None:
    response = client.post("/api/v1/telegram/webhook", json={"message": {"text": "/start"}})

    assert response.status_code == 500
    assert sender.sent == []


def test_send_failure_is_absorbed(gateway, registry) -> None:
    failing_sender = _SenderStub(SendResult.failure(ErrorKind.PLATFORM_REJECTED, "HTTP_400"))
    dispatcher = CommandDispatcher(sender=failing_sender, gateway=gateway, registry=registry)
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    try:
        response = TestClient(app).post(
            "/api/v1/telegram/webhook", json={"message": {"chat": {"id": 42}, "text": "/help"}}
        )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_dispatcher_fault_is_logged_and_acknowledged() -> None:
    app.dependency_overrides[get_dispatcher] = lambda: _ExplodingDispatcher()
    try:
        response = TestClient(app).post(
            "/api/v1/telegram/webhook", json={"message": {"chat": {"id": 42}, "text": "/help"}}
        )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_webhook_secret_mismatch_is_rejected(
    client: TestClient,
    sender: _SenderStub,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(settings, "TELEGRAM_WEBHOOK_SECRET", "s3cret")
    body = {"message": {"chat": {"id": 42}, "text": "/start"}}

    rejected = client.post("/api/v1/telegram/webhook", json=body, headers={"X-Telegram-Bot-Api-Secret-Token": "nope"})
    accepted = client.post("/api/v1/telegram/webhook", json=body, headers={"X-Telegram-Bot-Api-Secret-Token": "s3cret"})

    assert rejected.status_code == 401
    assert rejected.json() == {"error": "Invalid secret"}
    assert accepted.status_code == 200
    assert len(sender.sent) == 1


def test_liveness_probe(client: TestClient) -> None:
    response = client.get("/api/v1/telegram/webhook")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "Telegram webhook active"
    datetime.fromisoformat(payload["timestamp"].replace("Z", "+00:00"))


def test_link_flow_from_bot_command_to_verification(client: TestClient, sender: _SenderStub) -> None:
    client.post(
        "/api/v1/telegram/webhook",
        json={"message": {"chat": {"id": 1001}, "from": {"id": 1001, "first_name": "Ravi"}, "text": "/link"}},
    )
    assert "AB12CD" in sender.sent[0][1]

    response = client.get("/api/v1/telegram/link", params={"code": "ab12cd", "user_id": "9"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["userId"] == "9"
    assert payload["telegramUserId"] == 1001
    assert payload["account"]["telegram_profile"]["display_name"] == "Telegram User"
    assert sender.sent[-1][0] == 1001
    assert "linked" in sender.sent[-1][1]

    again = client.get("/api/v1/telegram/link", params={"code": "AB12CD", "user_id": "10"})
    assert again.status_code == 409
    assert again.headers["content-type"].startswith("application/problem+json")
    assert again.json()["code"] == "LINK_CODE_ALREADY_CLAIMED"
    assert again.json()["error"]


def test_verify_unknown_code_returns_not_found(client: TestClient) -> None:
    response = client.get("/api/v1/telegram/link", params={"code": "ABC123", "user_id": "9"})

    assert response.status_code == 404
    assert response.json()["error"].startswith("Invalid linking code")


def test_unlink_revokes_codes(client: TestClient, registry: LinkingRegistry) -> None:
    registry.issue(1001)

    response = client.delete("/api/v1/telegram/unlink", params={"telegram_user_id": 1001})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "message": "Telegram unlinked", "revoked": 1}


class _CrashingSender:
    def send(self, chat_id, text):
        raise AttributeError("unexpected sendMessage body")


def test_verify_succeeds_when_confirmation_send_crashes(registry: LinkingRegistry) -> None:
    issued = registry.issue(1001)
    app.dependency_overrides[get_sender] = lambda: _CrashingSender()
    app.dependency_overrides[get_link_registry] = lambda: registry
    try:
        response = TestClient(app).get("/api/v1/telegram/link", params={"code": issued.code, "user_id": "9"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert response.json()["telegramUserId"] == 1001
