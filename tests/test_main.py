"""
Tests for the HTTP layer.
The app's globals are wired to a temp ledger and a FakeAdapter; the lifespan
(config file, real providers) is never run.
Run with: pytest tests/test_main.py
"""

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

import switchboard.main as main
from conftest import FakeAdapter, completed, registry_with
from switchboard.costs import CostTracker
from switchboard.errors import ProviderError
from switchboard.adapters.base import StreamChunk
from switchboard.orchestrator import TurnOrchestrator
from switchboard.sink import SSESink
from switchboard.storage.models import Conversation, Message, User

HEADERS = {"X-User-Id": "u1"}


@pytest.fixture
def adapter():
    return FakeAdapter(completed("Hel", "lo", input_tokens=3, output_tokens=2))


@pytest.fixture
def client(store, adapter, monkeypatch):
    registry = registry_with(adapter)
    monkeypatch.setattr(main, "sqlite_store", store)
    monkeypatch.setattr(main, "registry", registry)
    monkeypatch.setattr(main, "orchestrator", TurnOrchestrator(store, registry))
    monkeypatch.setattr(main, "cost_tracker", CostTracker(store))
    return TestClient(main.app)


def _frames(response) -> list[dict]:
    return [
        json.loads(line[len("data: "):])
        for line in response.text.splitlines()
        if line.startswith("data: ")
    ]


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

def test_stream_turn(client, store, conversation):
    r = client.post(f"/api/v1/conversations/{conversation.id}/stream",
                    json={"message": "Hi"}, headers=HEADERS)

    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    assert _frames(r) == [
        {"text": "Hel"},
        {"text": "lo"},
        {"done": True, "inputTokens": 3, "outputTokens": 2, "cost": 0},
    ]
    assert [m.role for m in store.get_messages(conversation.id)] == ["user", "assistant"]


def test_stream_provider_failure_is_an_error_frame(client, adapter, store, conversation):
    adapter.chunks = [StreamChunk.delta("half")]
    adapter.error = ProviderError("HTTP 503: overloaded", provider="fake")

    r = client.post(f"/api/v1/conversations/{conversation.id}/stream",
                    json={"message": "Hi"}, headers=HEADERS)

    assert r.status_code == 200
    assert _frames(r) == [{"text": "half"}, {"error": "HTTP 503: overloaded"}]
    assert [m.role for m in store.get_messages(conversation.id)] == ["user"]


def test_stream_quota_exceeded(client, store):
    store.create_user(User(id="capped", token_limit=100, total_tokens_used=150))
    store.create_conversation(Conversation(id="cc", user_id="capped", provider="fake", model="m"))

    r = client.post("/api/v1/conversations/cc/stream", json={"message": "Hi"},
                    headers={"X-User-Id": "capped"})

    assert r.status_code == 429
    assert r.json() == {"error": "Token limit exceeded. Contact admin."}
    assert store.get_messages("cc") == []


@pytest.mark.parametrize("body,user_id,status", [
    ({"message": ""}, "u1", 400),
    ({"message": "hi", "attachments": "x"}, "u1", 400),
    ({"message": "hi"}, "stranger", 403),
])
def test_stream_preconditions(client, store, conversation, body, user_id, status):
    store.create_user(User(id="stranger"))
    r = client.post(f"/api/v1/conversations/{conversation.id}/stream", json=body,
                    headers={"X-User-Id": user_id})
    assert r.status_code == status
    assert "error" in r.json()


def test_stream_missing_conversation(client, user):
    r = client.post("/api/v1/conversations/nope/stream", json={"message": "hi"}, headers=HEADERS)
    assert r.status_code == 404


def test_stream_requires_json_object(client, conversation):
    r = client.post(f"/api/v1/conversations/{conversation.id}/stream",
                    content=b"not json", headers=HEADERS)
    assert r.status_code == 400


def test_stream_unknown_provider(client, store, user):
    store.create_conversation(Conversation(id="mx", user_id=user.id, provider="mystery", model="m"))
    r = client.post("/api/v1/conversations/mx/stream", json={"message": "hi"}, headers=HEADERS)
    assert r.status_code == 400
    assert r.json() == {"error": "Unknown provider: mystery"}


@pytest.mark.asyncio
async def test_client_disconnect_cancels_turn(store, conversation, monkeypatch):
    """Tearing down the response generator mid-stream cancels the turn."""
    adapter = FakeAdapter([StreamChunk.delta("first")], hang=True)
    orch = TurnOrchestrator(store, registry_with(adapter))
    monkeypatch.setattr(main, "orchestrator", orch)

    turn = orch.begin_turn("u1", conversation.id, "Hi")
    sink = SSESink()
    body = main._pump(turn, sink)

    assert await body.__anext__() == 'data: {"text": "first"}\n\n'
    await body.aclose()

    for _ in range(100):
        if adapter.closed:
            break
        await asyncio.sleep(0.01)

    assert adapter.closed
    assert [m.role for m in store.get_messages(conversation.id)] == ["user"]
    assert store.get_conversation(conversation.id).total_tokens == 0


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

def test_create_and_list_conversations(client, user):
    r = client.post("/api/v1/conversations",
                    json={"provider": "fake", "model": "test-model", "system_prompt": "Terse."},
                    headers=HEADERS)
    assert r.status_code == 201
    created = r.json()
    assert created["title"] == "New Chat"
    assert created["system_prompt"] == "Terse."

    r = client.get("/api/v1/conversations", headers=HEADERS)
    assert [c["id"] for c in r.json()] == [created["id"]]


def test_create_conversation_validation(client, user):
    r = client.post("/api/v1/conversations", json={"provider": "fake"}, headers=HEADERS)
    assert r.status_code == 400
    r = client.post("/api/v1/conversations", json={"provider": "nope", "model": "m"}, headers=HEADERS)
    assert r.status_code == 400
    r = client.post("/api/v1/conversations", json={"provider": "fake", "model": "m"},
                    headers={"X-User-Id": "ghost"})
    assert r.status_code == 403


def test_update_conversation(client, conversation):
    r = client.patch(f"/api/v1/conversations/{conversation.id}",
                     json={"title": "Renamed", "is_pinned": True, "total_cost": 0},
                     headers=HEADERS)
    assert r.status_code == 200
    assert r.json()["title"] == "Renamed"
    assert r.json()["is_pinned"] is True
    assert r.json()["total_cost"] == 0


def test_delete_conversation(client, store, conversation):
    r = client.delete(f"/api/v1/conversations/{conversation.id}", headers=HEADERS)
    assert r.status_code == 200
    assert store.get_conversation(conversation.id) is None

    r = client.delete(f"/api/v1/conversations/{conversation.id}", headers=HEADERS)
    assert r.status_code == 404


def test_get_messages_checks_owner(client, store, conversation):
    store.store_message(Message(conversation_id=conversation.id, role="user", content="hello"))

    r = client.get(f"/api/v1/conversations/{conversation.id}/messages", headers=HEADERS)
    assert [m["content"] for m in r.json()] == ["hello"]

    store.create_user(User(id="u2"))
    r = client.get(f"/api/v1/conversations/{conversation.id}/messages", headers={"X-User-Id": "u2"})
    assert r.status_code == 403


# ---------------------------------------------------------------------------
# Models, stats, health
# ---------------------------------------------------------------------------

def test_models_only_lists_configured_providers(client):
    # The fake provider has no catalogue entries
    assert client.get("/api/v1/models").json() == {"models": []}


def test_stats(client, store, conversation):
    store.store_message(Message(conversation_id=conversation.id, user_id="u1", role="assistant",
                                content="a", model="gpt-4o", input_tokens=5, output_tokens=5, cost=2))
    store.increment_user_usage("u1", 10, 2)

    r = client.get("/api/v1/stats", headers=HEADERS)

    assert r.status_code == 200
    body = r.json()
    assert body["total_tokens_used"] == 10
    assert body["costs"]["total"] == 2
    assert client.get("/api/v1/stats", headers={"X-User-Id": "ghost"}).status_code == 403


def test_health(client):
    body = client.get("/api/v1/health").json()
    assert body["status"] == "ok"
    assert body["providers"] == {"fake": True}
