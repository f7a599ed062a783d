from __future__ import annotations

import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from airi.memory.store import DiskStore
from airi.protocol import PROCESSING_FAILURE
from airi.server import create_app
from airi.server.responder import CannedResponder, round_robin_chooser


@pytest.fixture
def app(tmp_path: Path, store: DiskStore, clean_env):
    responder = CannedResponder(chooser=round_robin_chooser())
    return create_app(config_path=str(tmp_path / "absent.yaml"), store=store, responder=responder)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def test_connected_is_first_message(client: TestClient):
    """The server greets every session before anything else."""
    with client.websocket_connect("/ws?user_id=alice") as ws:
        hello = ws.receive_json()
        assert hello["type"] == "connected"
        assert hello["data"]["message"] == "Connected to AIRI Backend"
        assert hello["data"]["features"] == {"voice": True, "memory": True, "openai": False, "gemini": False}


def test_ping_is_answered_with_pong(client: TestClient):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        sent_at = int(time.time() * 1000)
        ws.send_json({"type": "ping", "data": {"timestamp": sent_at}})
        reply = ws.receive_json()
        assert reply["type"] == "pong"
        assert reply["data"]["timestamp"] >= sent_at


def test_text_input_round_trip(client: TestClient, store: DiskStore):
    """input:text yields an ai_response mentioning the text, with updated memory stats."""
    with client.websocket_connect("/ws?user_id=alice") as ws:
        ws.receive_json()
        ws.send_json({"type": "input:text", "data": {"text": "Hello"}})
        reply = ws.receive_json()

    assert reply["type"] == "ai_response"
    assert "Hello" in reply["data"]["content"]
    meta = reply["data"]["metadata"]
    assert meta["provider"] == "openai"
    assert meta["memoryStats"] == {"shortTerm": 2, "longTerm": 0, "total": 2}

    conversations = store.list_conversations("alice")
    assert len(conversations) == 1
    r = client.get(f"/api/conversations/{conversations[0].id}/messages")
    assert r.status_code == 200
    assert [m["sender"] for m in r.json()["messages"]] == ["user", "airi"]


def test_malformed_frame_yields_one_error_and_session_survives(client: TestClient):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_text("this is not json")
        err = ws.receive_json()
        assert err == {"type": "error", "data": {"message": PROCESSING_FAILURE}}

        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == "pong"


def test_unexpected_kinds_are_ignored(client: TestClient):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "pong", "data": {"timestamp": 1}})
        ws.send_json({"type": "ping"})
        # The pong produced no reply, so the next frame answers the ping
        assert ws.receive_json()["type"] == "pong"


def test_authenticate_and_voice(client: TestClient):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "module:authenticate", "data": {"token": "abc"}})
        assert ws.receive_json() == {"type": "module:authenticated", "data": {"authenticated": True}}

        ws.send_json({"type": "input:voice", "data": {"audio": "..."}})
        voice = ws.receive_json()
        assert voice["type"] == "ai_response"
        assert voice["data"]["metadata"] == {"provider": "voice", "transcription": True}


def test_replies_follow_request_order(client: TestClient):
    with client.websocket_connect("/ws?user_id=bob") as ws:
        ws.receive_json()
        for word in ("one", "two", "three"):
            ws.send_json({"type": "input:text", "data": {"text": word}})
        replies = [ws.receive_json() for _ in range(3)]
    assert [r["data"]["metadata"]["memoryStats"]["shortTerm"] for r in replies] == [2, 4, 6]
    assert '"one"' in replies[0]["data"]["content"]
    assert '"three"' in replies[2]["data"]["content"]


def test_health(client: TestClient):
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "healthy"
    assert body["storage"] == "connected"
    assert body["features"]["websocket"] is True
    assert body["connections"] == 0


def test_config_reports_provider_keys(client: TestClient, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    providers = client.get("/api/config").json()["providers"]
    assert providers["openai"]["available"] is True
    assert providers["gemini"]["available"] is False


def test_tts_stub(client: TestClient):
    r = client.post("/api/tts", json={"text": "hi"})
    assert r.status_code == 200
    assert r.json()["success"] is True
    assert client.post("/api/tts", json={"text": ""}).status_code == 422


def test_memory_routes_and_promotion(client: TestClient):
    with client.websocket_connect("/ws?user_id=carol") as ws:
        ws.receive_json()
        ws.send_json({"type": "input:text", "data": {"text": "remember this"}})
        ws.receive_json()

    assert client.get("/api/memory/carol/stats").json() == {"shortTerm": 2, "longTerm": 0, "total": 2}

    memories = client.get("/api/memory/carol", params={"type": "short_term"}).json()["memories"]
    assert len(memories) == 2
    target = next(m for m in memories if m["content"] == "User: remember this")

    r = client.post(f"/api/memory/items/{target['id']}/promote")
    assert r.status_code == 200
    assert r.json()["memory"]["memory_type"] == "long_term"
    assert r.json()["stats"] == {"shortTerm": 1, "longTerm": 1, "total": 2}

    long_term = client.get("/api/memory/carol", params={"type": "long_term"}).json()["memories"]
    assert [m["id"] for m in long_term] == [target["id"]]


def test_not_found_routes(client: TestClient):
    assert client.post("/api/memory/items/nope/promote").status_code == 404
    assert client.get("/api/conversations/nope/messages").status_code == 404


def test_empty_text_still_gets_a_reply(client: TestClient):
    """An empty utterance runs the exchange like any other text."""
    with client.websocket_connect("/ws?user_id=dave") as ws:
        ws.receive_json()
        ws.send_json({"type": "input:text", "data": {"text": ""}})
        reply = ws.receive_json()
    assert reply["type"] == "ai_response"
    assert reply["data"]["metadata"]["memoryStats"]["shortTerm"] == 2


def test_voice_payload_with_nulls_is_acknowledged(client: TestClient):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "input:voice", "data": {"audio": None, "format": "webm"}})
        assert ws.receive_json()["data"]["metadata"]["provider"] == "voice"
