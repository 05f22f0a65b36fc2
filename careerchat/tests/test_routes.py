"""
HTTP API tests through FastAPI's TestClient.
"""

import pytest
from fastapi.testclient import TestClient

from careerchat.api.routes import create_app, load_profile
from careerchat.api.streaming import decode_frames
from careerchat.core.conversation_store import ConversationStore
from careerchat.core.llm_client import MockProvider
from careerchat.core.state_storage import MemoryStateStorage


REPLY = "Fit score 74/100. Tighten the supplier negotiation bullets."


@pytest.fixture
def client(db_url):
    app = create_app(
        store=ConversationStore(db_url),
        storage=MemoryStateStorage(),
        providers=[MockProvider(REPLY, streaming=True)],
    )
    with TestClient(app) as client:
        yield client


# ============================================================================
# Chat
# ============================================================================

def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_create_and_list_threads(client):
    first = client.post("/api/chat/threads", json={"title": "Toyota"}).json()["thread"]
    second = client.post("/api/chat/threads").json()["thread"]

    threads = client.get("/api/chat/threads").json()["threads"]

    assert first["title"] == "Toyota"
    assert second["title"] is None
    assert {t["id"] for t in threads} == {first["id"], second["id"]}


def test_stream_on_new_thread(client):
    response = client.post("/api/chat/threads/new/stream", json={"message": "hello"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache, no-transform"
    assert response.headers["x-accel-buffering"] == "no"

    payloads = decode_frames(response.text)
    assert payloads[0] == {"content": ""}
    assert payloads[-1] is None
    assert "".join(p["content"] for p in payloads[:-1]) == REPLY

    thread_id = response.headers["x-thread-id"]
    messages = client.get(f"/api/chat/threads/{thread_id}/messages").json()["messages"]
    assert [(m["role"], m["content"]) for m in messages] == [
        ("user", "hello"),
        ("assistant", REPLY),
    ]


def test_stream_accepts_transcript_body(client):
    thread = client.post("/api/chat/threads").json()["thread"]

    response = client.post(
        f"/api/chat/threads/{thread['id']}/stream",
        json={"messages": [{"role": "user", "content": "earlier"},
                           {"role": "user", "content": "latest"}]},
    )

    assert response.status_code == 200
    messages = client.get(f"/api/chat/threads/{thread['id']}/messages").json()["messages"]
    assert messages[0]["content"] == "latest"


def test_stream_without_message_is_400(client):
    response = client.post("/api/chat/threads/new/stream", json={})

    assert response.status_code == 400
    assert response.json()["detail"] == "Missing message"


def test_stream_on_unknown_thread_is_404(client):
    response = client.post("/api/chat/threads/nope/stream", json={"message": "hello"})

    assert response.status_code == 404
    assert response.json()["detail"] == "Thread not found: nope"


def test_messages_of_unknown_thread_are_empty(client):
    response = client.get("/api/chat/threads/nope/messages")

    assert response.status_code == 200
    assert response.json() == {"messages": []}


# ============================================================================
# Session state
# ============================================================================

def test_question_lifecycle(client):
    base = "/internal/sessions/user-joe-t1"

    assert client.post(f"{base}/questions", json={"questionId": "q1"}).json() == {"success": True}
    client.post(f"{base}/questions", json={"questionId": "q2"})
    client.post(f"{base}/answers", json={"questionId": "q1"})

    assert client.get(f"{base}/questions").json() == {"asked": ["q2"], "answered": ["q1"]}


def test_context_merge(client):
    base = "/internal/sessions/user-joe-t1"

    client.post(f"{base}/context", json={"target_role": "Purchasing Manager"})
    client.post(f"{base}/context", json={"location": "Union, KY"})

    assert client.get(f"{base}/context").json() == {
        "target_role": "Purchasing Manager",
        "location": "Union, KY",
    }


def test_state_round_trip(client):
    base = "/internal/sessions/user-joe-t1"

    client.post(f"{base}/state", json={"currentThreadId": "t1", "context": {"years": 30}})
    client.post(f"{base}/answers", json={"questionId": "relocate"})

    assert client.get(f"{base}/state").json() == {
        "currentThreadId": "t1",
        "context": {"years": 30},
        "askedQuestions": [],
        "answeredQuestions": ["relocate"],
    }


def test_sessions_are_isolated(client):
    client.post("/internal/sessions/a/context", json={"k": 1})

    assert client.get("/internal/sessions/b/context").json() == {}


def test_load_profile(tmp_path):
    path = tmp_path / "profile.json"
    path.write_text('{"name": "Joe", "years": 30}')

    assert load_profile(str(path)) == {"name": "Joe", "years": 30}
    assert load_profile(str(tmp_path / "missing.json")) == {}
    assert load_profile(None) == {}
