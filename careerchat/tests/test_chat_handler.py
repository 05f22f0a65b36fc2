"""
End-to-end exchange tests: handler, orchestrator, relay and store together.
"""

import io

import pytest

from careerchat.api.chat_handler import ChatHandler
from careerchat.api.streaming import decode_frames
from careerchat.core.exceptions import ThreadNotFoundError
from careerchat.core.llm_client import MockProvider
from careerchat.core.state_storage import MemoryStateStorage
from careerchat.examples.cli_demo import run_demo
from careerchat.services.orchestrator import ChatOrchestrator
from careerchat.services.session_state import session_key_for

from careerchat.tests.fakes import FailingStreamProvider, HangingProvider


def make_handler(store, sessions, *providers, response_timeout=30):
    orchestrator = ChatOrchestrator(store, sessions, list(providers), chunk_delay=0)
    return ChatHandler(orchestrator, store, sessions,
                       response_timeout=response_timeout, default_user_id="joe")


async def test_new_thread_records_both_messages(store, sessions):
    handler = make_handler(store, sessions, MockProvider("Hi! What role are you after?", streaming=True))

    relay = await handler.process_message("new", "hello")
    payloads = decode_frames(await relay.collect())

    text = "".join(p["content"] for p in payloads if p is not None)
    assert text == "Hi! What role are you after?"
    assert payloads[-1] is None

    messages = await store.list(relay.thread_id)
    assert [(m.role.value, m.content) for m in messages] == [
        ("user", "hello"),
        ("assistant", "Hi! What role are you after?"),
    ]


async def test_session_points_at_thread(store, sessions):
    handler = make_handler(store, sessions, MockProvider())

    relay = await handler.process_message(None, "hello", user_id="sam")
    await relay.wait()

    state = await sessions.get(session_key_for("sam", relay.thread_id)).get_state()
    assert state.current_thread_id == relay.thread_id


async def test_existing_thread_keeps_history(store, sessions):
    provider = MockProvider("ok")
    handler = make_handler(store, sessions, provider)

    first = await handler.process_message("new", "first")
    await first.wait()
    second = await handler.process_message(first.thread_id, "second")
    await second.wait()

    sent = provider.calls[-1]
    assert [m["content"] for m in sent[1:]] == ["first", "ok", "second"]
    assert len(await store.list(first.thread_id)) == 4


async def test_both_providers_failing_stores_error_reply(store, sessions):
    handler = make_handler(
        store, sessions,
        MockProvider(fail_with=RuntimeError("rate limited"), name="workers_ai"),
        MockProvider(fail_with=RuntimeError("quota exceeded"), name="gemini"),
    )

    relay = await handler.process_message("new", "hello")
    payloads = decode_frames(await relay.collect())

    error_frames = [p for p in payloads if p and p.get("error")]
    assert len(error_frames) == 1
    assert "rate limited" in error_frames[0]["content"]
    assert "quota exceeded" in error_frames[0]["content"]

    messages = await store.list(relay.thread_id)
    assert messages[-1].role.value == "assistant"
    assert messages[-1].content.startswith("Error:")


async def test_stored_reply_matches_streamed_text_after_midstream_fallback(store, sessions):
    handler = make_handler(
        store, sessions,
        FailingStreamProvider(["Scor", "ing"], ConnectionError("reset by peer")),
        MockProvider("Fit score 70/100.", name="gemini"),
    )

    relay = await handler.process_message("new", "score this")
    payloads = decode_frames(await relay.collect())

    streamed = "".join(p["content"] for p in payloads if p is not None)
    messages = await store.list(relay.thread_id)
    assert streamed == "ScoringFit score 70/100."
    assert messages[-1].content == streamed


async def test_response_timeout_fails_the_exchange(fake_store, sessions):
    handler = make_handler(fake_store, sessions, HangingProvider(), response_timeout=0.05)

    relay = await handler.process_message("new", "hello")
    payloads = decode_frames(await relay.collect())

    assert payloads[1]["error"] is True
    assert "No response from the AI model" in payloads[1]["content"]
    assert payloads[-1] is None
    assert fake_store.messages[relay.thread_id][-1].content.startswith("Error:")


async def test_missing_message_is_rejected(fake_store, sessions):
    handler = make_handler(fake_store, sessions, MockProvider())

    with pytest.raises(ValueError, match="Missing message"):
        await handler.process_message("new", "   ")
    assert fake_store.threads == {}


async def test_unknown_thread_is_rejected(fake_store, sessions):
    handler = make_handler(fake_store, sessions, MockProvider())

    with pytest.raises(ThreadNotFoundError):
        await handler.process_message("does-not-exist", "hello")


async def test_cli_demo_runs_a_conversation(db_url):
    from careerchat.core.conversation_store import ConversationStore

    store = ConversationStore(db_url)
    out = io.StringIO()
    try:
        thread_id = await run_demo(
            ["hello", "", "how about Toyota?", "quit", "ignored"],
            store, MemoryStateStorage(), [MockProvider("Sure.", streaming=True)], out=out,
        )
        messages = await store.list(thread_id)
    finally:
        await store.close()

    assert [m.content for m in messages] == ["hello", "Sure.", "how about Toyota?", "Sure."]
    assert out.getvalue().count("Sure.") == 2
