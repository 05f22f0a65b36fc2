"""
Tests for the SQLite-backed conversation store.
"""

import asyncio

import pytest

from careerchat.core.exceptions import ThreadNotFoundError


async def test_messages_replay_in_append_order(store):
    thread = await store.create_thread("Toyota follow-up")

    for i in range(5):
        role = "user" if i % 2 == 0 else "assistant"
        await store.append(thread.id, role, f"message {i}")

    messages = await store.list(thread.id)
    assert [m.content for m in messages] == [f"message {i}" for i in range(5)]
    assert [m.role.value for m in messages] == ["user", "assistant", "user", "assistant", "user"]
    assert all(m.thread_id == thread.id for m in messages)


async def test_append_bumps_thread_to_front(store):
    older = await store.create_thread("older")
    await asyncio.sleep(0.01)
    newer = await store.create_thread("newer")
    assert [t.id for t in await store.list_threads()] == [newer.id, older.id]

    await asyncio.sleep(0.01)
    await store.append(older.id, "user", "ping")

    threads = await store.list_threads()
    assert [t.id for t in threads] == [older.id, newer.id]
    assert threads[0].updated_at > threads[0].created_at


async def test_append_keeps_metadata(store):
    thread = await store.create_thread()

    message = await store.append(thread.id, "assistant", "hi", metadata={"provider": "gemini"})

    assert message.metadata == {"provider": "gemini"}
    assert (await store.list(thread.id))[0].metadata == {"provider": "gemini"}


async def test_append_to_unknown_thread(store):
    with pytest.raises(ThreadNotFoundError) as exc_info:
        await store.append("missing", "user", "hello")

    assert exc_info.value.message == "Thread not found: missing"


async def test_append_rejects_unknown_role(store):
    thread = await store.create_thread()

    with pytest.raises(ValueError):
        await store.append(thread.id, "narrator", "hello")


async def test_unknown_thread_lookups(store):
    assert await store.get_thread("missing") is None
    assert await store.list("missing") == []


async def test_threads_survive_reopen(db_url):
    from careerchat.core.conversation_store import ConversationStore

    first = ConversationStore(db_url)
    await first.init_models()
    thread = await first.create_thread("persisted")
    await first.append(thread.id, "user", "still here?")
    await first.close()

    second = ConversationStore(db_url)
    await second.init_models()
    try:
        assert (await second.get_thread(thread.id)).title == "persisted"
        assert [m.content for m in await second.list(thread.id)] == ["still here?"]
    finally:
        await second.close()
