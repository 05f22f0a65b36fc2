"""
Tests for the chat stream relay and its wire format.
"""

import asyncio

from careerchat.api.streaming import (
    GENERIC_ERROR, TERMINAL_FRAME, StreamRelay, decode_frames,
    drain_background_tasks, encode_chunk_frame
)
from careerchat.core.schemas import ChatResult


def exchange_returning(*chunks, delay=0.0):
    async def exchange(on_chunk):
        for chunk in chunks:
            if delay:
                await asyncio.sleep(delay)
            on_chunk(chunk)
        return ChatResult(content="".join(chunks), provider="mock")
    return exchange


def exchange_raising(error, *chunks):
    async def exchange(on_chunk):
        for chunk in chunks:
            on_chunk(chunk)
        raise error
    return exchange


# ============================================================================
# Wire format
# ============================================================================

def test_chunk_frame_format():
    assert encode_chunk_frame("Hi") == '0:{"content":"Hi"}\n'
    assert encode_chunk_frame("") == '0:{"content":""}\n'
    assert encode_chunk_frame("Error: boom", error=True) == '0:{"content":"Error: boom","error":true}\n'
    assert TERMINAL_FRAME == "d:[DONE]\n"


def test_chunk_frame_escapes_newlines_and_quotes():
    frame = encode_chunk_frame('line one\nsaid "yes"')

    assert frame.count("\n") == 1
    assert decode_frames(frame) == [{"content": 'line one\nsaid "yes"'}]


def test_decode_frames():
    body = '0:{"content":""}\n0:{"content":"Hi"}\nd:[DONE]\n'

    assert decode_frames(body) == [{"content": ""}, {"content": "Hi"}, None]


# ============================================================================
# Relay
# ============================================================================

async def test_success_sequence_persists_before_terminal_frame(fake_store):
    thread = await fake_store.create_thread()
    relay = StreamRelay(exchange_returning("Hi", " there"), fake_store, thread.id)

    frames = [frame async for frame in relay.frames()]

    assert frames == [
        '0:{"content":""}\n',
        '0:{"content":"Hi"}\n',
        '0:{"content":" there"}\n',
        TERMINAL_FRAME,
    ]
    stored = fake_store.messages[thread.id]
    assert [(m.role.value, m.content) for m in stored] == [("assistant", "Hi there")]
    assert relay.content == "Hi there"
    assert relay.error is None


async def test_failure_sequence(fake_store):
    thread = await fake_store.create_thread()
    relay = StreamRelay(
        exchange_raising(RuntimeError("Primary model (a) error: x. Fallback model (b) also failed: y")),
        fake_store, thread.id,
    )

    payloads = decode_frames(await relay.collect())

    assert payloads[0] == {"content": ""}
    assert payloads[1]["error"] is True
    assert payloads[1]["content"].startswith("Error: Primary model")
    assert payloads[-1] is None
    assert payloads.count(None) == 1
    assert fake_store.messages[thread.id][0].content == payloads[1]["content"]


async def test_error_without_message_uses_generic_text(fake_store):
    thread = await fake_store.create_thread()
    relay = StreamRelay(exchange_raising(RuntimeError()), fake_store, thread.id)

    payloads = decode_frames(await relay.collect())

    assert payloads[1]["content"] == f"Error: {GENERIC_ERROR}"


async def test_persistence_failure_still_terminates(fake_store):
    thread = await fake_store.create_thread()
    fake_store.fail_appends_for_role = "assistant"
    relay = StreamRelay(exchange_returning("Hi"), fake_store, thread.id)

    payloads = decode_frames(await relay.collect())

    assert payloads == [{"content": ""}, {"content": "Hi"}, None]
    assert fake_store.messages[thread.id] == []


async def test_disconnect_does_not_stop_persistence(fake_store):
    thread = await fake_store.create_thread()
    relay = StreamRelay(exchange_returning("a", "b", "c", delay=0.01), fake_store, thread.id)

    frames = relay.frames()
    first = await frames.__anext__()
    await frames.aclose()
    await relay.wait()

    assert first == '0:{"content":""}\n'
    assert fake_store.messages[thread.id][0].content == "abc"


async def test_drain_waits_for_running_relays(fake_store):
    thread = await fake_store.create_thread()
    relay = StreamRelay(exchange_returning("x", delay=0.02), fake_store, thread.id).start()

    await drain_background_tasks(timeout=5)

    assert relay.content == "x"
    assert len(fake_store.messages[thread.id]) == 1


async def test_start_is_idempotent(fake_store):
    thread = await fake_store.create_thread()
    calls = []

    async def exchange(on_chunk):
        calls.append(1)
        return ChatResult(content="once")

    relay = StreamRelay(exchange, fake_store, thread.id)
    relay.start()
    relay.start()
    await relay.wait()

    assert calls == [1]
