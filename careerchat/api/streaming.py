"""
Chat Streaming - frame relay between an exchange and the browser.

Wire format, one frame per line:
    0:{"content":"<chunk>"}          content chunk
    0:{"content":"Error: ...","error":true}   failure, rendered as a reply
    d:[DONE]                         terminal frame, sent exactly once

The exchange runs as its own task. Frames are queued for whoever iterates
frames(); if that consumer goes away the task still finishes and the
assistant message (or the error text) is still written to the store.
"""

import asyncio
import json
import logging
from typing import Optional, Callable, Awaitable, AsyncIterator, List, Set, Any

from careerchat.core.conversation_store import ConversationStore
from careerchat.core.schemas import ChatResult, Role

logger = logging.getLogger(__name__)

CONTENT_DISCRIMINATOR = "0"
TERMINAL_FRAME = "d:[DONE]\n"

GENERIC_ERROR = "Sorry, I encountered an error processing your request. Please try again."

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable buffering for nginx proxies
}

# Strong references keep running relays alive after their consumer left
_background_tasks: Set[asyncio.Task] = set()


def encode_frame(discriminator: str, payload: Any) -> str:
    return f"{discriminator}:{json.dumps(payload, separators=(',', ':'))}\n"


def encode_chunk_frame(content: str, error: bool = False) -> str:
    payload = {"content": content}
    if error:
        payload["error"] = True
    return encode_frame(CONTENT_DISCRIMINATOR, payload)


def decode_frames(body: str) -> List[Any]:
    """Parse a complete stream body back into payloads. Terminal frame -> None."""
    decoded = []
    for line in body.splitlines():
        if not line:
            continue
        discriminator, _, data = line.partition(":")
        if discriminator == "d":
            decoded.append(None)
        else:
            decoded.append(json.loads(data))
    return decoded


class StreamRelay:
    """
    Runs one exchange and turns its chunks into frames.

    Sequence on success: empty content frame, one frame per chunk, assistant
    message persisted, terminal frame. On failure: error frame, error text
    persisted (best effort), terminal frame.
    """

    def __init__(
        self,
        exchange: Callable[[Callable[[str], None]], Awaitable[ChatResult]],
        store: ConversationStore,
        thread_id: str
    ):
        self._exchange = exchange
        self.store = store
        self.thread_id = thread_id

        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._consumer_gone = False
        self._terminated = False

        self.content: Optional[str] = None
        self.error: Optional[str] = None

    def start(self) -> "StreamRelay":
        if self._task is None:
            self._task = asyncio.ensure_future(self._run())
            _background_tasks.add(self._task)
            self._task.add_done_callback(_background_tasks.discard)
        return self

    async def wait(self):
        """Wait until the reply (or error) has been persisted and the stream ended."""
        self.start()
        await asyncio.shield(self._task)

    async def frames(self) -> AsyncIterator[str]:
        self.start()
        try:
            while True:
                frame = await self._queue.get()
                if frame is None:
                    break
                yield frame
        finally:
            # Client disconnected or stream done; the task keeps running
            self._consumer_gone = True

    async def collect(self) -> str:
        return "".join([frame async for frame in self.frames()])

    def _put(self, frame: str):
        if self._consumer_gone:
            return
        self._queue.put_nowait(frame)

    def _on_chunk(self, chunk: str):
        self._put(encode_chunk_frame(chunk))

    def _terminate(self):
        if self._terminated:
            return
        self._terminated = True
        self._put(TERMINAL_FRAME)
        self._queue.put_nowait(None)

    async def _run(self):
        try:
            self._put(encode_chunk_frame(""))
            try:
                result = await self._exchange(self._on_chunk)
            except Exception as e:
                logger.error(f"Stream error on thread {self.thread_id}: {e}")
                self.error = f"Error: {str(e) or GENERIC_ERROR}"
                self._put(encode_chunk_frame(self.error, error=True))
                await self._persist(self.error)
            else:
                self.content = result.content
                await self._persist(result.content)
        finally:
            self._terminate()

    async def _persist(self, text: str):
        try:
            await self.store.append(self.thread_id, Role.ASSISTANT.value, text)
        except Exception as e:
            logger.error(f"Failed to save assistant message to thread {self.thread_id}: {e}")


async def drain_background_tasks(timeout: Optional[float] = None):
    """Let in-flight relays finish persisting, e.g. at shutdown."""
    pending = [t for t in _background_tasks if not t.done()]
    if pending:
        logger.info(f"Waiting for {len(pending)} chat stream(s) to finish")
        await asyncio.wait(pending, timeout=timeout)
