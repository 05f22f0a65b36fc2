"""
Test doubles shared across the CareerChat test modules.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from careerchat.core.exceptions import ThreadNotFoundError
from careerchat.core.llm_client import CompletionProvider
from careerchat.core.schemas import MessageOut, Role, ThreadOut


class FakeConversationStore:
    """In-memory stand-in for ConversationStore with failure injection."""

    def __init__(self):
        self.threads: Dict[str, ThreadOut] = {}
        self.messages: Dict[str, List[MessageOut]] = {}
        self.fail_appends_for_role: Optional[str] = None

    async def create_thread(self, title=None) -> ThreadOut:
        now = datetime.now(timezone.utc)
        thread = ThreadOut(id=str(uuid.uuid4()), title=title, created_at=now, updated_at=now)
        self.threads[thread.id] = thread
        self.messages[thread.id] = []
        return thread

    async def get_thread(self, thread_id):
        return self.threads.get(thread_id)

    async def list_threads(self):
        return sorted(self.threads.values(), key=lambda t: t.updated_at, reverse=True)

    async def append(self, thread_id, role, content, metadata=None) -> MessageOut:
        if role == self.fail_appends_for_role:
            raise RuntimeError("database is locked")
        if thread_id not in self.threads:
            raise ThreadNotFoundError(thread_id)
        message = MessageOut(
            id=str(uuid.uuid4()), thread_id=thread_id, role=Role(role),
            content=content, created_at=datetime.now(timezone.utc),
        )
        self.messages[thread_id].append(message)
        return message

    async def list(self, thread_id):
        return list(self.messages.get(thread_id, []))


class HangingProvider(CompletionProvider):
    """Never answers."""

    name = "hanging"

    async def complete(self, messages):
        await asyncio.Event().wait()


class FailingStreamProvider(CompletionProvider):
    """Streams some fragments, then raises."""

    name = "flaky"
    supports_streaming = True

    def __init__(self, fragments, error):
        self.fragments = fragments
        self.error = error

    async def complete(self, messages):
        raise self.error

    async def complete_streaming(self, messages):
        for fragment in self.fragments:
            yield fragment
        raise self.error

