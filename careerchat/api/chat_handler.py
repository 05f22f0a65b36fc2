"""
Chat Handler for CareerChat

Hosts one chat exchange on behalf of the HTTP layer:
1. Resolving the thread (creating one when none is selected)
2. Pointing the session at that thread
3. Recording the user message
4. Starting the streamed reply under a response timeout

This can be used with any transport that consumes StreamRelay frames
(HTTP streaming, WebSocket, CLI).
"""

import asyncio
import logging
from typing import Optional

from careerchat.core.config import get_settings
from careerchat.core.conversation_store import ConversationStore
from careerchat.core.exceptions import CompletionError, ThreadNotFoundError
from careerchat.core.schemas import ChatResult, Role, StateUpdate, ThreadOut
from careerchat.api.streaming import StreamRelay
from careerchat.services.orchestrator import ChatOrchestrator
from careerchat.services.session_state import SessionRegistry, session_key_for

logger = logging.getLogger(__name__)

NEW_THREAD = "new"


class ChatHandler:
    """
    Entry point for a user message arriving from a client.

    Failures before the stream starts (missing message, unknown thread)
    raise; everything after is reported through the stream itself.
    """

    def __init__(
        self,
        orchestrator: ChatOrchestrator,
        store: ConversationStore,
        sessions: SessionRegistry,
        response_timeout: Optional[float] = None,
        default_user_id: Optional[str] = None
    ):
        settings = get_settings()
        self.orchestrator = orchestrator
        self.store = store
        self.sessions = sessions
        self.response_timeout = response_timeout or settings.chat.response_timeout_seconds
        self.default_user_id = default_user_id or settings.chat.default_user_id

    async def resolve_thread(self, thread_id: Optional[str]) -> ThreadOut:
        """Return the selected thread, creating one when none is selected."""
        if not thread_id or thread_id == NEW_THREAD:
            return await self.store.create_thread()

        thread = await self.store.get_thread(thread_id)
        if thread is None:
            raise ThreadNotFoundError(thread_id)
        return thread

    async def process_message(
        self,
        thread_id: Optional[str],
        message: Optional[str],
        user_id: Optional[str] = None
    ) -> StreamRelay:
        """
        Record the user message and start generating the reply.

        Args:
            thread_id: Existing thread id, or None / "new" for a fresh thread
            message: User's message text
            user_id: User identifier (defaults to the configured user)

        Returns:
            A started StreamRelay for the reply

        Raises:
            ValueError: message is missing or blank
            ThreadNotFoundError: thread_id names no thread
        """
        if not message or not message.strip():
            raise ValueError("Missing message")

        thread = await self.resolve_thread(thread_id)
        session_key = session_key_for(user_id or self.default_user_id, thread.id)

        await self.sessions.get(session_key).set_state(
            StateUpdate(current_thread_id=thread.id)
        )
        await self.store.append(thread.id, Role.USER.value, message)

        async def exchange(on_chunk) -> ChatResult:
            try:
                return await asyncio.wait_for(
                    self.orchestrator.process_message(thread.id, message, session_key, on_chunk),
                    timeout=self.response_timeout,
                )
            except asyncio.TimeoutError:
                raise CompletionError(
                    f"No response from the AI model within {self.response_timeout:.0f} seconds"
                )

        logger.info(f"Processing message on thread {thread.id} (session {session_key})")
        return StreamRelay(exchange, self.store, thread.id).start()
