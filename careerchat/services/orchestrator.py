"""
Chat Orchestrator

Turns one user message into one assistant reply:
1. History -> 2. Session state -> 3. System prompt -> 4. Provider -> 5. Relay

Implements:
- System prompt from persona, profile, session context and question history
- Single fallback hop between two ranked completion providers
- Uniform chunk relay whether or not the provider can stream
- Exchange state tracking (PENDING -> STREAMING -> COMPLETED | FAILED)

Persisting the reply is left to the caller so an aborted transport never
leaves the conversation half-written.
"""

import asyncio
import inspect
import json
import logging
from typing import Optional, List, Dict, Any, Callable, Sequence
from datetime import datetime, timezone
from dataclasses import dataclass, field

from careerchat.core.schemas import (
    ExchangeState, ChatResult, ChatMessage, MessageOut, Role, SessionSnapshot
)
from careerchat.core.config import get_settings
from careerchat.core.conversation_store import ConversationStore
from careerchat.core.exceptions import ProviderFallbackError
from careerchat.core.llm_client import CompletionProvider
from careerchat.services.session_state import SessionRegistry

logger = logging.getLogger(__name__)


DEFAULT_PERSONA = """You are a professional recruiter expert helping a job seeker find their next role.
Be direct, honest, and brutal when necessary. No fluff - just straight talk.
When evaluating job fits, give a clear score (0-100) and explain why.
If you need more information to improve the score, ask targeted questions,
in multiple choice format when possible. Never repeat questions already answered."""

INSTRUCTIONS = """Instructions:
- Be direct and honest about job fit scores (0-100)
- Analyze job postings against the candidate's background and recommend specific resume changes
- Ask follow-up questions only if they would meaningfully improve the fit score
- Use multiple choice format when possible
- Never repeat questions already asked or answered
- Remember context from previous messages"""


ChunkCallback = Callable[[str], Any]


# ============================================================================
# Exchange Tracking
# ============================================================================

@dataclass
class Exchange:
    """State of one processMessage call."""

    thread_id: str
    session_key: str
    state: ExchangeState = ExchangeState.PENDING
    provider: Optional[str] = None
    chunks_emitted: int = 0
    emitted: List[str] = field(default_factory=list)
    error: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    VALID_TRANSITIONS = {
        ExchangeState.PENDING: [ExchangeState.STREAMING, ExchangeState.FAILED],
        ExchangeState.STREAMING: [ExchangeState.COMPLETED, ExchangeState.FAILED],
        ExchangeState.COMPLETED: [],
        ExchangeState.FAILED: [],
    }

    def transition(self, new_state: ExchangeState) -> bool:
        if new_state not in self.VALID_TRANSITIONS[self.state]:
            logger.warning(f"Invalid exchange transition: {self.state.value} -> {new_state.value}")
            return False
        logger.debug(f"Exchange on {self.thread_id}: {self.state.value} -> {new_state.value}")
        self.state = new_state
        if new_state in (ExchangeState.COMPLETED, ExchangeState.FAILED):
            self.finished_at = datetime.now(timezone.utc)
        return True


def pseudo_chunks(text: str, size: int) -> List[str]:
    """Fixed-size slices of text. Empty text yields one empty chunk."""
    if not text:
        return [text]
    return [text[i:i + size] for i in range(0, len(text), size)]


# ============================================================================
# Orchestrator
# ============================================================================

class ChatOrchestrator:
    """
    Composes the conversation store, session actors and ranked providers.

    providers[0] is the primary model, providers[1] (optional) the fallback.
    Further entries are ignored: there is exactly one fallback hop.
    """

    def __init__(
        self,
        store: ConversationStore,
        sessions: SessionRegistry,
        providers: Sequence[CompletionProvider],
        persona: Optional[str] = None,
        profile: Optional[Dict[str, Any]] = None,
        chunk_size: Optional[int] = None,
        chunk_delay: Optional[float] = None
    ):
        if not providers:
            raise ValueError("At least one completion provider is required")

        settings = get_settings()
        self.store = store
        self.sessions = sessions
        self.primary = providers[0]
        self.fallback = providers[1] if len(providers) > 1 else None
        self.persona = persona or settings.chat.persona or DEFAULT_PERSONA
        self.profile = profile or {}
        self.chunk_size = chunk_size or settings.chat.chunk_size
        self.chunk_delay = (
            chunk_delay if chunk_delay is not None
            else settings.chat.chunk_delay_ms / 1000.0
        )

    # =========================================================================
    # Prompt
    # =========================================================================

    def build_system_prompt(self, snapshot: SessionSnapshot) -> str:
        sections = [self.persona]

        if self.profile:
            sections.append(f"Profile Context: {json.dumps(self.profile, default=str)}")

        if snapshot.context:
            facts = "\n".join(
                f"- {key}: {value if isinstance(value, str) else json.dumps(value, default=str)}"
                for key, value in snapshot.context.items()
            )
            sections.append(f"Known facts from this session:\n{facts}")

        asked = ", ".join(snapshot.asked_questions) or "None"
        answered = ", ".join(snapshot.answered_questions) or "None"
        sections.append(
            f"Previous Questions Asked (DO NOT repeat these): {asked}\n"
            f"Previous Answers: {answered}"
        )
        sections.append(INSTRUCTIONS)
        return "\n\n".join(sections)

    def build_messages(
        self,
        history: List[MessageOut],
        snapshot: SessionSnapshot,
        user_text: str
    ) -> List[Dict[str, str]]:
        """System prompt, then stored history, then the new user message."""
        # The caller may already have stored this user message
        if history and history[-1].role == Role.USER and history[-1].content == user_text:
            history = history[:-1]

        messages = [ChatMessage(role=Role.SYSTEM, content=self.build_system_prompt(snapshot))]
        messages.extend(
            ChatMessage(role=Role.USER if m.role == Role.USER else Role.ASSISTANT, content=m.content)
            for m in history
        )
        messages.append(ChatMessage(role=Role.USER, content=user_text))
        return [m.to_dict() for m in messages]

    # =========================================================================
    # Exchange
    # =========================================================================

    async def process_message(
        self,
        thread_id: str,
        user_text: str,
        session_key: str,
        on_chunk: Optional[ChunkCallback] = None
    ) -> ChatResult:
        """
        Generate the assistant reply for user_text in thread_id.

        Args:
            thread_id: Thread whose history forms the conversation
            user_text: The new user message
            session_key: Selects the session state actor
            on_chunk: Optional callback (sync or async) receiving each text fragment

        Returns:
            ChatResult whose content equals the concatenation of every
            chunk handed to on_chunk (the full reply text without a callback)

        Raises:
            ProviderFallbackError: primary and fallback both failed
            Exception: the primary's error when no fallback is configured
        """
        exchange = Exchange(thread_id=thread_id, session_key=session_key)

        history = await self.store.list(thread_id)
        snapshot = await self.sessions.get(session_key).get_state()
        messages = self.build_messages(history, snapshot, user_text)

        exchange.transition(ExchangeState.STREAMING)
        try:
            content = await self._run_provider(self.primary, messages, on_chunk, exchange)
            exchange.provider = self.primary.name
        except Exception as primary_error:
            logger.error(f"Primary AI model ({self.primary.name}) error: {primary_error}")

            if self.fallback is None:
                exchange.error = str(primary_error)
                exchange.transition(ExchangeState.FAILED)
                raise

            if exchange.emitted:
                logger.warning(
                    f"Primary failed after {len(exchange.emitted)} chunk(s); "
                    f"fallback output follows them"
                )
            logger.info(f"Falling back to {self.fallback.name} model...")
            try:
                content = await self._run_provider(self.fallback, messages, on_chunk, exchange)
                exchange.provider = self.fallback.name
            except Exception as fallback_error:
                logger.error(f"{self.fallback.name} fallback also failed: {fallback_error}")
                error = ProviderFallbackError(
                    primary_error, fallback_error,
                    primary=self.primary.name, fallback=self.fallback.name
                )
                exchange.error = str(error)
                exchange.transition(ExchangeState.FAILED)
                raise error from fallback_error

        if on_chunk is not None:
            # What the client saw, including any fragments from a failed primary stream
            content = "".join(exchange.emitted)

        exchange.transition(ExchangeState.COMPLETED)
        logger.info(
            f"Exchange on thread {thread_id} completed by {exchange.provider} "
            f"({len(content)} chars, {exchange.chunks_emitted} chunks)"
        )
        return ChatResult(content=content, provider=exchange.provider)

    async def _run_provider(
        self,
        provider: CompletionProvider,
        messages: List[Dict[str, str]],
        on_chunk: Optional[ChunkCallback],
        exchange: Exchange
    ) -> str:
        if on_chunk is None:
            return await provider.complete(messages)

        if provider.supports_streaming:
            buffer = []
            async for chunk in provider.complete_streaming(messages):
                buffer.append(chunk)
                await self._emit(on_chunk, chunk, exchange)
            return "".join(buffer)

        # Present the same chunked contract for providers that cannot stream
        text = await provider.complete(messages)
        for chunk in pseudo_chunks(text, self.chunk_size):
            await asyncio.sleep(self.chunk_delay)
            await self._emit(on_chunk, chunk, exchange)
        return text

    async def _emit(self, on_chunk: ChunkCallback, chunk: str, exchange: Exchange):
        """Deliver one chunk. A failing sink never stops the exchange."""
        exchange.emitted.append(chunk)
        try:
            result = on_chunk(chunk)
            if inspect.isawaitable(result):
                await result
            exchange.chunks_emitted += 1
        except Exception as e:
            logger.debug(f"Chunk delivery failed on thread {exchange.thread_id}: {e}")
