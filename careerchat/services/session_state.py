"""
Session State Actor

One actor per session key holds the small mutable state of a chat session:

1. currentThreadId - pointer to the thread the session operates on
2. context - open map of session facts, merged on update
3. askedQuestions - question ids the assistant has posed and not seen resolved
4. answeredQuestions - question ids the user has resolved

Guarantees:
- Every operation on one actor runs alone, in arrival order (FIFO lock)
- Nothing runs before the state has been loaded from storage (init gate)
- Every mutation is written to storage before the call returns
- A question id is never both asked and answered

Storage is best effort: a failed read starts the session from empty
defaults, a failed write is logged and the in-memory change stands.
"""

import asyncio
import copy
import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import Optional, Dict, Any, Set, Iterable

from careerchat.core.schemas import SessionSnapshot, StateUpdate, QuestionsOut
from careerchat.core.state_storage import StateStorage

logger = logging.getLogger(__name__)


STORAGE_KEYS = {
    "current_thread_id": "currentThreadId",
    "context": "context",
    "asked_questions": "askedQuestions",
    "answered_questions": "answeredQuestions",
}


def session_key_for(user_id: str, thread_id: str) -> str:
    """Derive the opaque session key for a user's thread."""
    return f"user-{user_id}-{thread_id}"


class SessionStateActor:
    """
    Serialized, storage-backed state for one session.

    Created lazily by SessionRegistry. Eviction just drops the object;
    the next access builds a fresh actor that re-loads from storage.
    """

    def __init__(self, session_key: str, storage: StateStorage):
        self.session_key = session_key
        self.storage = storage

        self._current_thread_id: Optional[str] = None
        self._context: Dict[str, Any] = {}
        self._asked: Set[str] = set()
        self._answered: Set[str] = set()

        self._initialized = False
        self._init_future: Optional[asyncio.Future] = None
        self._lock = asyncio.Lock()
        # Operations entered but not finished, including those queued on the lock
        self._pending = 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def busy(self) -> bool:
        """True while any operation is running or waiting for its turn."""
        return self._pending > 0

    async def initialize(self):
        """Load persisted state once. Concurrent callers share the same load."""
        if self._initialized:
            return
        if self._init_future is None:
            self._init_future = asyncio.ensure_future(self._load())
        await asyncio.shield(self._init_future)

    @asynccontextmanager
    async def _turn(self):
        """Run the body alone, in arrival order, after the state is loaded."""
        self._pending += 1
        try:
            async with self._lock:
                await self.initialize()
                yield
        finally:
            self._pending -= 1

    async def _load(self):
        keys = list(STORAGE_KEYS.values())
        try:
            thread_id, context, asked, answered = await asyncio.gather(
                *(self.storage.get(self.session_key, key) for key in keys)
            )
        except Exception as e:
            logger.warning(f"Session {self.session_key}: state load failed, starting fresh: {e}")
            thread_id, context, asked, answered = None, None, None, None

        if self._well_formed("currentThreadId", thread_id, str):
            self._current_thread_id = thread_id
        if self._well_formed("context", context, dict):
            self._context = dict(context)
        if self._well_formed("askedQuestions", asked, list):
            self._asked = {q for q in asked if isinstance(q, str)}
        if self._well_formed("answeredQuestions", answered, list):
            self._answered = {q for q in answered if isinstance(q, str)}
        self._asked -= self._answered

        self._initialized = True
        logger.debug(f"Session {self.session_key} initialized")

    def _well_formed(self, name: str, value: Any, expected: type) -> bool:
        """Stored values of the wrong shape are dropped in favor of the default."""
        if value is None:
            return False
        if not isinstance(value, expected):
            logger.warning(
                f"Session {self.session_key}: ignoring stored {name} of type "
                f"{type(value).__name__}, expected {expected.__name__}"
            )
            return False
        return True

    async def _persist(self):
        """Write all four fields in one batch. Failures are logged, not raised."""
        values = {
            STORAGE_KEYS["current_thread_id"]: self._current_thread_id,
            STORAGE_KEYS["context"]: self._context,
            STORAGE_KEYS["asked_questions"]: sorted(self._asked),
            STORAGE_KEYS["answered_questions"]: sorted(self._answered),
        }
        try:
            await self.storage.put_many(self.session_key, values)
        except Exception as e:
            logger.error(f"Session {self.session_key}: failed to persist state: {e}")

    # =========================================================================
    # Operations
    # =========================================================================

    async def get_state(self) -> SessionSnapshot:
        async with self._turn():
            return self._snapshot()

    async def set_state(self, update: StateUpdate) -> SessionSnapshot:
        """
        Merge a partial update and persist.

        current_thread_id overwrites, context is shallow-merged, question
        lists replace the stored sets.
        """
        async with self._turn():
            if update.current_thread_id is not None:
                self._current_thread_id = update.current_thread_id
            if update.context:
                self._context = {**self._context, **update.context}
            if update.asked_questions is not None:
                self._asked = set(update.asked_questions)
            if update.answered_questions is not None:
                self._answered = set(update.answered_questions)
            self._asked -= self._answered

            await self._persist()
            return self._snapshot()

    async def record_question_asked(self, question_id: str):
        async with self._turn():
            if question_id in self._answered:
                logger.debug(f"Session {self.session_key}: {question_id} already answered")
                return
            self._asked.add(question_id)
            await self._persist()

    async def record_answer(self, question_id: str):
        """Mark a question resolved. It leaves the pending set in the same write."""
        async with self._turn():
            self._answered.add(question_id)
            self._asked.discard(question_id)
            await self._persist()

    async def get_questions(self) -> QuestionsOut:
        async with self._turn():
            return QuestionsOut(asked=sorted(self._asked), answered=sorted(self._answered))

    async def get_context(self) -> Dict[str, Any]:
        async with self._turn():
            return copy.deepcopy(self._context)

    async def update_context(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        snapshot = await self.set_state(StateUpdate(context=updates))
        return snapshot.context

    def _snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            current_thread_id=self._current_thread_id,
            context=copy.deepcopy(self._context),
            asked_questions=sorted(self._asked),
            answered_questions=sorted(self._answered),
        )


class SessionRegistry:
    """
    Namespace of session actors.

    Exactly one live actor per key. Keys never share a lock. When more than
    max_active actors are alive the least recently used idle one is dropped; its
    state comes back from storage on the next access.
    """

    def __init__(self, storage: StateStorage, max_active: Optional[int] = None):
        self.storage = storage
        self.max_active = max_active
        self._actors: "OrderedDict[str, SessionStateActor]" = OrderedDict()

    def get(self, session_key: str) -> SessionStateActor:
        actor = self._actors.get(session_key)
        if actor is None:
            actor = SessionStateActor(session_key, self.storage)
            self._actors[session_key] = actor
            self._evict_overflow(keep=session_key)
        else:
            self._actors.move_to_end(session_key)
        return actor

    def evict(self, session_key: str) -> bool:
        """Drop the in-memory actor. Returns False when none was active."""
        return self._actors.pop(session_key, None) is not None

    def active_keys(self) -> Iterable[str]:
        return list(self._actors.keys())

    def _evict_overflow(self, keep: str):
        """Drop least recently used idle actors until back within max_active."""
        if not self.max_active:
            return
        for key in list(self._actors.keys()):
            if len(self._actors) <= self.max_active:
                break
            # Actors with running or queued operations stay; so does the one just requested
            if key == keep or self._actors[key].busy:
                continue
            del self._actors[key]
            logger.debug(f"Evicted idle session actor {key}")
