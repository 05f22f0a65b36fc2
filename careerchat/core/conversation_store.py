"""
Conversation Store

Durable, append-only message log keyed by thread id.

Threads are listed most recently updated first; messages are replayed in
creation order. Appending to a thread bumps its updated_at. Nothing here
edits or deletes an existing message.

Usage:
    store = ConversationStore("sqlite+aiosqlite:///./data/careerchat.db")
    await store.init_models()
    thread = await store.create_thread("Toyota follow-up")
    await store.append(thread.id, "user", "Hello")
"""

import logging
import os
from typing import Optional, List, Dict, Any

from sqlalchemy import select, func
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from careerchat.core.database import Base, Thread, Message, utcnow
from careerchat.core.exceptions import ThreadNotFoundError
from careerchat.core.schemas import ThreadOut, MessageOut, Role

logger = logging.getLogger(__name__)


class ConversationStore:
    """Thread and message persistence on an async SQLAlchemy engine."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        _ensure_sqlite_dir(url)
        self.engine = create_async_engine(url, echo=echo)
        self._sessions = async_sessionmaker(self.engine, expire_on_commit=False)

    async def init_models(self):
        """Create tables if they do not exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Conversation store ready at {self.url}")

    async def close(self):
        await self.engine.dispose()

    # =========================================================================
    # Threads
    # =========================================================================

    async def create_thread(self, title: Optional[str] = None) -> ThreadOut:
        async with self._sessions() as session:
            now = utcnow()
            thread = Thread(title=title, created_at=now, updated_at=now)
            session.add(thread)
            await session.commit()
            logger.info(f"Created thread {thread.id}")
            return ThreadOut.model_validate(thread)

    async def get_thread(self, thread_id: str) -> Optional[ThreadOut]:
        async with self._sessions() as session:
            thread = await session.get(Thread, thread_id)
            return ThreadOut.model_validate(thread) if thread else None

    async def list_threads(self) -> List[ThreadOut]:
        async with self._sessions() as session:
            result = await session.execute(
                select(Thread).order_by(Thread.updated_at.desc())
            )
            return [ThreadOut.model_validate(t) for t in result.scalars()]

    # =========================================================================
    # Messages
    # =========================================================================

    async def append(self, thread_id: str, role: str, content: str,
                     metadata: Optional[Dict[str, Any]] = None) -> MessageOut:
        """Append a message and bump the thread's updated_at.

        Raises:
            ThreadNotFoundError: if the thread does not exist
        """
        role = Role(role).value

        async with self._sessions() as session:
            async with session.begin():
                thread = await session.get(Thread, thread_id)
                if thread is None:
                    raise ThreadNotFoundError(thread_id)

                last_position = await session.scalar(
                    select(func.max(Message.position)).where(Message.thread_id == thread_id)
                )
                now = utcnow()
                message = Message(
                    thread_id=thread_id,
                    role=role,
                    content=content,
                    position=(last_position or 0) + 1,
                    created_at=now,
                    meta=metadata,
                )
                session.add(message)
                thread.updated_at = now

            logger.debug(f"Appended {role} message {message.id} to thread {thread_id}")
            return MessageOut.model_validate(message)

    async def list(self, thread_id: str) -> List[MessageOut]:
        """All messages of a thread, oldest first. Unknown threads yield []."""
        async with self._sessions() as session:
            result = await session.execute(
                select(Message)
                .where(Message.thread_id == thread_id)
                .order_by(Message.created_at.asc(), Message.position.asc())
            )
            return [MessageOut.model_validate(m) for m in result.scalars()]


def _ensure_sqlite_dir(url: str):
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite" or not parsed.database:
        return
    if parsed.database == ":memory:":
        return
    directory = os.path.dirname(parsed.database)
    if directory:
        os.makedirs(directory, exist_ok=True)
