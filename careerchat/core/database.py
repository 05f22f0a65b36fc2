"""
Database models for CareerChat.

Uses SQLAlchemy for ORM with an async engine (SQLite via aiosqlite by
default, any async driver URL works).
"""

from datetime import datetime, timezone
import uuid
from sqlalchemy import (
    Column, String, Integer, DateTime, Text, JSON, ForeignKey, Index
)
from sqlalchemy.orm import relationship, declarative_base


Base = declarative_base()


def generate_uuid():
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def utcnow():
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


# ============================================================================
# Threads
# ============================================================================

class Thread(Base):
    """A named conversation."""

    __tablename__ = "threads"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    title = Column(String(255))

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    meta = Column("metadata", JSON)

    # Relationships
    messages = relationship(
        "Message", back_populates="thread", order_by="Message.position"
    )


# ============================================================================
# Messages
# ============================================================================

class Message(Base):
    """Chat message. Never updated or deleted once written."""

    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    thread_id = Column(String(36), ForeignKey("threads.id"), nullable=False)

    role = Column(String(20), nullable=False)  # user, assistant
    content = Column(Text, nullable=False)

    # Per-thread append counter, breaks created_at ties
    position = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    meta = Column("metadata", JSON)

    thread = relationship("Thread", back_populates="messages")

    __table_args__ = (
        Index("idx_messages_thread_created", "thread_id", "created_at", "position"),
    )
