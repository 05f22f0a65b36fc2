"""
Pydantic schemas for data validation and API payloads.

These schemas ensure:
1. Request bodies are validated before an exchange starts
2. Session state crosses the actor boundary as a copy, never a live reference
3. API responses are consistent
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Enums
# ============================================================================

class Role(str, Enum):
    """Author of a chat message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ExchangeState(str, Enum):
    """Lifecycle of one user message -> assistant reply exchange."""

    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


# ============================================================================
# Conversation Store
# ============================================================================

class ThreadOut(BaseModel):
    """A named conversation."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    title: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="meta")


class MessageOut(BaseModel):
    """One immutable message in a thread."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    thread_id: str
    role: Role
    content: str
    created_at: datetime
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="meta")


class ChatMessage(BaseModel):
    """Canonical role/content pair sent to completion providers."""

    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


# ============================================================================
# Session State
# ============================================================================

class SessionSnapshot(BaseModel):
    """Copy of one session's state. Question sets are sorted lists."""

    model_config = ConfigDict(populate_by_name=True)

    current_thread_id: Optional[str] = Field(default=None, alias="currentThreadId")
    context: Dict[str, Any] = Field(default_factory=dict)
    asked_questions: List[str] = Field(default_factory=list, alias="askedQuestions")
    answered_questions: List[str] = Field(default_factory=list, alias="answeredQuestions")


class StateUpdate(BaseModel):
    """Partial session state update. Omitted fields are left untouched."""

    model_config = ConfigDict(populate_by_name=True)

    current_thread_id: Optional[str] = Field(default=None, alias="currentThreadId")
    context: Optional[Dict[str, Any]] = None
    asked_questions: Optional[List[str]] = Field(default=None, alias="askedQuestions")
    answered_questions: Optional[List[str]] = Field(default=None, alias="answeredQuestions")


class QuestionRequest(BaseModel):
    """Body for marking a question asked or answered."""

    model_config = ConfigDict(populate_by_name=True)

    question_id: Optional[str] = Field(default=None, alias="questionId")


class QuestionsOut(BaseModel):
    """Pending and resolved question ids."""

    asked: List[str] = Field(default_factory=list)
    answered: List[str] = Field(default_factory=list)


# ============================================================================
# Chat API
# ============================================================================

class CreateThreadRequest(BaseModel):
    """Request to create a thread."""

    title: Optional[str] = None


class ClientMessage(BaseModel):
    """Message as sent by chat clients that post the whole transcript."""

    role: str = "user"
    content: str = ""


class ChatStreamRequest(BaseModel):
    """Body of a streaming chat request.

    Either ``message`` or the last entry of ``messages`` carries the user text.
    """

    message: Optional[str] = None
    messages: Optional[List[ClientMessage]] = None
    user_id: Optional[str] = None

    def user_text(self) -> Optional[str]:
        if self.message:
            return self.message
        if self.messages:
            return self.messages[-1].content or None
        return None


class ChatResult(BaseModel):
    """Final text of an exchange and the provider that produced it."""

    content: str
    provider: Optional[str] = None
