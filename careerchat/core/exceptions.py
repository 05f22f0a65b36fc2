"""
Exception hierarchy for CareerChat.

All exceptions inherit from CareerChatError and carry:
- message: Human-readable error message
- details: Optional additional context
- context: Additional key-value pairs for debugging
"""

from typing import Any, Optional


class CareerChatError(Exception):
    """Base exception for all CareerChat errors."""

    def __init__(self, message: str, details: Optional[str] = None, **context: Any):
        self.message = message
        self.details = details
        self.context = context if context else None
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message

    def to_dict(self) -> dict:
        """Convert exception to dictionary for JSON serialization."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "details": self.details,
            "context": self.context,
        }


class CompletionError(CareerChatError):
    """A completion provider failed to produce a response."""

    def __init__(self, message: str, provider: Optional[str] = None, **context: Any):
        self.provider = provider
        super().__init__(message, provider=provider, **context)


class ProviderFallbackError(CompletionError):
    """Both the primary and the fallback provider failed."""

    def __init__(self, primary_error: BaseException, fallback_error: BaseException,
                 primary: str = "primary", fallback: str = "fallback"):
        self.primary_error = primary_error
        self.fallback_error = fallback_error
        message = (
            f"Primary model ({primary}) error: {_describe(primary_error)}. "
            f"Fallback model ({fallback}) also failed: {_describe(fallback_error)}"
        )
        super().__init__(message, provider=fallback, primary=primary)


class ThreadNotFoundError(CareerChatError):
    """The conversation thread does not exist."""

    def __init__(self, thread_id: str):
        self.thread_id = thread_id
        super().__init__(f"Thread not found: {thread_id}", thread_id=thread_id)


class StateStorageError(CareerChatError):
    """Reading or writing session state storage failed."""


def _describe(error: BaseException) -> str:
    text = str(error)
    return text if text else type(error).__name__
