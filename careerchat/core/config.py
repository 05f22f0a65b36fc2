"""
Configuration management for CareerChat.

Loads settings from environment variables with sensible defaults.
Uses pydantic-settings for validation.
"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class DatabaseSettings(BaseSettings):
    """Conversation store and session storage connection settings."""

    url: str = Field(
        default="sqlite+aiosqlite:///./data/careerchat.db",
        description="Async SQLAlchemy URL for threads and messages"
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for session state storage"
    )
    echo: bool = Field(default=False, description="Log SQL statements")

    model_config = SettingsConfigDict(env_prefix="DB_", env_file=".env", extra="ignore")


class LLMSettings(BaseSettings):
    """Completion provider settings. Primary model plus one optional fallback."""

    anthropic_api_key: Optional[str] = Field(
        default=None,
        description="Anthropic API key for Claude"
    )
    openai_api_key: Optional[str] = Field(
        default=None,
        description="OpenAI API key"
    )
    gemini_api_key: Optional[str] = Field(
        default=None,
        description="Google Gemini API key"
    )
    cloudflare_account_id: Optional[str] = Field(
        default=None,
        description="Cloudflare account id for Workers AI"
    )
    cloudflare_api_token: Optional[str] = Field(
        default=None,
        description="Cloudflare API token for Workers AI"
    )

    default_provider: str = Field(
        default="claude",
        description="Primary provider: claude, openai, gemini, workers_ai or mock"
    )
    fallback_provider: Optional[str] = Field(
        default="gemini",
        description="Provider tried once when the primary fails (empty disables)"
    )

    claude_model: str = Field(default="claude-sonnet-4-20250514")
    openai_model: str = Field(default="gpt-4o-mini")
    gemini_model: str = Field(default="gemini-1.5-flash")
    workers_ai_model: str = Field(default="@cf/openai/gpt-oss-120b")

    temperature: float = Field(
        default=0.3,
        description="LLM temperature"
    )
    max_tokens: int = Field(
        default=4096,
        description="Maximum tokens in LLM response"
    )
    request_timeout: float = Field(
        default=60.0,
        description="Seconds before an HTTP call to a provider is abandoned"
    )

    model_config = SettingsConfigDict(env_prefix="LLM_", env_file=".env", extra="ignore")


class SessionSettings(BaseSettings):
    """Session state actor settings."""

    storage_backend: str = Field(
        default="file",
        description="Durable backend for session state: memory, file or redis"
    )
    storage_dir: str = Field(
        default="data/sessions",
        description="Directory for the file backend"
    )
    ttl_seconds: Optional[int] = Field(
        default=None,
        description="Expiry for redis-backed session state (None keeps it forever)"
    )
    max_active: int = Field(
        default=1000,
        description="Actors kept in memory before least recently used ones are evicted"
    )

    model_config = SettingsConfigDict(env_prefix="SESSION_", env_file=".env", extra="ignore")


class ChatSettings(BaseSettings):
    """Chat exchange settings."""

    default_user_id: str = Field(default="joe")
    persona: Optional[str] = Field(
        default=None,
        description="Override for the assistant persona in the system prompt"
    )
    chunk_size: int = Field(
        default=50,
        description="Characters per pseudo-chunk when a provider cannot stream"
    )
    chunk_delay_ms: int = Field(
        default=10,
        description="Delay between pseudo-chunks"
    )
    response_timeout_seconds: float = Field(
        default=120.0,
        description="Upper bound on one exchange before it is failed"
    )
    profile_path: Optional[str] = Field(
        default=None,
        description="JSON file with the job seeker profile embedded in the system prompt"
    )

    model_config = SettingsConfigDict(env_prefix="CHAT_", env_file=".env", extra="ignore")


class Settings(BaseSettings):
    """Main application settings aggregating all sub-settings."""

    # Application
    app_name: str = "CareerChat"
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # Sub-settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    chat: ChatSettings = Field(default_factory=ChatSettings)

    model_config = SettingsConfigDict(env_prefix="CAREERCHAT_", env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings. Useful for dependency injection."""
    return settings
