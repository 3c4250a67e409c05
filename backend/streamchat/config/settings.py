"""Configuration settings for the streamchat conversation service."""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChatSettings(BaseSettings):
    """Conversation session manager settings."""

    model_config = SettingsConfigDict(
        env_prefix="CHAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database settings
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/chat.db",
        description="SQLAlchemy async database URL for sessions and turns",
    )

    # Model settings
    model: str = Field(
        default="gemini-2.5-flash",
        description="Primary chat model (any LiteLLM-compatible model)",
    )
    provider: str = Field(
        default="gemini",
        description="LiteLLM provider (openai, anthropic, gemini, etc.)",
    )
    api_base: Optional[str] = Field(
        default=None,
        description="Custom API base URL for LiteLLM",
    )
    temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for the primary model",
    )
    max_output_tokens: Optional[int] = Field(
        default=8192,
        ge=1,
        description="Maximum tokens the primary model may generate",
    )
    retry_count: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries for non-streaming model calls",
    )

    # Timeout settings (seconds)
    llm_timeout: float = Field(
        default=60.0,
        gt=0,
        le=600,
        description="Timeout for a model call",
    )
    stream_chunk_timeout: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Maximum idle time between two streamed chunks",
    )
    stream_completion_timeout: float = Field(
        default=120.0,
        gt=0,
        le=1800,
        description="How long a stream keeps running after the caller disconnects",
    )

    # Context window settings
    history_token_budget: int = Field(
        default=3000,
        ge=100,
        le=200000,
        description="Token budget for conversational history sent to the model",
    )
    system_token_reservation: int = Field(
        default=800,
        ge=50,
        le=20000,
        description="Separate token reservation for instruction plus summary",
    )
    tokenizer_model: str = Field(
        default="gpt-4o",
        description="Model whose tiktoken encoding approximates token counts",
    )
    history_must_start_with_user: Optional[bool] = Field(
        default=None,
        description="Drop leading assistant turns from the window (auto-detected when unset)",
    )

    # Session settings
    title_max_chars: int = Field(
        default=50,
        ge=10,
        le=255,
        description="Character budget for titles derived from the first turn",
    )
    serialize_session_turns: bool = Field(
        default=True,
        description="Hold a per-session lock for the duration of one turn",
    )

    # Summary settings
    summary_model: Optional[str] = Field(
        default=None,
        description="Model used for summaries (primary model when unset)",
    )
    summary_max_words: int = Field(
        default=200,
        ge=20,
        le=2000,
        description="Target upper bound on summary length in words",
    )
    summary_timeout: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Timeout for a summarization call",
    )

    # Tool calling settings
    tools_enabled: bool = Field(
        default=False,
        description="Let the model call tools (documents, products, sales) before replying",
    )
    max_tool_rounds: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum model round-trips spent on tool calls per turn",
    )
    tool_timeout: float = Field(
        default=15.0,
        gt=0,
        le=300,
        description="Timeout for one tool execution",
    )

    # Logging settings
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL|debug|info|warning|error|critical)$",
        description="Logging level",
    )
    json_logs: Optional[bool] = Field(
        default=None,
        description="Render logs as JSON (auto: JSON unless attached to a TTY)",
    )

    # API settings
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, ge=1, le=65535, description="API server port")

    @field_validator("model")
    @classmethod
    def validate_model(cls, v: str) -> str:
        """Validate that the model string is not empty."""
        if not v or not v.strip():
            raise ValueError("Model name cannot be empty")
        return v.strip()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize log level."""
        return v.upper()


class RetrievalSettings(BaseSettings):
    """Retrieval-augmented generation settings."""

    model_config = SettingsConfigDict(
        env_prefix="RAG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    enabled: bool = Field(
        default=False,
        description="Inject retrieved passages into the prompt",
    )
    top_k: int = Field(
        default=3,
        ge=1,
        le=50,
        description="Number of passages to retrieve per turn",
    )
    timeout: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Timeout for one retrieval call",
    )
    as_tool: bool = Field(
        default=False,
        description="Offer document search as a tool instead of injecting passages every turn",
    )

    # Qdrant settings
    qdrant_host: str = Field(default="localhost", description="Qdrant server host")
    qdrant_port: int = Field(default=6333, ge=1, le=65535, description="Qdrant server port")
    qdrant_https: bool = Field(default=False, description="Use HTTPS for Qdrant")
    qdrant_api_key: Optional[str] = Field(default=None, description="Qdrant API key")
    collection: str = Field(default="documents", description="Qdrant collection name")

    # Embedding settings
    embedding_model: str = Field(
        default="text-embedding-3-small",
        description="LiteLLM embedding model for query vectors",
    )

    # Payload layout
    content_field: str = Field(default="content", description="Payload key holding passage text")
    source_field: str = Field(default="filename", description="Payload key naming the source")


@lru_cache()
def get_settings() -> ChatSettings:
    """Get cached chat settings.

    Returns:
        ChatSettings instance
    """
    return ChatSettings()


@lru_cache()
def get_retrieval_settings() -> RetrievalSettings:
    """Get cached retrieval settings.

    Returns:
        RetrievalSettings instance
    """
    return RetrievalSettings()
