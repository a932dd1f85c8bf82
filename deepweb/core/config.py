"""
Client configuration using pydantic-settings.

WHAT: Centralized config from environment variables
WHY: Type-safe, validated config with sensible defaults
HOW: Pydantic BaseSettings reads from .env and environment
"""

from typing import Any
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_DEEPSEEK_MODELS: dict[str, dict[str, Any]] = {
    "deepseek-chat": {
        "name": "DeepSeek Chat",
        "description": "General purpose conversations",
        "max_tokens": 4000,
        "temperature": 0.7,
        "pricing": {"input": 0.0001, "output": 0.0002},  # per 1K tokens
    },
    "deepseek-coder": {
        "name": "DeepSeek Coder",
        "description": "Programming and code analysis",
        "max_tokens": 8000,
        "temperature": 0.3,
        "pricing": {"input": 0.0001, "output": 0.0002},
    },
    "deepseek-reasoner": {
        "name": "DeepSeek Reasoner",
        "description": "Complex reasoning and analysis",
        "max_tokens": 4000,
        "temperature": 0.5,
        "pricing": {"input": 0.0005, "output": 0.001},
    },
}


class Settings(BaseSettings):
    """Client settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=str(Path.cwd() / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # App metadata
    APP_NAME: str = "DeepWeb"
    APP_VERSION: str = "0.1.0"

    # Provider selection
    DEFAULT_PROVIDER: str = "deepseek"
    DEFAULT_MODEL: str = "deepseek-chat"

    # DeepSeek configuration
    DEEPSEEK_BASE_URL: str = "https://api.deepseek.com/v1"
    DEEPSEEK_MODELS: dict[str, dict[str, Any]] = DEFAULT_DEEPSEEK_MODELS
    DEEPSEEK_CONTEXT_TOKENS: int = 32000

    # LLM request configuration
    LLM_TIMEOUT: float = 30.0  # seconds, whole non-streaming call
    LLM_CONNECT_TIMEOUT: float = 5.0
    LLM_READ_TIMEOUT: float = 60.0
    LLM_STREAM_TIMEOUT: float | None = None  # None = no deadline for streams
    LLM_MAX_RETRIES: int = 3  # total attempts
    LLM_RETRY_DELAY: float = 1.0  # seconds, base for exponential backoff
    LLM_RETRY_BACKOFF: float = 2.0
    LLM_MAX_RETRY_DELAY: float = 30.0
    LLM_DEFAULT_TOP_P: float = 0.95
    LLM_DEFAULT_FREQUENCY_PENALTY: float = 0.0
    LLM_DEFAULT_PRESENCE_PENALTY: float = 0.0

    # Streaming / SSE
    STREAM_MAX_RECONNECT_ATTEMPTS: int = 3
    STREAM_RECONNECT_DELAY: float = 1.0  # seconds, multiplied by attempt number
    STREAM_CONTINUE_PROMPT: str = "Continue from where you left off."

    # API key format
    API_KEY_PATTERN: str = r"^sk-[a-zA-Z0-9]+$"
    API_KEY_MIN_LENGTH: int = 20
    API_KEY_MAX_LENGTH: int = 200

    # Rate limiting
    RATE_LIMIT_INTERVAL: float = 0.0  # min seconds between requests
    RATE_LIMIT_MAX_PER_HOUR: int = 100

    # Response cache
    CACHE_ENABLED: bool = True
    CACHE_TTL: float = 300.0  # seconds
    CACHE_MAX_SIZE: int = 100

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""
    LOG_MASK_SENSITIVE: bool = True
    LOG_MAX_CONTENT_LENGTH: int = 500

    @field_validator("DEEPSEEK_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URL so endpoint joins stay predictable."""
        return v.rstrip("/")

    @field_validator("LLM_MAX_RETRIES", "STREAM_MAX_RECONNECT_ATTEMPTS")
    @classmethod
    def non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be >= 0")
        return v


# Singleton instance
settings = Settings()
