"""
LLM provider types and dataclasses.

WHAT: Standard type definitions for chat requests, responses and stream chunks
WHY: Ensure consistent contracts across providers, client and interceptors
HOW: TypedDict for messages, pydantic for request params, dataclasses for results
"""

import math
import time
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Literal, Optional, TypedDict

from pydantic import BaseModel, ConfigDict, Field

from .cancellation import CancelToken


# Message format compatible with OpenAI-style APIs
ChatMessage = TypedDict(
    "ChatMessage",
    {"role": Literal["system", "user", "assistant"], "content": str}
)


class RequestParams(BaseModel):
    """
    Parameters of one chat call.

    Frozen: interceptors return updated copies via model_copy(update=...).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    messages: list[dict[str, Any]] = Field(..., min_length=1)
    api_key: str
    model: Optional[str] = None
    provider: Optional[str] = None
    temperature: Optional[float] = Field(None, ge=0, le=2)
    max_tokens: Optional[int] = Field(None, gt=0)
    top_p: Optional[float] = Field(None, ge=0, le=1)
    frequency_penalty: Optional[float] = Field(None, ge=-2, le=2)
    presence_penalty: Optional[float] = Field(None, ge=-2, le=2)
    stop_sequences: Optional[list[str]] = None
    timeout: Optional[float] = Field(None, gt=0)
    no_cache: bool = False
    stream: bool = False
    context: dict[str, Any] = Field(default_factory=dict)

    def provider_options(self) -> dict[str, Any]:
        """Keyword arguments for Provider.chat / Provider.stream."""
        return {
            "api_key": self.api_key,
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "top_p": self.top_p,
            "frequency_penalty": self.frequency_penalty,
            "presence_penalty": self.presence_penalty,
            "stop": self.stop_sequences,
            "timeout": self.timeout,
        }

    def with_context(self, **values) -> "RequestParams":
        return self.model_copy(update={"context": {**self.context, **values}})


@dataclass(frozen=True)
class Pricing:
    """USD per 1K tokens."""
    input: float
    output: float


@dataclass(frozen=True)
class ModelConfig:
    """Static model metadata loaded from provider configuration."""
    id: str
    name: str
    temperature: float
    max_tokens: int
    pricing: Optional[Pricing] = None
    description: str = ""

    @classmethod
    def from_dict(cls, model_id: str, data: dict[str, Any]) -> "ModelConfig":
        pricing = data.get("pricing")
        return cls(
            id=model_id,
            name=data.get("name", model_id),
            description=data.get("description", ""),
            temperature=float(data.get("temperature", 0.7)),
            max_tokens=int(data.get("max_tokens", 4000)),
            pricing=Pricing(float(pricing["input"]), float(pricing["output"])) if pricing else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _token_count(data: dict[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    # bool is an int subclass but never a token count
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number, got {value!r}")
    return int(value)


@dataclass(frozen=True)
class Usage:
    """Token usage for one exchange."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    incomplete: bool = False  # locally estimated, not reported by the backend

    @classmethod
    def from_api(cls, data: Any) -> Optional["Usage"]:
        """
        Parse a `usage` object from an API payload.

        Returns:
            Usage, or None when the payload carries no usage

        Raises:
            ValueError: usage is not an object or a token count is not a number
        """
        if not data:
            return None
        if not isinstance(data, dict):
            raise ValueError(f"usage must be an object, got {type(data).__name__}")
        prompt = _token_count(data, "prompt_tokens")
        completion = _token_count(data, "completion_tokens")
        total = _token_count(data, "total_tokens") or prompt + completion
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)

    @classmethod
    def estimate(cls, text: str) -> "Usage":
        """Rough fallback: 4 characters per token, prompt assumed equal to completion."""
        tokens = math.ceil(len(text) / 4)
        return cls(prompt_tokens=tokens, completion_tokens=tokens, total_tokens=tokens * 2, incomplete=True)

    def to_api(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class ChatResponse:
    """Complete (non-streaming) chat result."""
    content: str
    model: str
    usage: Optional[Usage] = None
    cost: float = 0.0
    finish_reason: Optional[str] = None
    request_id: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)
    cached: bool = False


# ---- Stream chunks ----

@dataclass(frozen=True)
class StreamChunk:
    """Base for every chunk yielded by a streaming call."""
    type: ClassVar[str] = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **asdict(self)}


@dataclass(frozen=True)
class ContentChunk(StreamChunk):
    type: ClassVar[str] = "content"
    text: str
    accumulated_text: str


@dataclass(frozen=True)
class FinishChunk(StreamChunk):
    type: ClassVar[str] = "finish"
    reason: str


@dataclass(frozen=True)
class DoneChunk(StreamChunk):
    type: ClassVar[str] = "done"
    usage: Usage
    cost: float
    content: str
    incomplete: bool = False


@dataclass(frozen=True)
class ErrorChunk(StreamChunk):
    type: ClassVar[str] = "error"
    message: str
    recoverable: bool = True


@dataclass(frozen=True)
class ReconnectingChunk(StreamChunk):
    type: ClassVar[str] = "reconnecting"
    attempt: int


@dataclass(frozen=True)
class CancelledChunk(StreamChunk):
    type: ClassVar[str] = "cancelled"
    partial_content: str
    reason: str = "cancelled"


@dataclass(frozen=True)
class RetryChunk(StreamChunk):
    type: ClassVar[str] = "retry"
    delay_ms: int


@dataclass(frozen=True)
class EventChunk(StreamChunk):
    type: ClassVar[str] = "event"
    event: str


@dataclass
class ProviderCapabilities:
    """What a provider supports; consulted before streaming."""
    streaming: bool
    models: list[str]
    max_tokens: int
    features: list[str] = field(default_factory=list)


@dataclass
class ProviderStatus:
    """Health status of an LLM provider."""
    available: bool
    base_url: str
    models: list[str] | None = None
    error: str | None = None


@dataclass
class ActiveRequest:
    """A live request and the token that cancels it."""
    request_id: str
    token: CancelToken
    started_at: float = field(default_factory=time.monotonic)
