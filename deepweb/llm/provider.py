"""
LLM provider protocol definition.

WHAT: Interface every chat provider implements
WHY: Decouple the API client from specific provider implementations
HOW: Protocol with async chat/health methods and sync metadata methods
"""

from typing import Any, Optional, Protocol

from .stream_session import StreamSession
from .types import (
    ChatMessage,
    ChatResponse,
    ModelConfig,
    ProviderCapabilities,
    ProviderStatus,
    Usage,
)


class LLMProvider(Protocol):
    """Protocol defining the interface all LLM providers must implement."""

    name: str
    endpoint: str

    async def chat(self, messages: list[ChatMessage], *, api_key: str, **options: Any) -> ChatResponse:
        """Send a complete (non-streaming) chat request."""
        ...

    def stream(self, messages: list[ChatMessage], *, api_key: str, **options: Any) -> StreamSession:
        """Open a streaming chat request; iterate the session for chunks."""
        ...

    async def health_check(self, api_key: Optional[str] = None) -> ProviderStatus:
        """Check provider reachability."""
        ...

    async def close(self) -> None:
        ...

    def validate_api_key(self, key: Optional[str]) -> bool:
        ...

    def calculate_cost(self, usage: Optional[Usage], model: str) -> float:
        ...

    def estimate_cost(self, messages: list[ChatMessage], model: str) -> dict[str, Any]:
        ...

    def get_capabilities(self) -> ProviderCapabilities:
        ...

    def list_models(self) -> list[dict[str, Any]]:
        ...

    def get_model_info(self, model_id: str) -> Optional[ModelConfig]:
        ...

    def cancel_request(self, request_id: str) -> bool:
        ...

    def cancel_all_requests(self) -> int:
        ...
