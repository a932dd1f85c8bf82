"""
Pytest configuration and shared fixtures.

WHAT: Markers, test settings and canned DeepSeek payloads
WHY: Keep unit tests isolated from the environment and from the network
HOW: Explicit Settings with zero delays, SSE helpers, mock-transport factories
"""

import json
from typing import Any, Callable

import httpx
import pytest

from deepweb.core.config import Settings


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (isolated component tests)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (client + provider + interceptors)"
    )
    config.addinivalue_line(
        "markers", "streaming: Tests that exercise SSE stream handling"
    )


VALID_API_KEY = "sk-" + "a1b2c3d4e5f6" * 3
BASE_URL = "https://api.deepseek.test/v1"
CHAT_URL = f"{BASE_URL}/chat/completions"


@pytest.fixture
def test_settings() -> Settings:
    """
    Settings for tests.

    WHAT: Deterministic configuration
    WHY: No sleeping between retries/reconnects, no .env leakage
    HOW: Explicit values for every timing knob
    """
    return Settings(
        _env_file=None,
        DEEPSEEK_BASE_URL=BASE_URL,
        LLM_TIMEOUT=5,
        LLM_MAX_RETRIES=3,
        LLM_RETRY_DELAY=0.0,
        LLM_MAX_RETRY_DELAY=0.0,
        STREAM_MAX_RECONNECT_ATTEMPTS=2,
        STREAM_RECONNECT_DELAY=0.0,
        RATE_LIMIT_INTERVAL=0.0,
        RATE_LIMIT_MAX_PER_HOUR=0,
        CACHE_ENABLED=False,
        LOG_LEVEL="DEBUG",
    )


# ---- payloads ----

MOCK_CHAT_RESPONSE = {
    "id": "chatcmpl-123",
    "model": "deepseek-chat",
    "choices": [{"index": 0, "message": {"role": "assistant", "content": "Hi there"}, "finish_reason": "stop"}],
    "usage": {"prompt_tokens": 5, "completion_tokens": 3, "total_tokens": 8},
}

MOCK_MODELS_RESPONSE = {
    "object": "list",
    "data": [
        {"id": "deepseek-chat", "object": "model"},
        {"id": "deepseek-coder", "object": "model"},
    ],
}

HELLO_MESSAGES = [{"role": "user", "content": "Hello"}]


def sse(payload: Any) -> bytes:
    """Encode one SSE data frame."""
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return f"data: {data}\n\n".encode("utf-8")


def delta(text: str, finish_reason: str | None = None) -> dict:
    return {"choices": [{"index": 0, "delta": {"content": text}, "finish_reason": finish_reason}]}


def usage_frame(prompt: int, completion: int) -> dict:
    return {
        "choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": prompt, "completion_tokens": completion, "total_tokens": prompt + completion},
    }


class DroppedConnection(httpx.ReadError):
    """Raised mid-body to simulate the server dropping the stream."""


def streaming_response(parts: list[bytes], *, drop: bool = False, status_code: int = 200) -> httpx.Response:
    """
    Build a streaming response whose body arrives in the given byte parts.

    Args:
        parts: Body pieces, delivered one network read at a time
        drop: Raise a ReadError after the last part instead of ending cleanly
    """

    async def body():
        for part in parts:
            yield part
        if drop:
            raise DroppedConnection("connection reset by peer")

    return httpx.Response(status_code, headers={"content-type": "text/event-stream"}, content=body())


@pytest.fixture
def mock_transport_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Factory for httpx clients backed by a request handler."""

    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory
