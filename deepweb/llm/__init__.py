"""LLM provider layer."""

from .types import (
    ChatMessage,
    RequestParams,
    ModelConfig,
    Pricing,
    Usage,
    ChatResponse,
    StreamChunk,
    ContentChunk,
    FinishChunk,
    DoneChunk,
    ErrorChunk,
    ReconnectingChunk,
    CancelledChunk,
    RetryChunk,
    EventChunk,
    ProviderCapabilities,
    ProviderStatus,
)
from .provider import LLMProvider
from .deepseek import DeepSeekProvider
from .stream_session import SessionState, StreamSession
from .interceptors import CacheHit, CacheInterceptor, Hook, Interceptor, InterceptorPipeline, LoggingInterceptor
from .registry import ProviderRegistry, build_default_registry
from .client import APIClient, create_client

__all__ = [
    "ChatMessage",
    "RequestParams",
    "ModelConfig",
    "Pricing",
    "Usage",
    "ChatResponse",
    "StreamChunk",
    "ContentChunk",
    "FinishChunk",
    "DoneChunk",
    "ErrorChunk",
    "ReconnectingChunk",
    "CancelledChunk",
    "RetryChunk",
    "EventChunk",
    "ProviderCapabilities",
    "ProviderStatus",
    "LLMProvider",
    "DeepSeekProvider",
    "SessionState",
    "StreamSession",
    "CacheHit",
    "CacheInterceptor",
    "Hook",
    "Interceptor",
    "InterceptorPipeline",
    "LoggingInterceptor",
    "ProviderRegistry",
    "build_default_registry",
    "APIClient",
    "create_client",
]
