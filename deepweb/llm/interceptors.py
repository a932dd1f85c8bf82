"""
Request/response interceptors.

WHAT: Pluggable hooks around every chat and stream call
WHY: Logging and caching without the providers knowing about them
HOW: Interceptors declare their hooks as a Flag; the pipeline reads it once at registration

All hooks are synchronous; they run between network suspension points.
"""

import copy
import dataclasses
import enum
import hashlib
import json
import time
from collections import OrderedDict
from typing import Any, Callable, ClassVar, Optional, Union

from .types import ChatResponse, ContentChunk, RequestParams, StreamChunk
from .validation import mask_secret
from ..utils.exceptions import ClientError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class Hook(enum.Flag):
    NONE = 0
    REQUEST = enum.auto()
    RESPONSE = enum.auto()
    STREAM = enum.auto()
    ERROR = enum.auto()


RESPONSE_SIDE = Hook.RESPONSE | Hook.STREAM | Hook.ERROR


class CacheHit(Exception):
    """Raised by a request hook to short-circuit the call with a stored response."""

    def __init__(self, response: ChatResponse):
        super().__init__("cache hit")
        self.response = response


class Interceptor:
    """
    Base class for interceptors.

    Subclasses set `hooks` to the hooks they implement and override the
    matching methods. Only declared hooks are ever called.
    """

    hooks: ClassVar[Hook] = Hook.NONE

    def on_request(self, request: RequestParams) -> RequestParams:
        return request

    def on_response(self, response: ChatResponse, request: RequestParams) -> ChatResponse:
        return response

    def on_stream(self, chunk: StreamChunk, request: RequestParams) -> StreamChunk:
        return chunk

    def on_error(self, error: Exception, request: RequestParams) -> Optional[ChatResponse]:
        """Return a substitute response to recover, or None to let the error propagate."""
        return None


class FunctionInterceptor(Interceptor):
    """Adapts a plain callable into a single-hook interceptor."""

    def __init__(self, func: Callable, hook: Hook):
        self.func = func
        self.hook = hook

    def on_request(self, request):
        return self.func(request)

    def on_response(self, response, request):
        return self.func(response, request)

    def __repr__(self) -> str:
        return f"FunctionInterceptor({getattr(self.func, '__name__', self.func)!r}, {self.hook})"


InterceptorLike = Union[Interceptor, Callable]


def _hooks_of(interceptor: Interceptor) -> Hook:
    if isinstance(interceptor, FunctionInterceptor):
        return interceptor.hook
    return type(interceptor).hooks


class InterceptorPipeline:
    """Ordered request and response interceptor chains."""

    def __init__(self):
        self._request: list[tuple[Interceptor, Hook]] = []
        self._response: list[tuple[Interceptor, Hook]] = []

    def _register(
        self,
        chain: list[tuple[Interceptor, Hook]],
        interceptor: InterceptorLike,
        required: Hook,
        func_hook: Hook,
    ) -> Callable[[], None]:
        if not isinstance(interceptor, Interceptor):
            if not callable(interceptor):
                raise ClientError.validation(
                    "Interceptor must be an Interceptor or a callable",
                    field="interceptor",
                    value=type(interceptor).__name__,
                )
            interceptor = FunctionInterceptor(interceptor, func_hook)

        hooks = _hooks_of(interceptor)
        if not hooks & required:
            raise ClientError.validation(
                f"{type(interceptor).__name__} declares none of the hooks {required}",
                field="interceptor",
                value=type(interceptor).__name__,
            )

        entry = (interceptor, hooks)
        chain.append(entry)
        logger.debug(f"Registered interceptor {interceptor!r} (hooks: {hooks})")

        def remove() -> None:
            for index, existing in enumerate(chain):
                if existing is entry:
                    del chain[index]
                    return

        return remove

    def add_request_interceptor(self, interceptor: InterceptorLike) -> Callable[[], None]:
        """
        Register a request hook. A plain callable is treated as `request -> request`.

        Returns:
            Function that removes this registration
        """
        return self._register(self._request, interceptor, Hook.REQUEST, Hook.REQUEST)

    def add_response_interceptor(self, interceptor: InterceptorLike) -> Callable[[], None]:
        """
        Register response/stream/error hooks. A plain callable is treated as
        `(response, request) -> response`.

        Returns:
            Function that removes this registration
        """
        return self._register(self._response, interceptor, RESPONSE_SIDE, Hook.RESPONSE)

    def add(self, interceptor: Interceptor) -> Callable[[], None]:
        """Register an interceptor object on every chain its hooks belong to."""
        hooks = _hooks_of(interceptor)
        removers = []
        if hooks & Hook.REQUEST:
            removers.append(self.add_request_interceptor(interceptor))
        if hooks & RESPONSE_SIDE:
            removers.append(self.add_response_interceptor(interceptor))
        if not removers:
            raise ClientError.validation(
                f"{type(interceptor).__name__} declares no hooks",
                field="interceptor",
                value=type(interceptor).__name__,
            )

        def remove() -> None:
            for remover in removers:
                remover()

        return remove

    def apply_request(self, request: RequestParams) -> RequestParams:
        for interceptor, hooks in list(self._request):
            if hooks & Hook.REQUEST:
                result = interceptor.on_request(request)
                if result is not None:
                    request = result
        return request

    def apply_response(self, response: ChatResponse, request: RequestParams) -> ChatResponse:
        for interceptor, hooks in list(self._response):
            if hooks & Hook.RESPONSE:
                result = interceptor.on_response(response, request)
                if result is not None:
                    response = result
        return response

    def apply_stream(self, chunk: StreamChunk, request: RequestParams) -> StreamChunk:
        for interceptor, hooks in list(self._response):
            if hooks & Hook.STREAM:
                result = interceptor.on_stream(chunk, request)
                if result is not None:
                    chunk = result
        return chunk

    def apply_error(self, error: Exception, request: RequestParams) -> Optional[ChatResponse]:
        """First non-None substitute wins; None means the error should propagate."""
        for interceptor, hooks in list(self._response):
            if hooks & Hook.ERROR:
                substitute = interceptor.on_error(error, request)
                if substitute is not None:
                    return substitute
        return None

    def clear(self) -> None:
        self._request.clear()
        self._response.clear()

    def __len__(self) -> int:
        return len(self._request) + len(self._response)


class LoggingInterceptor(Interceptor):
    """Logs requests, responses, the first streamed chunk and errors."""

    hooks = Hook.REQUEST | Hook.RESPONSE | Hook.STREAM | Hook.ERROR

    def __init__(self, mask_sensitive: bool = True, max_content_length: int = 500):
        self.mask_sensitive = mask_sensitive
        self.max_content_length = max_content_length

    def _options(self, request: RequestParams) -> dict[str, Any]:
        options = request.model_dump(exclude={"messages", "context"}, exclude_none=True)
        if self.mask_sensitive:
            options["api_key"] = mask_secret(request.api_key)
        return options

    def on_request(self, request: RequestParams) -> RequestParams:
        logger.info(
            f"API request: provider={request.provider or 'default'}, model={request.model or 'default'}, "
            f"messages={len(request.messages)}, options={self._options(request)}"
        )
        return request.with_context(started_at=time.monotonic())

    def on_response(self, response: ChatResponse, request: RequestParams) -> ChatResponse:
        usage = response.usage.to_api() if response.usage else None
        logger.info(
            f"API response: provider={request.provider or 'default'}, model={response.model}, "
            f"duration={_duration(request)}, usage={usage}, cost={response.cost}, "
            f"content_length={len(response.content)}"
        )
        return response

    def on_stream(self, chunk: StreamChunk, request: RequestParams) -> StreamChunk:
        if isinstance(chunk, ContentChunk) and chunk.accumulated_text == chunk.text:
            logger.debug(
                f"Stream started: provider={request.provider or 'default'}, model={request.model or 'default'}, "
                f"first chunk={chunk.text[:self.max_content_length]!r}"
            )
        return chunk

    def on_error(self, error: Exception, request: RequestParams) -> None:
        if isinstance(error, CacheHit):
            return None
        if isinstance(error, ClientError):
            details = f"{error.code} (status {error.status_code}): {error.message}"
        else:
            details = f"{type(error).__name__}: {error}"
        logger.error(
            f"API error: provider={request.provider or 'default'}, model={request.model or 'default'}, "
            f"duration={_duration(request)}, {details}"
        )
        return None


def _duration(request: RequestParams) -> str:
    started = request.context.get("started_at")
    if started is None:
        return "unknown"
    return f"{(time.monotonic() - started) * 1000:.0f}ms"


class CacheInterceptor(Interceptor):
    """
    In-memory response cache for identical non-streaming requests.

    Entries expire after `ttl` seconds; when full, the oldest entry is evicted.
    Stored and returned responses are deep copies.
    """

    hooks = Hook.REQUEST | Hook.RESPONSE | Hook.ERROR

    def __init__(
        self,
        ttl: float = 300.0,
        max_size: int = 100,
        default_provider: str = "deepseek",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.max_size = max_size
        self.default_provider = default_provider
        self._clock = clock
        self._entries: "OrderedDict[str, tuple[float, ChatResponse]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def cache_key(self, request: RequestParams) -> str:
        key_data = {
            "provider": request.provider or self.default_provider,
            "model": request.model,
            "messages": [{"role": m.get("role"), "content": m.get("content")} for m in request.messages],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "top_p": request.top_p,
            "frequency_penalty": request.frequency_penalty,
            "presence_penalty": request.presence_penalty,
            "stop": request.stop_sequences,
            # Responses are never served across credentials
            "credential": hashlib.sha256(request.api_key.encode("utf-8")).hexdigest(),
        }
        digest = hashlib.sha256(json.dumps(key_data, sort_keys=True, default=str).encode("utf-8")).hexdigest()
        return f"{key_data['provider']}-{request.model}-{digest}"

    def _skip(self, request: RequestParams) -> bool:
        return request.no_cache or request.stream

    def _expired(self, stored_at: float) -> bool:
        return self._clock() - stored_at > self.ttl

    def on_request(self, request: RequestParams) -> RequestParams:
        if self._skip(request):
            return request

        key = self.cache_key(request)
        entry = self._entries.get(key)
        if entry is not None:
            stored_at, response = entry
            if not self._expired(stored_at):
                self.hits += 1
                logger.debug(f"Cache hit for {key[:40]}")
                raise CacheHit(dataclasses.replace(copy.deepcopy(response), cached=True))
            del self._entries[key]

        self.misses += 1
        return request.with_context(cache_key=key)

    def on_response(self, response: ChatResponse, request: RequestParams) -> ChatResponse:
        key = request.context.get("cache_key")
        if self._skip(request) or not key or response.cached or not response.content:
            return response

        if key not in self._entries and len(self._entries) >= self.max_size:
            self._entries.popitem(last=False)
        self._entries[key] = (self._clock(), copy.deepcopy(response))
        return response

    def on_error(self, error: Exception, request: RequestParams) -> Optional[ChatResponse]:
        if isinstance(error, CacheHit):
            logger.info("Returning cached response")
            return error.response
        return None

    def prune(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        expired = [key for key, (stored_at, _) in self._entries.items() if self._expired(stored_at)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def stats(self) -> dict[str, Any]:
        total = self.hits + self.misses
        hit_rate = self.hits / total if total else 0.0
        return {
            "size": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": f"{hit_rate * 100:.2f}%",
            "max_size": self.max_size,
            "ttl": self.ttl,
        }
