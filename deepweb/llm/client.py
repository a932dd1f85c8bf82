"""
API client facade.

WHAT: Single entry point for chat, streaming, costing and provider metadata
WHY: Callers should not care which provider serves a request
HOW: Validate params, resolve provider from the registry, run the interceptor pipeline
"""

from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Optional, Union

import httpx
from pydantic import ValidationError as PydanticValidationError

from .interceptors import CacheInterceptor, InterceptorLike, InterceptorPipeline, LoggingInterceptor
from .registry import ProviderRegistry, build_default_registry
from .types import (
    ChatMessage,
    ChatResponse,
    ContentChunk,
    DoneChunk,
    ModelConfig,
    RequestParams,
    StreamChunk,
    Usage,
)
from .validation import mask_secret
from ..core.config import Settings, settings as default_settings
from ..utils.exceptions import ClientError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class APIClient:
    """
    Provider-agnostic chat client.

    Usage:
        async with create_client() as client:
            response = await client.chat(messages=[...], api_key="sk-...")
            async for chunk in client.stream(messages=[...], api_key="sk-..."):
                ...
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        pipeline: Optional[InterceptorPipeline] = None,
        settings: Optional[Settings] = None,
    ):
        self.registry = registry
        self.pipeline = pipeline or InterceptorPipeline()
        self.settings = settings or default_settings

    # ---- request preparation ----

    def _build_params(self, params: Optional[RequestParams], overrides: dict[str, Any], *, stream: bool) -> RequestParams:
        try:
            base = params.model_dump() if params is not None else {}
            return RequestParams(**{**base, **overrides, "stream": stream})
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or None
            raise ClientError.validation(
                f"Invalid request parameters: {first.get('msg')}",
                field=field,
                errors=[{"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in e.errors()],
            ) from e

    def _check_api_key(self, provider, request: RequestParams) -> None:
        if not provider.validate_api_key(request.api_key):
            raise ClientError.validation(
                "Invalid API key format",
                field="api_key",
                value=mask_secret(request.api_key),
            )

    def _enrich(self, error: ClientError, provider, request: RequestParams) -> ClientError:
        return error.with_context(
            endpoint=getattr(provider, "endpoint", None),
            model=request.model or getattr(provider, "default_model", None),
            provider=provider.name,
        )

    # ---- chat ----

    async def chat(self, params: Optional[RequestParams] = None, **kwargs: Any) -> ChatResponse:
        """
        Send a complete (non-streaming) chat request.

        Args:
            params: RequestParams, or pass the same fields as keyword arguments
            **kwargs: messages, api_key, model, provider, temperature, ...

        Returns:
            ChatResponse (possibly a cached copy)

        Raises:
            ClientError: validation errors before any I/O; provider errors enriched
                with endpoint, model and provider
        """
        request = self._build_params(params, kwargs, stream=False)
        provider = self.registry.get(request.provider)
        self._check_api_key(provider, request)

        processed = request
        try:
            processed = self.pipeline.apply_request(request)
            response = await provider.chat(processed.messages, **processed.provider_options())
            return self.pipeline.apply_response(response, processed)
        except Exception as error:
            substitute = self.pipeline.apply_error(error, processed)
            if substitute is not None:
                return substitute
            if isinstance(error, ClientError):
                self._enrich(error, provider, processed)
            raise

    # ---- stream ----

    async def stream(self, params: Optional[RequestParams] = None, **kwargs: Any) -> AsyncIterator[StreamChunk]:
        """
        Stream a chat response chunk by chunk.

        Every chunk passes through the stream interceptors. Breaking out of the
        loop (or closing the generator) cancels the underlying request.

        Raises:
            ClientError: validation errors before any I/O; API 501 when the
                provider cannot stream; provider errors enriched with context
        """
        request = self._build_params(params, kwargs, stream=True)
        provider = self.registry.get(request.provider)
        self._check_api_key(provider, request)

        capabilities = provider.get_capabilities()
        if not capabilities.streaming:
            raise ClientError.api(
                "Provider does not support streaming",
                501,
                {"provider": provider.name, "capabilities": asdict(capabilities)},
            )

        processed = request
        session = None
        try:
            processed = self.pipeline.apply_request(request)
            session = provider.stream(processed.messages, **processed.provider_options())
            async for chunk in session:
                yield self.pipeline.apply_stream(chunk, processed)

        except Exception as error:
            substitute = self.pipeline.apply_error(error, processed)
            if substitute is None:
                if isinstance(error, ClientError):
                    self._enrich(error, provider, processed)
                raise
            yield ContentChunk(text=substitute.content, accumulated_text=substitute.content)
            yield DoneChunk(usage=substitute.usage or Usage(), cost=substitute.cost, content=substitute.content)

        finally:
            if session is not None:
                await session.aclose()

    # ---- interceptors ----

    def add_request_interceptor(self, interceptor: InterceptorLike) -> Callable[[], None]:
        return self.pipeline.add_request_interceptor(interceptor)

    def add_response_interceptor(self, interceptor: InterceptorLike) -> Callable[[], None]:
        return self.pipeline.add_response_interceptor(interceptor)

    # ---- provider metadata ----

    def validate_api_key(self, api_key: Optional[str], provider: Optional[str] = None) -> bool:
        return self.registry.get(provider).validate_api_key(api_key)

    def calculate_cost(
        self,
        usage: Union[Usage, dict[str, Any], None],
        model: str,
        provider: Optional[str] = None,
    ) -> float:
        if isinstance(usage, dict):
            try:
                usage = Usage.from_api(usage)
            except ValueError as e:
                raise ClientError.validation(f"Invalid usage: {e}", field="usage") from e
        return self.registry.get(provider).calculate_cost(usage, model)

    def estimate_cost(self, messages: list[ChatMessage], model: str, provider: Optional[str] = None) -> dict[str, Any]:
        """Pre-flight cost range for a conversation; makes no network call."""
        return self.registry.get(provider).estimate_cost(messages, model)

    def list_providers(self) -> list[dict[str, Any]]:
        return [
            {
                "name": name,
                "capabilities": asdict(provider.get_capabilities()),
                "models": provider.list_models(),
            }
            for name, provider in self.registry.items()
        ]

    def list_models(self, provider: Optional[str] = None) -> list[dict[str, Any]]:
        return self.registry.get(provider).list_models()

    def get_model_info(self, model: str, provider: Optional[str] = None) -> Optional[ModelConfig]:
        return self.registry.get(provider).get_model_info(model)

    async def health_check(self, provider: Optional[str] = None, api_key: Optional[str] = None) -> dict[str, Any]:
        """
        Check one provider.

        Returns:
            {provider, status: healthy|unhealthy|error, timestamp, error?}
        """
        name = provider or self.registry.default
        timestamp = datetime.now(timezone.utc).isoformat()
        try:
            status = await self.registry.get(provider).health_check(api_key)
        except ClientError as e:
            logger.error(f"Health check for {name} failed: {e.message}")
            return {"provider": name, "status": "error", "error": e.message, "timestamp": timestamp}

        result = {
            "provider": name,
            "status": "healthy" if status.available else "unhealthy",
            "timestamp": timestamp,
        }
        if status.error:
            result["error"] = status.error
        return result

    def cancel_all_requests(self, provider: Optional[str] = None) -> int:
        """Cancel live requests on one provider (or all). Returns how many were cancelled."""
        if provider is not None:
            if provider not in self.registry:
                return 0
            return self.registry.get(provider).cancel_all_requests()
        return sum(p.cancel_all_requests() for _, p in self.registry.items())

    # ---- lifecycle ----

    async def aclose(self) -> None:
        await self.registry.aclose()

    async def __aenter__(self) -> "APIClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


def create_client(
    settings: Optional[Settings] = None,
    *,
    enable_logging: bool = True,
    enable_cache: Optional[bool] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> APIClient:
    """
    Build a client with the default registry and interceptors.

    Args:
        settings: Settings to use (module-level instance by default)
        enable_logging: Register the LoggingInterceptor
        enable_cache: Register the CacheInterceptor (defaults to CACHE_ENABLED)
        http_client: Shared httpx client for every provider
    """
    settings = settings or default_settings
    registry = build_default_registry(settings, client=http_client)
    pipeline = InterceptorPipeline()

    if enable_logging:
        pipeline.add(LoggingInterceptor(
            mask_sensitive=settings.LOG_MASK_SENSITIVE,
            max_content_length=settings.LOG_MAX_CONTENT_LENGTH,
        ))

    if settings.CACHE_ENABLED if enable_cache is None else enable_cache:
        pipeline.add(CacheInterceptor(
            ttl=settings.CACHE_TTL,
            max_size=settings.CACHE_MAX_SIZE,
            default_provider=settings.DEFAULT_PROVIDER,
        ))

    logger.info(f"API client created (providers: {', '.join(registry.names())}, interceptors: {len(pipeline)})")
    return APIClient(registry, pipeline=pipeline, settings=settings)
