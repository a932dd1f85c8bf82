"""
DeepSeek provider implementation.

WHAT: Chat completions against the DeepSeek REST/SSE API
WHY: Default backend of the chat assistant
HOW: OpenAI-compatible body, retrying POST for chat, StreamSession for SSE
"""

from typing import Any, Iterable, Optional

import httpx

from .base import BaseProvider
from .costs import calculate_cost, estimate_cost
from .stream_session import StreamSession
from .types import ChatMessage, ChatResponse, ModelConfig, ProviderCapabilities, Usage
from .validation import prepare_messages, validate_api_key
from ..core.config import Settings, settings as default_settings
from ..utils.exceptions import ClientError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class DeepSeekProvider(BaseProvider):
    """DeepSeek chat provider with streaming and reconnection."""

    name = "deepseek"
    features = ["chat", "code-generation", "reasoning", "function-calling"]

    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None):
        """Initialize DeepSeek provider from settings (model table, endpoint, retries)."""
        settings = settings or default_settings
        super().__init__(base_url=settings.DEEPSEEK_BASE_URL, settings=settings, client=client)
        self.models: dict[str, ModelConfig] = {
            model_id: ModelConfig.from_dict(model_id, data)
            for model_id, data in self.settings.DEEPSEEK_MODELS.items()
        }
        self.default_model = self.settings.DEFAULT_MODEL
        logger.info(f"DeepSeek provider initialized (models: {', '.join(self.models)}, default: {self.default_model})")

    # ---- request building ----

    def resolve_model(self, model: Optional[str]) -> ModelConfig:
        """
        Look up a model in the provider's table.

        Raises:
            ClientError: (validation) for unknown model ids; no request is made
        """
        model_id = model or self.default_model
        config = self.models.get(model_id)
        if config is None:
            raise ClientError.validation(
                f"Invalid model specified: {model_id}",
                field="model",
                value=model_id,
                valid_models=list(self.models),
            )
        return config

    def build_body(
        self,
        messages: Iterable[Any],
        model: ModelConfig,
        *,
        stream: bool,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
        frequency_penalty: Optional[float] = None,
        presence_penalty: Optional[float] = None,
        stop: Optional[list[str]] = None,
    ) -> dict[str, Any]:
        """Request body; explicit options override model defaults, which override settings."""
        body = {
            "model": model.id,
            "messages": prepare_messages(messages),
            "temperature": temperature if temperature is not None else model.temperature,
            "max_tokens": max_tokens if max_tokens is not None else model.max_tokens,
            "top_p": top_p if top_p is not None else self.settings.LLM_DEFAULT_TOP_P,
            "frequency_penalty": (
                frequency_penalty if frequency_penalty is not None else self.settings.LLM_DEFAULT_FREQUENCY_PENALTY
            ),
            "presence_penalty": (
                presence_penalty if presence_penalty is not None else self.settings.LLM_DEFAULT_PRESENCE_PENALTY
            ),
            "stream": stream,
        }
        if stop:
            body["stop"] = list(stop)
        return body

    # ---- chat ----

    async def chat(
        self,
        messages: list[ChatMessage],
        *,
        api_key: str,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
        frequency_penalty: Optional[float] = None,
        presence_penalty: Optional[float] = None,
        stop: Optional[list[str]] = None,
        timeout: Optional[float] = None,
    ) -> ChatResponse:
        """
        Generate a complete response (non-streaming).

        Args:
            messages: Conversation history
            api_key: Bearer token for the API
            model: Model id (falls back to DEFAULT_MODEL)
            temperature / max_tokens / top_p / penalties: Override model defaults
            stop: Optional stop sequences
            timeout: Deadline in seconds for the whole call, retries included

        Returns:
            ChatResponse with content, usage and cost

        Raises:
            ClientError: validation (bad model/messages), api, network, timeout, cancelled
        """
        model_config = self.resolve_model(model)
        body = self.build_body(
            messages,
            model_config,
            stream=False,
            temperature=temperature,
            max_tokens=max_tokens,
            top_p=top_p,
            frequency_penalty=frequency_penalty,
            presence_penalty=presence_penalty,
            stop=stop,
        )
        request_id = self.generate_request_id()
        logger.debug(f"DeepSeek chat {request_id}: model={model_config.id}, messages={len(body['messages'])}")

        data = await self._post_json(self.endpoint, body, api_key=api_key, request_id=request_id, timeout=timeout)
        self.validate_response(data)

        choice = data["choices"][0]
        try:
            usage = Usage.from_api(data.get("usage"))
        except ValueError as e:
            raise ClientError.api(f"Invalid response: {e}", 500, {"response": data}) from e
        cost = calculate_cost(usage, model_config)

        logger.info(
            f"DeepSeek chat success (model: {data.get('model', model_config.id)}, "
            f"tokens: {usage.total_tokens if usage else 'unknown'}, cost: ${cost})"
        )

        return ChatResponse(
            content=choice["message"]["content"],
            model=data.get("model", model_config.id),
            usage=usage,
            cost=cost,
            finish_reason=choice.get("finish_reason"),
            request_id=request_id,
            raw=data,
        )

    def validate_response(self, data: dict[str, Any]) -> None:
        """
        Raises:
            ClientError: (api, 500) when choices[0].message.content is missing
        """
        choices = data.get("choices")
        if not isinstance(choices, list):
            raise ClientError.api("Invalid response: missing choices array", 500, {"response": data})
        if not choices:
            raise ClientError.api("Invalid response: empty choices array", 500, {"response": data})
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        if not isinstance(message, dict) or not message.get("content"):
            raise ClientError.api("Invalid response: missing message content", 500, {"response": data})
        if not isinstance(message["content"], str):
            raise ClientError.api("Invalid response: message content is not a string", 500, {"response": data})

    # ---- stream ----

    def stream(
        self,
        messages: list[ChatMessage],
        *,
        api_key: str,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
        frequency_penalty: Optional[float] = None,
        presence_penalty: Optional[float] = None,
        stop: Optional[list[str]] = None,
        timeout: Optional[float] = None,
    ) -> StreamSession:
        """
        Open a streaming request. Validation happens here; network I/O starts on first iteration.

        Returns:
            StreamSession yielding content/finish/.../done chunks

        Raises:
            ClientError: (validation) for unknown model or empty messages
        """
        model_config = self.resolve_model(model)
        body = self.build_body(
            messages,
            model_config,
            stream=True,
            temperature=temperature,
            max_tokens=max_tokens,
            top_p=top_p,
            frequency_penalty=frequency_penalty,
            presence_penalty=presence_penalty,
            stop=stop,
        )
        request_id = self.generate_request_id()
        logger.debug(f"DeepSeek stream {request_id}: model={model_config.id}, messages={len(body['messages'])}")

        return StreamSession(
            self,
            body,
            api_key=api_key,
            model=model_config,
            request_id=request_id,
            max_reconnect_attempts=self.settings.STREAM_MAX_RECONNECT_ATTEMPTS,
            reconnect_delay=self.settings.STREAM_RECONNECT_DELAY,
            continue_prompt=self.settings.STREAM_CONTINUE_PROMPT,
            timeout=timeout or self.settings.LLM_STREAM_TIMEOUT,
        )

    # ---- metadata ----

    def validate_api_key(self, key: Optional[str]) -> bool:
        return validate_api_key(key, self.settings)

    def calculate_cost(self, usage: Optional[Usage], model: str) -> float:
        return calculate_cost(usage, self.models.get(model))

    def estimate_cost(self, messages: list[ChatMessage], model: str) -> dict[str, Any]:
        return estimate_cost(messages, self.models.get(model))

    def get_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            streaming=True,
            models=list(self.models),
            max_tokens=self.settings.DEEPSEEK_CONTEXT_TOKENS,
            features=list(self.features),
        )

    def get_model_info(self, model_id: str) -> Optional[ModelConfig]:
        return self.models.get(model_id)

    def list_models(self) -> list[dict[str, Any]]:
        return [
            {
                "id": config.id,
                "name": config.name,
                "description": config.description,
                "max_tokens": config.max_tokens,
                "pricing": {"input": config.pricing.input, "output": config.pricing.output} if config.pricing else None,
            }
            for config in self.models.values()
        ]
