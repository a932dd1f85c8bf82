"""
Provider registry.

WHAT: Named set of configured chat providers
WHY: One place to look providers up without module-level singletons
HOW: Plain dict built once at startup and passed to the API client
"""

from typing import TYPE_CHECKING, Iterator, Optional

from ..core.config import Settings, settings as default_settings
from ..utils.exceptions import ClientError
from ..utils.logger import get_logger

if TYPE_CHECKING:
    import httpx

    from .provider import LLMProvider

logger = get_logger(__name__)


class ProviderRegistry:
    """Registry of providers keyed by name."""

    def __init__(self, default: Optional[str] = None):
        self.default = default
        self._providers: dict[str, "LLMProvider"] = {}

    def register(self, name: str, provider: "LLMProvider") -> None:
        if name in self._providers:
            logger.warning(f"Replacing registered provider: {name}")
        self._providers[name] = provider
        if self.default is None:
            self.default = name
        logger.info(f"LLM provider registered: {name}")

    def get(self, name: Optional[str] = None) -> "LLMProvider":
        """
        Look up a provider, falling back to the default.

        Raises:
            ClientError: (validation, CONFIGURATION_ERROR) for unknown names
        """
        key = name or self.default
        provider = self._providers.get(key) if key else None
        if provider is None:
            raise ClientError.configuration(
                "Invalid provider specified",
                field="provider",
                value=key,
                valid_providers=self.names(),
            )
        return provider

    def names(self) -> list[str]:
        return list(self._providers)

    def items(self) -> Iterator[tuple[str, "LLMProvider"]]:
        return iter(list(self._providers.items()))

    def __contains__(self, name: str) -> bool:
        return name in self._providers

    def __len__(self) -> int:
        return len(self._providers)

    async def aclose(self) -> None:
        """Close every provider's HTTP resources."""
        for name, provider in self.items():
            await provider.close()
            logger.debug(f"Closed provider: {name}")


def build_default_registry(
    settings: Optional[Settings] = None,
    client: Optional["httpx.AsyncClient"] = None,
) -> ProviderRegistry:
    """
    Registry with the built-in providers.

    Args:
        settings: Settings to configure providers with
        client: Shared httpx client (for tests); providers create their own otherwise
    """
    from .deepseek import DeepSeekProvider

    settings = settings or default_settings
    registry = ProviderRegistry(default=settings.DEFAULT_PROVIDER)
    registry.register("deepseek", DeepSeekProvider(settings=settings, client=client))
    return registry
