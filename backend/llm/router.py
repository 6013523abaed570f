"""Provider instance cache.

Provider clients hold HTTP connection pools and are expensive to build, so
one instance is kept per (vendor, model, credentials, generation settings).
"""

import hashlib
import threading

import structlog

from config import settings
from llm.anthropic_provider import AnthropicProvider
from llm.base import LLMProvider
from llm.errors import ProviderConfigurationError
from llm.gemini_provider import GeminiProvider
from llm.mock_provider import DEFAULT_MOCK_TEXT, MockProvider
from llm.openai_provider import OpenAIProvider
from llm.types import LLMConfig

logger = structlog.get_logger()

PROVIDER_CLASSES: dict[str, type[AnthropicProvider | OpenAIProvider | GeminiProvider]] = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "google": GeminiProvider,
}


def _key_fingerprint(api_key: str | None) -> str:
    if not api_key:
        return "env"
    return hashlib.sha256(api_key.encode()).hexdigest()[:16]


def cache_key(config: LLMConfig) -> str:
    """Cache key ``provider:model:key-or-env:max_tokens:temperature``."""
    return (
        f"{config.provider}:{config.model}:{_key_fingerprint(config.api_key)}"
        f":{config.max_tokens}:{config.temperature}"
    )


class ProviderRouter:
    """Returns cached provider instances for model configurations.

    Attributes:
        use_mock: When True every lookup returns the mock provider
    """

    def __init__(
        self,
        use_mock: bool | None = None,
        mock_provider: MockProvider | None = None,
    ) -> None:
        self.use_mock = settings.use_mock_llm if use_mock is None else use_mock
        self._mock_provider = mock_provider
        self._cache: dict[str, LLMProvider] = {}
        self._lock = threading.Lock()

    def get_provider(self, config: LLMConfig) -> LLMProvider:
        """Return the provider serving ``config``, building it on first use.

        Raises:
            ProviderConfigurationError: Unknown vendor or no credentials.
        """
        if self.use_mock:
            if self._mock_provider is None:
                self._mock_provider = MockProvider(config, default_text=DEFAULT_MOCK_TEXT)
            return self._mock_provider

        provider_cls = PROVIDER_CLASSES.get(config.provider)
        if provider_cls is None:
            raise ProviderConfigurationError(
                f"Unknown provider: {config.provider}", provider=config.provider
            )

        key = cache_key(config)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

            api_key = config.api_key or settings.api_key_for(config.provider)
            if not api_key:
                raise ProviderConfigurationError(
                    f"No API key configured for provider '{config.provider}'",
                    provider=config.provider,
                )
            provider = provider_cls(config, api_key=api_key)
            self._cache[key] = provider

        logger.info("provider_created", provider=config.provider, model=config.model)
        return provider

    def invalidate(self) -> None:
        """Drop every cached provider instance."""
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
        logger.info("provider_cache_invalidated", evicted=count)

    @property
    def cached_count(self) -> int:
        with self._lock:
            return len(self._cache)


# Global router instance
_router: ProviderRouter | None = None
_router_lock = threading.Lock()


def get_provider_router() -> ProviderRouter:
    """Get the global ProviderRouter, creating it on first call."""
    global _router
    if _router is None:
        with _router_lock:
            if _router is None:
                _router = ProviderRouter()
    return _router


def reset_provider_router() -> None:
    """Reset the global ProviderRouter (used by tests)."""
    global _router
    with _router_lock:
        _router = None
