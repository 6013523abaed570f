"""LLM provider abstraction.

One interface (``stream`` / ``stream_with_tools``) over Anthropic, OpenAI and
Google Gemini, plus the provider cache, health checks and model resolution.

Key Components:
    - LLMProvider: Shared interface and tool-call loop
    - ProviderRouter: Cached provider instances per model configuration
    - ProviderHealthChecker: Cached per-vendor credential health
    - resolve_model_config / resolve_available_config: Overrides and fallbacks
    - MockProvider: Scripted responses for tests and offline runs
"""

from llm.base import LLMProvider
from llm.errors import LLMProviderError, ProviderConfigurationError, ToolRoundLimitError
from llm.health import ProviderHealth, ProviderHealthChecker, ProviderStatus, get_health_checker
from llm.mock_provider import MockProvider, MockResponse
from llm.resolver import FALLBACK_MODELS, MODEL_OVERRIDES, resolve_available_config, resolve_model_config
from llm.router import ProviderRouter, get_provider_router
from llm.types import (
    ImageInput,
    LLMConfig,
    LLMUsage,
    Message,
    StreamCallbacks,
    ToolCall,
    ToolDefinition,
)

__all__ = [
    "FALLBACK_MODELS",
    "MODEL_OVERRIDES",
    "ImageInput",
    "LLMConfig",
    "LLMProvider",
    "LLMProviderError",
    "LLMUsage",
    "Message",
    "MockProvider",
    "MockResponse",
    "ProviderConfigurationError",
    "ProviderHealth",
    "ProviderHealthChecker",
    "ProviderRouter",
    "ProviderStatus",
    "StreamCallbacks",
    "ToolCall",
    "ToolDefinition",
    "ToolRoundLimitError",
    "get_health_checker",
    "get_provider_router",
    "resolve_available_config",
    "resolve_model_config",
]
