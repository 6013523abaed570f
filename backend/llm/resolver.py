"""Model override table and health-based fallback resolution."""

from dataclasses import replace

import structlog

from llm.health import ProviderHealthChecker
from llm.types import LLMConfig

logger = structlog.get_logger()

# (provider, model) per user-facing override key
MODEL_OVERRIDES: dict[str, tuple[str, str]] = {
    "claude-opus": ("anthropic", "claude-opus-4-6"),
    "claude-sonnet": ("anthropic", "claude-sonnet-4-5-20250929"),
    "claude-haiku": ("anthropic", "claude-haiku-4-5-20251001"),
    "gpt-4.5": ("openai", "gpt-4.5-preview"),
    "gpt-4o": ("openai", "gpt-4o"),
    "gpt-4o-mini": ("openai", "gpt-4o-mini"),
    "gemini-2.5-pro": ("google", "gemini-2.5-pro"),
    "gemini-2.5-flash": ("google", "gemini-2.5-flash"),
}

# Tried in order when a provider is unavailable
FALLBACK_MODELS: dict[str, list[tuple[str, str]]] = {
    "anthropic": [("openai", "gpt-4o"), ("google", "gemini-2.5-pro")],
    "openai": [("anthropic", "claude-sonnet-4-5-20250929"), ("google", "gemini-2.5-pro")],
    "google": [("anthropic", "claude-sonnet-4-5-20250929"), ("openai", "gpt-4o")],
}


def resolve_model_config(model_id: str, agent_defaults: LLMConfig | None = None) -> LLMConfig | None:
    """Resolve a user-facing model key to a provider config.

    Args:
        model_id: Key of MODEL_OVERRIDES, e.g. "gpt-4o".
        agent_defaults: The agent's own config; its max_tokens and
            temperature carry over to the override.

    Returns:
        The resolved config, or None for an unknown key.
    """
    entry = MODEL_OVERRIDES.get(model_id)
    if entry is None:
        return None
    provider, model = entry
    if agent_defaults is None:
        return LLMConfig(provider=provider, model=model)
    return LLMConfig(
        provider=provider,
        model=model,
        max_tokens=agent_defaults.max_tokens,
        temperature=agent_defaults.temperature,
    )


async def resolve_available_config(
    config: LLMConfig, health: ProviderHealthChecker
) -> LLMConfig | None:
    """Return ``config`` when its provider is healthy, else the first healthy fallback.

    Fallbacks keep the original max_tokens and temperature but use the
    process-wide credentials of the fallback vendor.

    Returns:
        A usable config, or None when no provider is available.
    """
    if await health.is_available(config.provider):
        return config

    logger.warning("provider_unavailable_trying_fallbacks", provider=config.provider)
    for provider, model in FALLBACK_MODELS.get(config.provider, []):
        if await health.is_available(provider):
            logger.info(
                "provider_fallback_selected",
                requested=config.provider,
                provider=provider,
                model=model,
            )
            return replace(config, provider=provider, model=model, api_key=None)

    logger.error("no_providers_available", requested=config.provider)
    return None
