"""Provider health checks with a cached result per vendor.

Each vendor is probed with the cheapest possible request (one output
token). Results are cached for ``provider_health_ttl_seconds`` and can be
dropped explicitly with ``invalidate()``. Only one refresh runs at a time;
callers arriving during a refresh wait for its results. SDK clients are
built once per provider and reused until the provider's key changes.
"""

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import Any

import structlog
from anthropic import AsyncAnthropic
from google import genai
from google.genai import types as genai_types
from openai import AsyncOpenAI

from config import settings
from llm.types import PROVIDER_NAMES

logger = structlog.get_logger()

ClientFactory = Callable[[str], Any]
ProbeFn = Callable[[Any], Awaitable[None]]

PROVIDER_LABELS: dict[str, str] = {
    "anthropic": "Anthropic (Claude)",
    "openai": "OpenAI (GPT)",
    "google": "Google (Gemini)",
}

INVALID_KEY_MARKERS = (
    "invalid_api_key",
    "incorrect api key",
    "authentication",
    "api_key_invalid",
    "permission_denied",
)
NO_CREDITS_MARKERS = (
    "rate_limit",
    "credit",
    "billing",
    "quota",
    "insufficient_quota",
    "resource_exhausted",
)


class ProviderStatus(StrEnum):
    """Health of one provider's credentials."""

    ACTIVE = "active"
    NO_KEY = "no_key"
    INVALID_KEY = "invalid_key"
    NO_CREDITS = "no_credits"
    ERROR = "error"


@dataclass
class ProviderHealth:
    """Result of probing one provider."""

    provider: str
    status: ProviderStatus
    label: str
    message: str
    checked_at: float

    def to_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


async def _probe_anthropic(client: AsyncAnthropic) -> None:
    await client.messages.create(
        model="claude-haiku-4-5-20251001",
        max_tokens=1,
        messages=[{"role": "user", "content": "hi"}],
    )


async def _probe_openai(client: AsyncOpenAI) -> None:
    await client.chat.completions.create(
        model="gpt-4o-mini",
        max_completion_tokens=1,
        messages=[{"role": "user", "content": "hi"}],
    )


async def _probe_google(client: genai.Client) -> None:
    await client.aio.models.generate_content(
        model="gemini-2.5-flash",
        contents="hi",
        config=genai_types.GenerateContentConfig(max_output_tokens=1),
    )


DEFAULT_PROBES: dict[str, ProbeFn] = {
    "anthropic": _probe_anthropic,
    "openai": _probe_openai,
    "google": _probe_google,
}

DEFAULT_CLIENT_FACTORIES: dict[str, ClientFactory] = {
    "anthropic": lambda api_key: AsyncAnthropic(api_key=api_key),
    "openai": lambda api_key: AsyncOpenAI(api_key=api_key),
    "google": lambda api_key: genai.Client(api_key=api_key),
}


def classify_probe_error(exc: BaseException) -> tuple[ProviderStatus, str]:
    """Map a failed probe to a status and a short user-facing message."""
    status_code = getattr(exc, "status_code", None) or getattr(exc, "code", None)
    message = str(exc) or type(exc).__name__
    lowered = message.lower()

    if status_code in (401, 403) or any(marker in lowered for marker in INVALID_KEY_MARKERS):
        return ProviderStatus.INVALID_KEY, "Invalid API key or missing permissions"
    if status_code == 429 or any(marker in lowered for marker in NO_CREDITS_MARKERS):
        return ProviderStatus.NO_CREDITS, "No credits left or quota exhausted"
    return ProviderStatus.ERROR, message[:200]


class ProviderHealthChecker:
    """Probes every vendor and caches the results for a TTL.

    Attributes:
        ttl_seconds: How long a set of results is served from cache
    """

    def __init__(
        self,
        probes: dict[str, ProbeFn] | None = None,
        ttl_seconds: float | None = None,
        api_keys: Callable[[str], str] | None = None,
        timeout_seconds: float | None = None,
        assume_healthy: bool | None = None,
        client_factories: dict[str, ClientFactory] | None = None,
    ) -> None:
        self._probes = probes or DEFAULT_PROBES
        self._client_factories = client_factories or DEFAULT_CLIENT_FACTORIES
        self.ttl_seconds = (
            ttl_seconds if ttl_seconds is not None else settings.provider_health_ttl_seconds
        )
        self._api_keys = api_keys or settings.api_key_for
        self._timeout = timeout_seconds or settings.health_check_timeout_seconds
        self._assume_healthy = settings.use_mock_llm if assume_healthy is None else assume_healthy
        self._cache: dict[str, ProviderHealth] = {}
        self._checked_at: float | None = None
        self._generation = 0
        self._lock = threading.Lock()
        self._refresh_lock = asyncio.Lock()
        # provider -> (api key, client built for that key)
        self._clients: dict[str, tuple[str, Any]] = {}

    def invalidate(self) -> None:
        """Force fresh probes on the next lookup."""
        with self._lock:
            self._cache.clear()
            self._checked_at = None
        logger.info("provider_health_cache_invalidated")

    def _fresh_snapshot(self) -> dict[str, ProviderHealth] | None:
        with self._lock:
            if self._checked_at is not None and time.monotonic() - self._checked_at < self.ttl_seconds:
                return dict(self._cache)
        return None

    async def get_status(self) -> dict[str, ProviderHealth]:
        """Return the health of every provider, probing if the cache expired.

        Concurrent callers share one refresh: whoever waited on the refresh
        lock while another caller probed gets that caller's results.
        """
        snapshot = self._fresh_snapshot()
        if snapshot is not None:
            return snapshot

        generation = self._generation
        async with self._refresh_lock:
            with self._lock:
                if self._cache and self._generation != generation:
                    return dict(self._cache)
            snapshot = self._fresh_snapshot()
            if snapshot is not None:
                return snapshot

            results = await asyncio.gather(*(self._check(name) for name in PROVIDER_NAMES))
            with self._lock:
                self._cache = {health.provider: health for health in results}
                self._checked_at = time.monotonic()
                self._generation += 1
                snapshot = dict(self._cache)

        logger.info(
            "provider_health_checked",
            statuses={name: h.status.value for name, h in snapshot.items()},
        )
        return snapshot

    async def is_available(self, provider: str) -> bool:
        """True when the provider's last known status is active."""
        status = await self.get_status()
        health = status.get(provider)
        return health is not None and health.status == ProviderStatus.ACTIVE

    async def _check(self, provider: str) -> ProviderHealth:
        label = PROVIDER_LABELS.get(provider, provider)

        def result(status: ProviderStatus, message: str) -> ProviderHealth:
            return ProviderHealth(provider, status, label, message, time.time())

        if self._assume_healthy:
            return result(ProviderStatus.ACTIVE, "Mock mode")

        api_key = self._api_keys(provider)
        if not api_key:
            return result(ProviderStatus.NO_KEY, "API key not configured")

        probe = self._probes.get(provider)
        factory = self._client_factories.get(provider)
        if probe is None or factory is None:
            return result(ProviderStatus.ERROR, "No health probe registered")

        try:
            client = self._client_for(provider, api_key, factory)
            await asyncio.wait_for(probe(client), timeout=self._timeout)
        except TimeoutError:
            logger.warning("provider_health_probe_timeout", provider=provider)
            return result(ProviderStatus.ERROR, "Health check timed out")
        except Exception as exc:
            status, message = classify_probe_error(exc)
            logger.warning(
                "provider_health_probe_failed",
                provider=provider,
                status=status.value,
                error=str(exc)[:200],
            )
            return result(status, message)

        return result(ProviderStatus.ACTIVE, "Working")

    def _client_for(self, provider: str, api_key: str, factory: ClientFactory) -> Any:
        """Reuse the provider's client while its key is unchanged."""
        cached = self._clients.get(provider)
        if cached is not None and cached[0] == api_key:
            return cached[1]
        client = factory(api_key)
        self._clients[provider] = (api_key, client)
        return client


# Global checker instance
_checker: ProviderHealthChecker | None = None
_checker_lock = threading.Lock()


def get_health_checker() -> ProviderHealthChecker:
    """Get the global ProviderHealthChecker, creating it on first call."""
    global _checker
    if _checker is None:
        with _checker_lock:
            if _checker is None:
                _checker = ProviderHealthChecker()
    return _checker


def reset_health_checker() -> None:
    """Reset the global ProviderHealthChecker (used by tests)."""
    global _checker
    with _checker_lock:
        _checker = None
