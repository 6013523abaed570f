"""Tests for provider caching, health checks and model resolution."""

import asyncio

import pytest

from config import settings
from llm.anthropic_provider import AnthropicProvider
from llm.errors import ProviderConfigurationError
from llm.health import ProviderHealthChecker, ProviderStatus, classify_probe_error
from llm.mock_provider import MockProvider
from llm.openai_provider import OpenAIProvider
from llm.resolver import resolve_available_config, resolve_model_config
from llm.router import ProviderRouter, cache_key
from llm.types import PROVIDER_NAMES, LLMConfig


class VendorError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProbeRecorder:
    """Fake probes: succeed, or raise the error registered for a provider.

    Clients are plain dicts naming the provider and key they were built for.
    """

    def __init__(
        self, failures: dict[str, Exception] | None = None, delay: float = 0
    ) -> None:
        self.calls: list[str] = []
        self.clients_built: list[dict[str, str]] = []
        self.clients_used: list[dict[str, str]] = []
        self.failures = failures or {}
        self.delay = delay

    def probes(self) -> dict:
        def make(provider: str):
            async def probe(client: dict[str, str]) -> None:
                self.calls.append(provider)
                self.clients_used.append(client)
                if self.delay:
                    await asyncio.sleep(self.delay)
                if provider in self.failures:
                    raise self.failures[provider]

            return probe

        return {name: make(name) for name in PROVIDER_NAMES}

    def client_factories(self) -> dict:
        def make(provider: str):
            def build(api_key: str) -> dict[str, str]:
                client = {"provider": provider, "api_key": api_key}
                self.clients_built.append(client)
                return client

            return build

        return {name: make(name) for name in PROVIDER_NAMES}


def make_checker(
    recorder: ProbeRecorder,
    keys: dict[str, str] | None = None,
    ttl_seconds: float = 60,
) -> ProviderHealthChecker:
    key_map = keys if keys is not None else {"anthropic": "a", "openai": "o", "google": "g"}
    return ProviderHealthChecker(
        probes=recorder.probes(),
        ttl_seconds=ttl_seconds,
        api_keys=lambda provider: key_map.get(provider, ""),
        timeout_seconds=1,
        assume_healthy=False,
        client_factories=recorder.client_factories(),
    )


# =========================================================================
# ProviderRouter
# =========================================================================


class TestProviderRouter:
    def test_same_config_returns_same_instance(self) -> None:
        router = ProviderRouter(use_mock=False)
        config = LLMConfig(provider="anthropic", model="claude-test", api_key="sk-test")

        first = router.get_provider(config)
        second = router.get_provider(LLMConfig(provider="anthropic", model="claude-test", api_key="sk-test"))

        assert first is second
        assert isinstance(first, AnthropicProvider)
        assert router.cached_count == 1

    def test_generation_settings_are_part_of_the_key(self) -> None:
        router = ProviderRouter(use_mock=False)
        cold = LLMConfig(provider="openai", model="gpt-test", temperature=0.1, api_key="k")
        warm = LLMConfig(provider="openai", model="gpt-test", temperature=0.9, api_key="k")

        assert router.get_provider(cold) is not router.get_provider(warm)
        assert isinstance(router.get_provider(cold), OpenAIProvider)
        assert router.cached_count == 2

    def test_cache_key_never_contains_the_raw_key(self) -> None:
        key = cache_key(LLMConfig(provider="openai", model="m", api_key="secret-value"))
        assert "secret-value" not in key
        assert key.startswith("openai:m:")
        assert cache_key(LLMConfig(provider="openai", model="m")) == "openai:m:env:16384:0.7"

    def test_invalidate_drops_instances(self) -> None:
        router = ProviderRouter(use_mock=False)
        config = LLMConfig(provider="anthropic", model="claude-test", api_key="k")
        first = router.get_provider(config)

        router.invalidate()

        assert router.cached_count == 0
        assert router.get_provider(config) is not first

    def test_missing_credentials_raise(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "openai_api_key", "")
        router = ProviderRouter(use_mock=False)

        with pytest.raises(ProviderConfigurationError):
            router.get_provider(LLMConfig(provider="openai", model="gpt-test"))
        assert router.cached_count == 0

    def test_unknown_provider_raises(self) -> None:
        with pytest.raises(ProviderConfigurationError, match="Unknown provider"):
            ProviderRouter(use_mock=False).get_provider(LLMConfig(provider="acme", model="x", api_key="k"))

    def test_mock_mode_serves_one_provider(self) -> None:
        mock = MockProvider(default_text="hi")
        router = ProviderRouter(use_mock=True, mock_provider=mock)

        assert router.get_provider(LLMConfig(provider="anthropic", model="a")) is mock
        assert router.get_provider(LLMConfig(provider="google", model="b")) is mock


# =========================================================================
# ProviderHealthChecker
# =========================================================================


class TestProviderHealth:
    async def test_statuses_from_probe_results(self) -> None:
        recorder = ProbeRecorder({"openai": VendorError("bad key", status_code=401)})
        checker = make_checker(recorder, keys={"anthropic": "a", "openai": "o"})

        status = await checker.get_status()

        assert status["anthropic"].status == ProviderStatus.ACTIVE
        assert status["openai"].status == ProviderStatus.INVALID_KEY
        assert status["google"].status == ProviderStatus.NO_KEY
        assert "google" not in recorder.calls
        assert status["anthropic"].to_dict()["status"] == "active"

    async def test_results_cached_until_invalidated(self) -> None:
        recorder = ProbeRecorder()
        checker = make_checker(recorder)

        await checker.get_status()
        await checker.get_status()
        assert len(recorder.calls) == 3

        checker.invalidate()
        await checker.get_status()
        assert len(recorder.calls) == 6

    async def test_expired_cache_probes_again(self) -> None:
        recorder = ProbeRecorder()
        checker = make_checker(recorder, ttl_seconds=0)

        await checker.get_status()
        await checker.get_status()

        assert len(recorder.calls) == 6

    async def test_concurrent_lookups_share_one_refresh(self) -> None:
        recorder = ProbeRecorder(delay=0.01)
        checker = make_checker(recorder, ttl_seconds=0)

        available = await asyncio.gather(
            *(checker.is_available(name) for name in PROVIDER_NAMES),
            checker.get_status(),
            checker.get_status(),
        )

        assert available[:3] == [True, True, True]
        assert sorted(recorder.calls) == sorted(PROVIDER_NAMES)

    async def test_clients_are_reused_until_the_key_changes(self) -> None:
        recorder = ProbeRecorder()
        keys = {"anthropic": "a", "openai": "o", "google": "g"}
        checker = make_checker(recorder, keys=keys, ttl_seconds=0)

        await checker.get_status()
        await checker.get_status()

        assert len(recorder.clients_built) == 3
        assert len(recorder.clients_used) == 6
        assert {id(client) for client in recorder.clients_used} == {
            id(client) for client in recorder.clients_built
        }

        keys["openai"] = "rotated"
        await checker.get_status()

        assert len(recorder.clients_built) == 4
        assert recorder.clients_built[-1] == {"provider": "openai", "api_key": "rotated"}

    async def test_slow_probe_times_out(self) -> None:
        async def hang(client: object) -> None:
            await asyncio.sleep(5)

        async def ok(client: object) -> None:
            return None

        checker = ProviderHealthChecker(
            probes={"anthropic": hang, "openai": ok, "google": ok},
            ttl_seconds=60,
            api_keys=lambda provider: "k",
            timeout_seconds=0.01,
            assume_healthy=False,
            client_factories={name: lambda api_key: object() for name in PROVIDER_NAMES},
        )

        status = await checker.get_status()

        assert status["anthropic"].status == ProviderStatus.ERROR
        assert status["anthropic"].message == "Health check timed out"
        assert status["openai"].status == ProviderStatus.ACTIVE

    async def test_assume_healthy_skips_probes(self) -> None:
        recorder = ProbeRecorder()
        checker = ProviderHealthChecker(probes=recorder.probes(), assume_healthy=True)

        assert await checker.is_available("google")
        assert recorder.calls == []

    def test_classify_probe_error(self) -> None:
        assert classify_probe_error(VendorError("x", 403))[0] == ProviderStatus.INVALID_KEY
        assert classify_probe_error(VendorError("x", 429))[0] == ProviderStatus.NO_CREDITS
        assert classify_probe_error(Exception("insufficient_quota"))[0] == ProviderStatus.NO_CREDITS
        assert classify_probe_error(Exception("Incorrect API key provided"))[0] == ProviderStatus.INVALID_KEY
        status, message = classify_probe_error(Exception("upstream exploded"))
        assert status == ProviderStatus.ERROR
        assert message == "upstream exploded"


# =========================================================================
# Model resolution
# =========================================================================


class TestResolver:
    def test_override_keeps_agent_generation_settings(self) -> None:
        defaults = LLMConfig(provider="anthropic", model="claude", max_tokens=2048, temperature=0.2)
        config = resolve_model_config("gpt-4o", defaults)

        assert config is not None
        assert (config.provider, config.model) == ("openai", "gpt-4o")
        assert (config.max_tokens, config.temperature) == (2048, 0.2)

    def test_unknown_override(self) -> None:
        assert resolve_model_config("not-a-model") is None

    async def test_healthy_provider_is_kept(self) -> None:
        checker = make_checker(ProbeRecorder())
        config = LLMConfig(provider="google", model="gemini-x", api_key="user-key")

        assert await resolve_available_config(config, checker) is config

    async def test_first_healthy_fallback_is_used(self) -> None:
        # anthropic has no key, openai is out of credits
        recorder = ProbeRecorder({"openai": VendorError("quota", status_code=429)})
        checker = make_checker(recorder, keys={"openai": "o", "google": "g"})
        config = LLMConfig(
            provider="anthropic", model="claude", max_tokens=999, temperature=0.4, api_key="user-key"
        )

        resolved = await resolve_available_config(config, checker)

        assert resolved is not None
        assert (resolved.provider, resolved.model) == ("google", "gemini-2.5-pro")
        assert (resolved.max_tokens, resolved.temperature) == (999, 0.4)
        assert resolved.api_key is None

    async def test_no_provider_available(self) -> None:
        checker = make_checker(ProbeRecorder(), keys={})
        config = LLMConfig(provider="openai", model="gpt-4o")

        assert await resolve_available_config(config, checker) is None
