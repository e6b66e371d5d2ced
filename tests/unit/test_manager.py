"""
Unit tests for the provider manager.
"""

import pytest

from airoute.adapters import HeuristicProvider, LiteLLMProvider, MockProvider
from airoute.config import Config, ProfileConfig, RetryConfig
from airoute.providers import (
    AllProvidersFailedError,
    AuthenticationError,
    ErrorKind,
    HealthStatus,
    Operation,
    ProviderManager,
    RateLimitError,
    get_provider_manager,
)
from airoute.providers.manager import build_provider


@pytest.fixture
def config() -> Config:
    """Two mock profiles chained in order, plus the heuristic sentinel."""
    return Config(
        default_profile="primary",
        profiles={
            "primary": ProfileConfig(provider="mock", temperature=0.2),
            "backup": ProfileConfig(provider="mock", provider_id="mock-backup"),
        },
        global_opts={"max_tokens": 256},
        retry=RetryConfig(max_attempts=1),
        composite={"chain": ["primary", "backup"]},
    )


@pytest.fixture
def manager(config, telemetry, executor) -> ProviderManager:
    return ProviderManager(config, telemetry=telemetry, executor=executor)


class TestBuildProvider:
    """Tests for build_provider."""

    def test_mock(self):
        provider = build_provider("m", ProfileConfig(provider="mock"))
        assert isinstance(provider, MockProvider)
        assert provider.provider_id == "m"

    def test_fallback(self):
        provider = build_provider("offline", ProfileConfig(provider="fallback"))
        assert isinstance(provider, HeuristicProvider)
        assert provider.provider_id == "offline"

    def test_litellm(self):
        profile = ProfileConfig(
            provider="litellm", model="anthropic/claude-sonnet-4", max_tokens=512
        )
        provider = build_provider("claude", profile)
        assert isinstance(provider, LiteLLMProvider)
        assert provider.provider_id == "claude"
        assert provider.max_tokens == 512

    def test_litellm_needs_model(self):
        with pytest.raises(ValueError, match="sets no model"):
            build_provider("x", ProfileConfig(provider="litellm"))


class TestProviderManager:
    """Tests for ProviderManager."""

    def test_registers_profiles(self, manager):
        providers = dict(manager.list_providers())
        assert set(providers) == {"primary", "backup"}
        assert providers["backup"].provider_id == "mock-backup"
        assert providers["primary"].supports(Operation.EMBED)

    def test_chain_composite(self, manager):
        composite = manager.composite()
        assert composite.name == "chain"
        assert composite.provider_ids == ["primary", "mock-backup", "fallback"]
        assert manager.composite() is composite

    def test_profile_composite(self, manager):
        composite = manager.composite("backup")
        assert composite.name == "backup"
        assert composite.provider_ids == ["mock-backup", "fallback"]

    def test_unknown_profile(self, manager):
        with pytest.raises(ValueError, match="Unknown profile"):
            manager.composite("nope")

    def test_without_sentinel(self, config, telemetry, executor):
        config.composite.include_fallback = False
        manager = ProviderManager(config, telemetry=telemetry, executor=executor)
        assert manager.composite().provider_ids == ["primary", "mock-backup"]

    @pytest.mark.asyncio
    async def test_generate_through_chain(self, manager):
        manager.providers["primary"].fail_with(AuthenticationError("bad key"))

        result = await manager.generate("hello", request_id="r-1")

        assert result.provider_id == "mock-backup"
        calls = manager.providers["backup"].get_calls()
        assert calls[0].options == {"max_tokens": 256, "request_id": "r-1"}

    @pytest.mark.asyncio
    async def test_chain_falls_through_to_sentinel(self, manager):
        manager.providers["primary"].fail_with(ErrorKind.AUTH)
        manager.providers["backup"].fail_with(ErrorKind.INVALID_REQUEST)

        result = await manager.generate("hello")

        assert result.provider_id == "fallback"
        assert result.value.content == "Hello! How can I help you today?"

    @pytest.mark.asyncio
    async def test_profile_options_layered(self, manager):
        await manager.generate("hi", profile="primary", max_tokens=10)

        options = manager.providers["primary"].get_calls()[0].options
        assert options == {"max_tokens": 10, "temperature": 0.2}

    @pytest.mark.asyncio
    async def test_dispatch(self, manager):
        result = await manager.dispatch(Operation.CLASSIFY, ("text", ["a", "b"]))
        assert result.value.label == "a"
        assert result.provider_id == "primary"

    @pytest.mark.asyncio
    async def test_operations(self, manager):
        assert (await manager.embed("x")).value.dimensions == 768
        assert len((await manager.batch_embed(["x", "y"])).value.vectors) == 2
        assert (await manager.classify("x", ["yes", "no"])).value.label == "yes"
        assert (await manager.generate_code("sort")).value.code
        assert (await manager.explain_code("x = 1")).value.explanation
        stream = (await manager.stream("hi")).value
        assert await stream.collect()

    @pytest.mark.asyncio
    async def test_all_failed_without_sentinel(self, config, telemetry, executor):
        config.composite.include_fallback = False
        manager = ProviderManager(config, telemetry=telemetry, executor=executor)
        manager.providers["primary"].fail_with(ErrorKind.AUTH)
        manager.providers["backup"].fail_with(ErrorKind.AUTH)

        with pytest.raises(AllProvidersFailedError) as exc_info:
            await manager.generate("hi")

        assert exc_info.value.failed_providers == ["primary", "mock-backup"]

    @pytest.mark.asyncio
    async def test_records_usage(self, manager):
        await manager.generate("hello")
        await manager.generate("again")

        usage = manager.usage.get_provider_usage("primary")
        assert usage.calls == 2
        assert usage.total_tokens == 60

    def test_policy_for(self, config, telemetry, executor):
        config.profiles["backup"].retry = RetryConfig(max_attempts=4)
        manager = ProviderManager(config, telemetry=telemetry, executor=executor)
        assert manager.policy_for().max_attempts == 1
        assert manager.policy_for("backup").max_attempts == 4
        assert manager.policy_for("primary").max_attempts == 1

    def test_usage_handler_not_duplicated(self, config, telemetry, executor):
        ProviderManager(config, telemetry=telemetry, executor=executor)
        ProviderManager(config, telemetry=telemetry, executor=executor)
        assert telemetry.handler_ids().count("airoute.usage") == 1

    def test_log_events(self, config, telemetry, executor):
        config.telemetry.log_events = True
        ProviderManager(config, telemetry=telemetry, executor=executor)
        assert "airoute.logger" in telemetry.handler_ids()


class TestHealthCheck:
    """Tests for ProviderManager.health_check."""

    @pytest.mark.asyncio
    async def test_healthy(self, manager):
        results = await manager.health_check()
        assert set(results) == {"primary", "backup"}
        assert results["primary"].status is HealthStatus.HEALTHY
        assert results["primary"].latency_ms is not None
        assert results["primary"].error is None

    @pytest.mark.asyncio
    async def test_rate_limited_is_degraded(self, manager):
        manager.providers["primary"].fail_with(RateLimitError("slow down"))
        health = (await manager.health_check("primary"))["primary"]
        assert health.status is HealthStatus.DEGRADED
        assert health.error == "Rate limited"

    @pytest.mark.asyncio
    async def test_auth_is_unhealthy(self, manager):
        manager.providers["backup"].fail_with(AuthenticationError("bad key"))
        health = (await manager.health_check("backup"))["backup"]
        assert health.status is HealthStatus.UNHEALTHY
        assert health.error == "Authentication failed"

    @pytest.mark.asyncio
    async def test_health_call_is_not_retried(self, manager):
        primary = manager.providers["primary"]
        primary.fail_with(ErrorKind.SERVER_ERROR)

        health = (await manager.health_check("primary"))["primary"]

        assert health.status is HealthStatus.UNHEALTHY
        assert len(primary.get_calls()) == 1
        assert primary.get_calls()[0].options == {"max_tokens": 1}

    @pytest.mark.asyncio
    async def test_unknown_profile(self, manager):
        with pytest.raises(ValueError):
            await manager.health_check("nope")


class TestGlobalManager:
    """Tests for the manager singleton."""

    def test_singleton(self, airoute_home):
        manager = get_provider_manager()
        assert get_provider_manager() is manager
        assert get_provider_manager(reload=True) is not manager
        assert manager.composite().provider_ids == ["default"]
