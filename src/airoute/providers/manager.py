"""
Provider manager for airoute.

Builds providers and dispatch composites from configuration, resolves
call options, and runs health checks.
"""

import logging
import time
from collections.abc import Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any

from airoute.config.merger import merge_configs
from airoute.providers.capabilities import CapabilityRegistry, ProviderHandle
from airoute.providers.composite import Composite, Strategy, default_composite
from airoute.providers.exceptions import ErrorKind
from airoute.providers.models import (
    BatchEmbedding,
    Classification,
    CodeExplanation,
    CodeResult,
    DispatchResult,
    Embedding,
    GenerateResponse,
    HealthStatus,
    Operation,
    ProviderHealth,
    ResponseStream,
)
from airoute.providers.retry import RetryExecutor, RetryPolicy, invoke
from airoute.providers.telemetry import Telemetry, get_telemetry
from airoute.providers.usage import UsageTracker

if TYPE_CHECKING:
    from airoute.config.schema import Config, FallbackConfig, ProfileConfig

logger = logging.getLogger(__name__)

USAGE_HANDLER_ID = "airoute.usage"
LOGGER_HANDLER_ID = "airoute.logger"


def build_provider(
    name: str,
    profile: "ProfileConfig",
    fallback: "FallbackConfig | None" = None,
) -> Any:
    """
    Create the provider a profile describes.

    Args:
        name: Profile name, used as the provider id unless the profile sets one.
        profile: Profile configuration.
        fallback: Heuristic provider settings.

    Returns:
        The provider instance.

    Raises:
        ValueError: If a LiteLLM profile has no model.
    """
    from airoute.adapters import HeuristicProvider, LiteLLMProvider, MockProvider

    provider_id = profile.provider_id or name

    if profile.provider == "mock":
        return MockProvider(provider_id)

    if profile.provider == "fallback":
        return HeuristicProvider(
            provider_id,
            templates=fallback.templates if fallback else None,
            default_response=fallback.default_response if fallback else None,
        )

    if not profile.model:
        raise ValueError(f"Profile '{name}' uses litellm but sets no model")
    return LiteLLMProvider(
        profile.model,
        provider_id=provider_id,
        embedding_model=profile.embedding_model,
        temperature=profile.temperature,
        max_tokens=profile.max_tokens,
        system_prompt=profile.system_prompt,
    )


class ProviderManager:
    """
    Configured entry point for AI operations.

    Each profile becomes one registered provider. Calls go through the
    configured chain, or through a single profile when one is named.
    """

    def __init__(
        self,
        config: "Config",
        telemetry: Telemetry | None = None,
        executor: RetryExecutor | None = None,
        usage: UsageTracker | None = None,
    ):
        """
        Initialize the provider manager.

        Args:
            config: Root configuration.
            telemetry: Span emitter. Uses the global instance if not provided.
            executor: Retry executor shared by all composites.
            usage: Usage tracker. Creates new if not provided.
        """
        self.config = config
        self.telemetry = telemetry or get_telemetry()
        self.executor = executor or RetryExecutor()
        self.usage = usage or UsageTracker()
        self.registry = CapabilityRegistry()
        self.providers: dict[str, Any] = {}
        self._composites: dict[str | None, Composite] = {}

        for name, profile in config.profiles.items():
            provider = build_provider(name, profile, config.fallback)
            self.registry.register(provider)
            self.providers[name] = provider

        self._setup_telemetry()

    def _setup_telemetry(self) -> None:
        attached = self.telemetry.handler_ids()
        if self.config.telemetry.track_usage:
            if USAGE_HANDLER_ID in attached:
                self.telemetry.detach(USAGE_HANDLER_ID)
            self.usage.attach(self.telemetry, USAGE_HANDLER_ID)
        if self.config.telemetry.log_events and LOGGER_HANDLER_ID not in attached:
            self.telemetry.attach_logger(LOGGER_HANDLER_ID)

    def _profiles_for(self, profile: str | None) -> list[str]:
        if profile is None:
            return self.config.chain_profiles()
        self.config.get_profile(profile)
        return [profile]

    def policy_for(self, profile: str | None = None) -> RetryPolicy:
        """Retry policy for a profile, or the global policy for the chain."""
        if profile is None:
            return self.config.retry.to_policy()
        return self.config.retry_policy(profile)

    def resolve_options(
        self, profile: str | None = None, options: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """
        Resolve call options for a dispatch.

        A named profile contributes its own layer. The chain gets only the
        global and call-site layers, since every chain provider already
        carries its profile's model settings.
        """
        if profile is None:
            return merge_configs(self.config.global_opts, options or {})
        return self.config.resolve_options(profile, options)

    def composite(self, profile: str | None = None) -> Composite:
        """
        Get the composite for a profile (the configured chain if None).

        Args:
            profile: Profile name, or None for the chain.

        Returns:
            The cached composite.
        """
        if profile in self._composites:
            return self._composites[profile]

        from airoute.adapters import HeuristicProvider

        names = self._profiles_for(profile)
        providers = [self.registry.get(self.providers[name]) for name in names]
        strategy = Strategy(self.config.composite.strategy) if profile is None else Strategy.FALLBACK
        kwargs: dict[str, Any] = {
            "strategy": strategy,
            "policy": self.policy_for(profile),
            "name": profile or "chain",
            "telemetry": self.telemetry,
            "executor": self.executor,
        }

        has_sentinel = any(isinstance(h.provider, HeuristicProvider) for h in providers)
        if self.config.composite.include_fallback and not has_sentinel:
            sentinel = HeuristicProvider(
                templates=self.config.fallback.templates,
                default_response=self.config.fallback.default_response,
            )
            composite = default_composite(providers, sentinel=sentinel, **kwargs)
        else:
            composite = Composite(providers, **kwargs)

        logger.info(f"Built composite: {composite!r}")
        self._composites[profile] = composite
        return composite

    async def dispatch(
        self,
        operation: Operation | str,
        args: Sequence[Any],
        profile: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> DispatchResult:
        """Resolve options and dispatch through the profile's composite."""
        resolved = self.resolve_options(profile, options)
        return await self.composite(profile).dispatch(operation, args, resolved)

    async def generate(
        self, prompt: str, profile: str | None = None, **options: Any
    ) -> DispatchResult[GenerateResponse]:
        return await self.composite(profile).generate(
            prompt, self.resolve_options(profile, options)
        )

    async def stream(
        self, prompt: str, profile: str | None = None, **options: Any
    ) -> DispatchResult[ResponseStream]:
        return await self.composite(profile).stream(prompt, self.resolve_options(profile, options))

    async def embed(
        self, text: str, profile: str | None = None, **options: Any
    ) -> DispatchResult[Embedding]:
        return await self.composite(profile).embed(text, self.resolve_options(profile, options))

    async def batch_embed(
        self, texts: Sequence[str], profile: str | None = None, **options: Any
    ) -> DispatchResult[BatchEmbedding]:
        return await self.composite(profile).batch_embed(
            texts, self.resolve_options(profile, options)
        )

    async def classify(
        self, text: str, labels: Sequence[str], profile: str | None = None, **options: Any
    ) -> DispatchResult[Classification]:
        return await self.composite(profile).classify(
            text, labels, self.resolve_options(profile, options)
        )

    async def generate_code(
        self, prompt: str, profile: str | None = None, **options: Any
    ) -> DispatchResult[CodeResult]:
        return await self.composite(profile).generate_code(
            prompt, self.resolve_options(profile, options)
        )

    async def explain_code(
        self, code: str, profile: str | None = None, **options: Any
    ) -> DispatchResult[CodeExplanation]:
        return await self.composite(profile).explain_code(
            code, self.resolve_options(profile, options)
        )

    def list_providers(self) -> list[tuple[str, ProviderHandle]]:
        """Registered providers as (profile name, handle) pairs."""
        return [(name, self.registry.get(provider)) for name, provider in self.providers.items()]

    async def health_check(self, profile: str | None = None) -> dict[str, ProviderHealth]:
        """
        Check health of provider(s).

        Each provider gets one direct generate call, with no retries or
        fallback.

        Args:
            profile: Specific profile to check, or None for all.

        Returns:
            Dict mapping profile names to health status.
        """
        names = [profile] if profile else list(self.providers)
        results = {}
        for name in names:
            self.config.get_profile(name)
            results[name] = await self._check_single_provider(
                self.registry.get(self.providers[name])
            )
        return results

    async def _check_single_provider(self, handle: ProviderHandle) -> ProviderHealth:
        """Check single provider health."""
        if not handle.supports(Operation.GENERATE):
            return ProviderHealth(
                provider=handle.provider_id,
                status=HealthStatus.UNKNOWN,
                latency_ms=None,
                last_check=datetime.now(),
                error="Text generation not supported",
            )

        start = time.monotonic()
        try:
            await invoke(handle, Operation.GENERATE, ("ping",), {"max_tokens": 1})
        except Exception as e:
            error = handle.normalize(e)
            if error.kind is ErrorKind.RATE_LIMIT:
                status, message = HealthStatus.DEGRADED, "Rate limited"
            elif error.kind is ErrorKind.AUTH:
                status, message = HealthStatus.UNHEALTHY, "Authentication failed"
            else:
                status, message = HealthStatus.UNHEALTHY, error.message[:100]

            return ProviderHealth(
                provider=handle.provider_id,
                status=status,
                latency_ms=None,
                last_check=datetime.now(),
                error=message,
            )

        return ProviderHealth(
            provider=handle.provider_id,
            status=HealthStatus.HEALTHY,
            latency_ms=(time.monotonic() - start) * 1000,
            last_check=datetime.now(),
        )


# Singleton instance
_provider_manager: ProviderManager | None = None


def get_provider_manager(reload: bool = False) -> ProviderManager:
    """
    Get the global provider manager instance.

    Args:
        reload: Force recreation of the manager.

    Returns:
        ProviderManager instance.
    """
    global _provider_manager

    if _provider_manager is None or reload:
        from airoute.config import get_config

        _provider_manager = ProviderManager(get_config(reload=reload))

    return _provider_manager


def clear_provider_manager() -> None:
    """Clear the global provider manager instance."""
    global _provider_manager
    _provider_manager = None
