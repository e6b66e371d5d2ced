"""
Pydantic configuration schema for airoute.

This module defines all configuration models with validation.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from airoute.config.merger import merge_configs
from airoute.providers.exceptions import RETRYABLE_KINDS, ErrorKind
from airoute.providers.retry import RetryPolicy

# =============================================================================
# Retry Configuration
# =============================================================================


class RetryConfig(BaseModel):
    """Retry and backoff settings for one provider."""

    model_config = ConfigDict(extra="allow")

    max_attempts: int = Field(default=3, ge=1)
    base_delay_ms: int = Field(default=500, ge=0)
    max_delay_ms: int = Field(default=10000, ge=0)
    jitter: bool = True
    retry_on: list[ErrorKind] = Field(
        default_factory=lambda: sorted(RETRYABLE_KINDS, key=lambda kind: kind.value)
    )

    def to_policy(self) -> RetryPolicy:
        """Convert to the immutable policy used by the dispatcher."""
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay_ms / 1000,
            max_delay=self.max_delay_ms / 1000,
            jitter=self.jitter,
            retryable_kinds=frozenset(self.retry_on),
        )


# =============================================================================
# Profile Configuration
# =============================================================================


class ProfileConfig(BaseModel):
    """A named provider setup and its default call options."""

    model_config = ConfigDict(extra="allow")

    provider: Literal["mock", "fallback", "litellm"] = "fallback"
    provider_id: str | None = None
    model: str | None = None
    embedding_model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)
    system_prompt: str | None = None
    retry: RetryConfig | None = None
    options: dict[str, Any] = Field(default_factory=dict)

    def call_options(self) -> dict[str, Any]:
        """Options this profile contributes to every call."""
        base = {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "system_prompt": self.system_prompt,
        }
        options = {key: value for key, value in base.items() if value is not None}
        options.update(self.options)
        return options


# =============================================================================
# Dispatch Configuration
# =============================================================================


class CompositeConfig(BaseModel):
    """How profiles are combined into a dispatch chain."""

    model_config = ConfigDict(extra="allow")

    strategy: Literal["fallback", "round_robin", "random"] = "fallback"
    chain: list[str] = Field(default_factory=list)  # profile names; empty = default profile
    include_fallback: bool = True


class FallbackConfig(BaseModel):
    """Heuristic provider replies."""

    model_config = ConfigDict(extra="allow")

    templates: dict[str, str] = Field(default_factory=dict)
    default_response: str | None = None


class TelemetryConfig(BaseModel):
    """Telemetry handlers attached by the provider manager."""

    model_config = ConfigDict(extra="allow")

    log_events: bool = False
    track_usage: bool = True


# =============================================================================
# Root Configuration Model
# =============================================================================


class Config(BaseModel):
    """
    Root configuration model for airoute.

    Call options are layered global < profile < call-site; the retry policy
    comes from the profile when it defines one, otherwise from ``retry``.
    """

    model_config = ConfigDict(extra="allow")

    default_profile: str = "default"
    profiles: dict[str, ProfileConfig] = Field(
        default_factory=lambda: {"default": ProfileConfig()}
    )
    global_opts: dict[str, Any] = Field(default_factory=dict)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    composite: CompositeConfig = Field(default_factory=CompositeConfig)
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)

    @model_validator(mode="after")
    def _check_profiles(self) -> "Config":
        if self.default_profile not in self.profiles:
            raise ValueError(f"Default profile '{self.default_profile}' is not defined")
        for name in self.composite.chain:
            if name not in self.profiles:
                raise ValueError(f"Composite chain references unknown profile '{name}'")
        return self

    def get_profile(self, name: str | None = None) -> ProfileConfig:
        """Get a profile by name (the default profile if None)."""
        name = name or self.default_profile
        try:
            return self.profiles[name]
        except KeyError:
            raise ValueError(f"Unknown profile: {name}") from None

    def resolve_options(
        self,
        profile: str | None = None,
        call_opts: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Merge call options with precedence global < profile < call-site.

        Args:
            profile: Profile name (default profile if None).
            call_opts: Options given at the call site.

        Returns:
            The flat option map handed to the dispatcher.
        """
        return merge_configs(
            self.global_opts,
            self.get_profile(profile).call_options(),
            call_opts or {},
        )

    def retry_policy(self, profile: str | None = None) -> RetryPolicy:
        retry = self.get_profile(profile).retry or self.retry
        return retry.to_policy()

    def chain_profiles(self) -> list[str]:
        """Profile names making up the dispatch chain, in order."""
        return list(self.composite.chain) or [self.default_profile]
