"""
Usage tracking for airoute.

Tracks calls, failures, token usage and latency per provider, fed by
telemetry stop/exception events.
"""

import logging
import threading
from dataclasses import dataclass, field

from airoute.providers.models import TokenUsage
from airoute.providers.telemetry import SpanEvent, SpanPhase, Telemetry

logger = logging.getLogger(__name__)


@dataclass
class ProviderUsage:
    """Accumulated usage for a single provider."""

    provider_id: str
    calls: int = 0
    failures: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    total_latency: float = 0.0
    models: set[str] = field(default_factory=set)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def average_latency(self) -> float:
        requests = self.calls + self.failures
        return self.total_latency / requests if requests else 0.0

    def add(self, usage: TokenUsage, latency: float, model: str | None = None) -> None:
        """Add a successful call."""
        self.calls += 1
        self.input_tokens += usage.input_tokens
        self.output_tokens += usage.output_tokens
        self.total_latency += latency
        if model:
            self.models.add(model)

    def add_failure(self, latency: float) -> None:
        self.failures += 1
        self.total_latency += latency


class UsageTracker:
    """
    Tracks provider usage from telemetry events.

    Only per-provider spans are counted; the composite's outer dispatch span
    would double count every call.
    """

    def __init__(self) -> None:
        """Initialize the usage tracker."""
        self.usage: dict[str, ProviderUsage] = {}
        self._lock = threading.Lock()

    def attach(self, telemetry: Telemetry, handler_id: str = "usage") -> None:
        """Start receiving events from ``telemetry``."""
        telemetry.attach(handler_id, self.handle_event)

    def handle_event(self, event: SpanEvent) -> None:
        """Record a stop or exception event."""
        if event.phase is SpanPhase.START or event.metadata.get("scope") == "dispatch":
            return
        provider_id = event.provider_id or "unknown"
        latency = event.duration or 0.0

        with self._lock:
            entry = self.usage.setdefault(provider_id, ProviderUsage(provider_id))
            if event.phase is SpanPhase.STOP:
                tokens = event.metadata.get("tokens")
                entry.add(TokenUsage.from_mapping(tokens), latency, event.metadata.get("model"))
            else:
                entry.add_failure(latency)

        logger.debug(f"Recorded {event.phase.value} for {provider_id} ({latency:.3f}s)")

    def get_provider_usage(self, provider_id: str) -> ProviderUsage | None:
        """
        Get usage for a specific provider.

        Args:
            provider_id: The provider to get usage for.

        Returns:
            Usage for the provider, or None if never called.
        """
        return self.usage.get(provider_id)

    @property
    def total_tokens(self) -> int:
        """Total tokens (input + output) across providers."""
        return sum(u.total_tokens for u in self.usage.values())

    @property
    def total_calls(self) -> int:
        return sum(u.calls for u in self.usage.values())

    @property
    def total_failures(self) -> int:
        return sum(u.failures for u in self.usage.values())

    def reset(self) -> None:
        """Reset usage tracking."""
        with self._lock:
            self.usage.clear()
