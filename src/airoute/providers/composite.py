"""
Composite dispatcher for airoute.

Routes an operation across an ordered set of providers. Candidates are
filtered by capability, ordered by strategy, and each one is run through
the retry executor inside a telemetry span.
"""

import itertools
import logging
import random
import threading
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from airoute.providers.base import Provider
from airoute.providers.capabilities import CapabilityRegistry, ProviderHandle
from airoute.providers.exceptions import (
    AllProvidersFailedError,
    ErrorKind,
    NormalizedError,
    ProviderCallError,
)
from airoute.providers.models import (
    BatchEmbedding,
    Classification,
    CodeExplanation,
    CodeResult,
    DispatchResult,
    Embedding,
    GenerateResponse,
    Operation,
    ResponseStream,
)
from airoute.providers.retry import (
    RETRY_OPTION_KEYS,
    Deadline,
    RetryExecutor,
    RetryPolicy,
    deadline_error,
)
from airoute.providers.telemetry import Telemetry, correlation_metadata, get_telemetry

logger = logging.getLogger(__name__)

NO_PROVIDER = "none"


class Strategy(str, Enum):
    """How a composite orders its candidates."""

    FALLBACK = "fallback"
    ROUND_ROBIN = "round_robin"
    RANDOM = "random"


@dataclass
class FallbackAttempt:
    """Record of one provider giving up."""

    provider_id: str
    error: NormalizedError
    attempts: int


@dataclass
class FallbackHandler:
    """
    Tracks the providers tried during one dispatch.

    Failures are kept in attempted order so the aggregate error reads the
    same way the dispatch ran.
    """

    chain: list[str]
    attempts: list[FallbackAttempt] = field(default_factory=list)
    winner: str | None = None

    def mark_failed(self, provider_id: str, error: NormalizedError, attempts: int) -> None:
        """
        Record a provider as failed for this dispatch.

        Args:
            provider_id: The provider that gave up.
            error: Its normalized error.
            attempts: How many attempts it made.
        """
        self.attempts.append(FallbackAttempt(provider_id, error, attempts))
        if self.has_more_providers:
            logger.warning(f"Provider {provider_id} failed with {error.kind.value}, trying next")
        else:
            logger.debug(f"Provider {provider_id} failed with {error.kind.value}")

    def mark_expired(self, provider_id: str, error: NormalizedError) -> None:
        """Record the deadline running out before ``provider_id`` was tried."""
        self.attempts.append(FallbackAttempt(provider_id, error, 0))
        logger.warning(f"Deadline exceeded before trying {provider_id}, stopping")

    def mark_success(self, provider_id: str) -> None:
        self.winner = provider_id
        logger.debug(f"Provider {provider_id} succeeded")

    @property
    def errors(self) -> list[tuple[str, NormalizedError]]:
        return [(attempt.provider_id, attempt.error) for attempt in self.attempts]

    @property
    def has_more_providers(self) -> bool:
        """Check if there are more providers to try."""
        return len(self.attempts) < len(self.chain)

    @property
    def total_attempts(self) -> int:
        """Total attempts across every provider tried."""
        return sum(attempt.attempts for attempt in self.attempts)

    def get_attempt_summary(self) -> str:
        """
        Get a human-readable summary of fallback attempts.

        Returns:
            Summary string describing what providers were tried.
        """
        if not self.attempts:
            return "No fallback attempts"

        lines = []
        for attempt in self.attempts:
            lines.append(
                f"  - {attempt.provider_id}: {attempt.error.kind.value} "
                f"after {attempt.attempts} attempt(s) ({attempt.error.message})"
            )

        return "Fallback attempts:\n" + "\n".join(lines)


class Composite(Provider):
    """
    Strategy-governed collection of providers treated as one target.

    ``Fallback`` tries every capable provider in order. ``RoundRobin`` and
    ``Random`` pick exactly one capable provider per call and fail with it;
    wrap them in a Fallback composite for multi-provider recovery.

    A composite is itself a provider, so composites nest.
    """

    default_id = "composite"

    def __init__(
        self,
        providers: Iterable[Any] = (),
        strategy: Strategy | str = Strategy.FALLBACK,
        policy: RetryPolicy | None = None,
        name: str = "composite",
        registry: CapabilityRegistry | None = None,
        telemetry: Telemetry | None = None,
        executor: RetryExecutor | None = None,
        rng: random.Random | None = None,
    ):
        """
        Initialize the composite.

        Args:
            providers: Providers or handles, in priority order.
            strategy: Candidate ordering strategy.
            policy: Retry policy applied per provider.
            name: Identity of the composite in results and telemetry.
            registry: When given, providers are looked up in it (they must
                be registered); otherwise capabilities are detected here.
            telemetry: Span emitter (global instance if None).
            executor: Retry executor (default sleeps with asyncio).
            rng: Random source for the Random strategy.
        """
        super().__init__(name)
        self.strategy = Strategy(strategy)
        self.policy = policy or RetryPolicy()
        self.registry = registry
        self.telemetry = telemetry or get_telemetry()
        self.executor = executor or RetryExecutor()
        self._rng = rng or random.Random()
        self._counter = itertools.count()
        self._counter_lock = threading.Lock()

        if registry is not None:
            self.handles = [registry.get(provider) for provider in providers]
        else:
            self.handles = [ProviderHandle.for_provider(provider) for provider in providers]

    @property
    def name(self) -> str:
        return self.provider_id

    @property
    def provider_ids(self) -> list[str]:
        return [handle.provider_id for handle in self.handles]

    @property
    def capabilities(self) -> frozenset[Operation]:
        """Operations at least one child supports."""
        return frozenset().union(*(handle.capabilities for handle in self.handles))

    def is_available(self) -> bool:
        return any(handle.is_available() for handle in self.handles)

    def candidates(self, operation: Operation | str) -> list[ProviderHandle]:
        """Providers that support ``operation``, in configured order."""
        operation = Operation(operation)
        return [handle for handle in self.handles if handle.supports(operation)]

    def describe(self) -> str:
        """Multi-line summary of the composite and its providers."""
        lines = [f"{self.name} ({self.strategy.value})"]
        lines.extend(f"  {handle.describe()}" for handle in self.handles)
        return "\n".join(lines)

    def _order(self, candidates: list[ProviderHandle]) -> list[ProviderHandle]:
        if self.strategy is Strategy.FALLBACK:
            return list(candidates)
        if self.strategy is Strategy.ROUND_ROBIN:
            with self._counter_lock:
                index = next(self._counter) % len(candidates)
            return [candidates[index]]
        return [self._rng.choice(candidates)]

    async def dispatch(
        self,
        operation: Operation | str,
        args: Sequence[Any],
        options: Mapping[str, Any] | None = None,
        *,
        deadline: Deadline | None = None,
    ) -> DispatchResult:
        """
        Run an operation against the composite's providers.

        Args:
            operation: Operation to run.
            args: Positional operation arguments.
            options: Resolved call options. Retry overrides (``max_retries``,
                ``retry_delay_ms``, ``retry_on_types``) and ``timeout_ms``
                are consumed here and not forwarded to providers.
            deadline: Overall call deadline; wins over ``timeout_ms``.

        Returns:
            The first success, tagged with provider id and attempt count.

        Raises:
            AllProvidersFailedError: If no candidate succeeded.
        """
        operation = Operation(operation)
        options = dict(options or {})
        policy = self.policy.with_overrides(options)
        if deadline is None:
            deadline = Deadline.from_options(options)
        provider_options = {k: v for k, v in options.items() if k not in RETRY_OPTION_KEYS}
        correlation = correlation_metadata(options)

        metadata = {
            "provider": self.name,
            "operation": operation.value,
            "strategy": self.strategy.value,
            "scope": "dispatch",
            **correlation,
        }

        async def _run() -> DispatchResult:
            return await self._dispatch(
                operation, args, provider_options, policy, deadline, correlation
            )

        return await self.telemetry.span(operation.value, metadata, _run)

    async def _dispatch(
        self,
        operation: Operation,
        args: Sequence[Any],
        options: dict[str, Any],
        policy: RetryPolicy,
        deadline: Deadline | None,
        correlation: dict[str, Any],
    ) -> DispatchResult:
        candidates = self.candidates(operation)
        if not candidates:
            logger.info(f"{self.name}: no providers support {operation.description}")
            raise AllProvidersFailedError(
                [
                    (
                        NO_PROVIDER,
                        NormalizedError(
                            ErrorKind.UNSUPPORTED,
                            f"No providers support {operation.description}",
                            NO_PROVIDER,
                        ),
                    )
                ],
                provider=self.name,
                kind=ErrorKind.UNAVAILABLE,
            )

        ordered = self._order(candidates)
        handler = FallbackHandler([handle.provider_id for handle in ordered])

        for handle in ordered:
            if deadline is not None and deadline.expired:
                handler.mark_expired(
                    handle.provider_id, deadline_error(handle.provider_id, operation, 0)
                )
                break

            logger.info(f"{self.name}: trying {handle.provider_id} for {operation.value}")
            metadata = {
                "provider": handle.provider_id,
                "operation": operation.value,
                "scope": "provider",
                **correlation,
            }

            async def _attempt(handle: ProviderHandle = handle) -> DispatchResult:
                return await self.executor.execute(
                    handle, operation, args, options, policy, deadline
                )

            try:
                result = await self.telemetry.span(operation.value, metadata, _attempt)
            except ProviderCallError as e:
                handler.mark_failed(handle.provider_id, e.error, e.attempts)
                continue

            handler.mark_success(handle.provider_id)
            return result

        logger.debug(handler.get_attempt_summary())
        raise AllProvidersFailedError(handler.errors, provider=self.name)

    async def generate(
        self,
        prompt: str,
        options: Mapping[str, Any] | None = None,
        *,
        deadline: Deadline | None = None,
    ) -> DispatchResult[GenerateResponse]:
        """Generate text from a prompt."""
        _require(prompt, "prompt")
        return await self.dispatch(Operation.GENERATE, (prompt,), options, deadline=deadline)

    async def stream(
        self,
        prompt: str,
        options: Mapping[str, Any] | None = None,
        *,
        deadline: Deadline | None = None,
    ) -> DispatchResult[ResponseStream]:
        """Open a response stream. Only opening the stream is retried."""
        _require(prompt, "prompt")
        return await self.dispatch(Operation.STREAM, (prompt,), options, deadline=deadline)

    async def embed(
        self,
        text: str,
        options: Mapping[str, Any] | None = None,
        *,
        deadline: Deadline | None = None,
    ) -> DispatchResult[Embedding]:
        _require(text, "text")
        return await self.dispatch(Operation.EMBED, (text,), options, deadline=deadline)

    async def batch_embed(
        self,
        texts: Sequence[str],
        options: Mapping[str, Any] | None = None,
        *,
        deadline: Deadline | None = None,
    ) -> DispatchResult[BatchEmbedding]:
        _require(texts, "texts")
        return await self.dispatch(
            Operation.BATCH_EMBED, (list(texts),), options, deadline=deadline
        )

    async def classify(
        self,
        text: str,
        labels: Sequence[str],
        options: Mapping[str, Any] | None = None,
        *,
        deadline: Deadline | None = None,
    ) -> DispatchResult[Classification]:
        """Classify text into one of ``labels``."""
        _require(text, "text")
        _require(labels, "labels")
        return await self.dispatch(
            Operation.CLASSIFY, (text, list(labels)), options, deadline=deadline
        )

    async def generate_code(
        self,
        prompt: str,
        options: Mapping[str, Any] | None = None,
        *,
        deadline: Deadline | None = None,
    ) -> DispatchResult[CodeResult]:
        _require(prompt, "prompt")
        return await self.dispatch(Operation.GENERATE_CODE, (prompt,), options, deadline=deadline)

    async def explain_code(
        self,
        code: str,
        options: Mapping[str, Any] | None = None,
        *,
        deadline: Deadline | None = None,
    ) -> DispatchResult[CodeExplanation]:
        _require(code, "code")
        return await self.dispatch(Operation.EXPLAIN_CODE, (code,), options, deadline=deadline)

    def __repr__(self) -> str:
        providers = ", ".join(self.provider_ids)
        return f"<Composite {self.name} strategy={self.strategy.value} providers=[{providers}]>"


def _require(value: Any, name: str) -> None:
    if isinstance(value, str):
        value = value.strip()
    if not value:
        raise ValueError(f"{name} cannot be empty")


def default_composite(
    providers: Iterable[Any] = (),
    *,
    strategy: Strategy | str = Strategy.FALLBACK,
    policy: RetryPolicy | None = None,
    sentinel: Any | None = None,
    **kwargs: Any,
) -> Composite:
    """
    Build a Fallback-ready composite from the available providers.

    Unavailable providers are dropped and the heuristic provider is appended
    as the terminal sentinel, so the result always has at least one provider.

    Args:
        providers: Candidate providers in priority order.
        strategy: Ordering strategy.
        policy: Retry policy.
        sentinel: Always-available terminal provider (heuristic if None).
        **kwargs: Passed through to Composite.

    Returns:
        The composite.
    """
    from airoute.adapters.heuristic import HeuristicProvider

    sentinel = sentinel or HeuristicProvider()
    sentinel_id = ProviderHandle.for_provider(sentinel).provider_id

    chain = []
    for provider in providers:
        handle = ProviderHandle.for_provider(provider)
        if handle.provider_id == sentinel_id:
            continue
        if not handle.is_available():
            logger.info(f"Skipping unavailable provider: {handle.provider_id}")
            continue
        chain.append(provider)
    chain.append(sentinel)

    return Composite(chain, strategy=strategy, policy=policy, **kwargs)
