"""
Retry policy engine for airoute.

Repeatedly invokes one provider with exponential backoff until it succeeds,
fails with an error the policy does not retry, or runs out of attempts.
"""

import asyncio
import inspect
import logging
import random
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from airoute.providers.capabilities import ProviderHandle
from airoute.providers.exceptions import (
    RETRYABLE_KINDS,
    ErrorKind,
    NormalizedError,
    ProviderCallError,
)
from airoute.providers.models import DispatchResult, Operation

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]
RandomFn = Callable[[], float]
ClockFn = Callable[[], float]

# Option keys consumed by dispatch and never forwarded to providers.
RETRY_OPTION_KEYS = frozenset({"max_retries", "retry_delay_ms", "retry_on_types", "timeout_ms"})


@dataclass(frozen=True)
class RetryPolicy:
    """
    Immutable retry settings for one dispatch.

    Attributes:
        max_attempts: Total attempts per provider (>= 1).
        base_delay: Delay in seconds before the second attempt.
        max_delay: Upper bound on any single delay, in seconds.
        jitter: Scale each delay by a uniform factor in [0.5, 1.0].
        retryable_kinds: Error kinds that retry the same provider.
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    jitter: bool = True
    retryable_kinds: frozenset[ErrorKind] = field(default=RETRYABLE_KINDS)

    def __post_init__(self) -> None:
        if not isinstance(self.max_attempts, int) or self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.max_delay < 0:
            raise ValueError("max_delay must be >= 0")
        object.__setattr__(
            self, "retryable_kinds", frozenset(ErrorKind(kind) for kind in self.retryable_kinds)
        )

    def delay_for(self, attempt: int, rand: RandomFn = random.random) -> float:
        """
        Delay to wait after a failed attempt.

        Args:
            attempt: The attempt that just failed (1-based).
            rand: Source of uniform values in [0, 1).

        Returns:
            ``min(base_delay * 2^(attempt-1), max_delay)``, jittered when enabled.
        """
        if attempt < 1:
            raise ValueError("attempt must be >= 1")
        delay = min(self.base_delay * 2 ** (attempt - 1), self.max_delay)
        if self.jitter:
            delay *= 0.5 + 0.5 * rand()
        return delay

    def should_retry(self, error: NormalizedError, attempt: int) -> bool:
        """
        Decide whether to retry the same provider.

        An explicit retryable override on the error wins over the policy's
        kind set.
        """
        if attempt >= self.max_attempts:
            return False
        if error.retryable_explicit:
            return bool(error.retryable)
        return error.kind in self.retryable_kinds

    def with_overrides(self, options: Mapping[str, Any]) -> "RetryPolicy":
        """
        Apply per-call retry overrides from resolved options.

        Recognized keys: ``max_retries`` (total attempts), ``retry_delay_ms``
        and ``retry_on_types`` (kind names).
        """
        changes: dict[str, Any] = {}
        if options.get("max_retries") is not None:
            changes["max_attempts"] = int(options["max_retries"])
        if options.get("retry_delay_ms") is not None:
            changes["base_delay"] = float(options["retry_delay_ms"]) / 1000
        if options.get("retry_on_types") is not None:
            changes["retryable_kinds"] = _parse_kinds(options["retry_on_types"])
        return replace(self, **changes) if changes else self


def _parse_kinds(kinds: Iterable[str | ErrorKind] | str) -> frozenset[ErrorKind]:
    if isinstance(kinds, str):
        kinds = [kind.strip() for kind in kinds.split(",") if kind.strip()]
    return frozenset(ErrorKind(kind) for kind in kinds)


class Deadline:
    """Absolute point in time after which a call is abandoned."""

    def __init__(self, timeout: float, clock: ClockFn = time.monotonic):
        """Initialize the deadline.

        Args:
            timeout: Seconds from now.
            clock: Monotonic clock, injectable for tests.
        """
        self._clock = clock
        self.expires_at = clock() + timeout

    @classmethod
    def from_options(
        cls, options: Mapping[str, Any], clock: ClockFn = time.monotonic
    ) -> "Deadline | None":
        """Create a deadline from a ``timeout_ms`` option, if present."""
        timeout_ms = options.get("timeout_ms")
        if timeout_ms is None:
            return None
        return cls(float(timeout_ms) / 1000, clock)

    def remaining(self) -> float:
        return max(0.0, self.expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self._clock() >= self.expires_at


def deadline_error(provider_id: str, operation: Operation, attempts: int) -> NormalizedError:
    """The timeout error reported when a call deadline runs out."""
    return NormalizedError(
        ErrorKind.TIMEOUT,
        f"Deadline exceeded during {operation.value}",
        provider_id,
        details={"attempts": attempts, "deadline": True},
    )


class RetryExecutor:
    """Runs one provider operation under a RetryPolicy.

    Waits use the injected async sleep, so a retry suspends only the
    calling task and never blocks other dispatches on the same loop.
    Under a deadline, a provider call still running when it passes is
    cancelled and reported as a timeout.
    """

    def __init__(
        self,
        sleep: SleepFn = asyncio.sleep,
        rand: RandomFn = random.random,
    ):
        """Initialize the executor.

        Args:
            sleep: Async sleep used between attempts.
            rand: Uniform random source used for jitter.
        """
        self._sleep = sleep
        self._rand = rand

    async def execute(
        self,
        handle: ProviderHandle,
        operation: Operation,
        args: Sequence[Any],
        options: Mapping[str, Any],
        policy: RetryPolicy,
        deadline: Deadline | None = None,
    ) -> DispatchResult:
        """
        Invoke ``operation`` on one provider, retrying per ``policy``.

        Args:
            handle: Provider to call.
            operation: Operation to run.
            args: Positional operation arguments (options are appended).
            options: Options forwarded to the provider.
            policy: Retry policy.
            deadline: Optional call deadline.

        Returns:
            Success tagged with the provider id and attempt count.

        Raises:
            ProviderCallError: When the provider fails for good.
        """
        attempt = 0
        while True:
            if deadline is not None and deadline.expired:
                raise ProviderCallError(
                    deadline_error(handle.provider_id, operation, attempt), max(attempt, 1)
                )

            attempt += 1
            scope = asyncio.timeout(deadline.remaining()) if deadline is not None else None
            try:
                if scope is None:
                    value = await invoke(handle, operation, args, options)
                else:
                    async with scope:
                        value = await invoke(handle, operation, args, options)
            except Exception as e:
                if scope is not None and scope.expired():
                    logger.debug(f"Deadline hit while {handle.provider_id} was running {operation.value}")
                    raise ProviderCallError(
                        deadline_error(handle.provider_id, operation, attempt), attempt
                    ) from e

                error = handle.normalize(e)
                if not policy.should_retry(error, attempt):
                    logger.debug(f"Giving up on {handle.provider_id} after {attempt} attempt(s): {error}")
                    raise ProviderCallError(error, attempt) from e

                delay = policy.delay_for(attempt, self._rand)
                if deadline is not None and deadline.remaining() <= delay:
                    raise ProviderCallError(
                        deadline_error(handle.provider_id, operation, attempt), attempt
                    ) from e

                logger.debug(
                    f"Attempt {attempt} on {handle.provider_id} failed ({error.kind.value}), "
                    f"retrying in {delay:.2f}s"
                )
                await self._sleep(delay)
                continue

            return DispatchResult(value=value, provider_id=handle.provider_id, attempt_count=attempt)


async def invoke(
    handle: ProviderHandle,
    operation: Operation,
    args: Sequence[Any],
    options: Mapping[str, Any],
) -> Any:
    """Call the provider's operation method once."""
    method = getattr(handle.provider, operation.value)
    result = method(*args, dict(options))
    if inspect.isawaitable(result):
        result = await result
    if isinstance(result, DispatchResult):
        # nested composite
        return result.value
    return result
