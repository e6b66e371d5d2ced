"""
Unit tests for the retry policy engine.
"""

import asyncio

import pytest

from airoute.adapters import MockProvider
from airoute.providers import (
    Deadline,
    DispatchResult,
    ErrorKind,
    InvalidRequestError,
    NormalizedError,
    Operation,
    ProviderCallError,
    ProviderHandle,
    RateLimitError,
    RetryExecutor,
    RetryPolicy,
    ServerError,
)
from airoute.providers.models import GenerateResponse


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.base_delay == 0.5
        assert policy.max_delay == 10.0
        assert policy.jitter is True

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_exponential_delay(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=100.0, jitter=False)
        assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_delay_capped(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=False)
        assert policy.delay_for(10) == 5.0

    def test_jitter_range(self):
        policy = RetryPolicy(base_delay=2.0, max_delay=100.0, jitter=True)
        assert policy.delay_for(1, rand=lambda: 0.0) == 1.0
        assert policy.delay_for(1, rand=lambda: 1.0) == 2.0
        assert policy.delay_for(2, rand=lambda: 0.5) == pytest.approx(3.0)

    def test_should_retry_by_kind(self):
        policy = RetryPolicy(max_attempts=3)
        retryable = NormalizedError(ErrorKind.TIMEOUT, "slow", "p")
        fatal = NormalizedError(ErrorKind.INVALID_REQUEST, "bad", "p")

        assert policy.should_retry(retryable, 1)
        assert policy.should_retry(retryable, 2)
        assert not policy.should_retry(retryable, 3)
        assert not policy.should_retry(fatal, 1)

    def test_explicit_retryable_wins(self):
        policy = RetryPolicy(max_attempts=3)
        forced = NormalizedError(ErrorKind.INVALID_REQUEST, "flaky", "p", retryable=True)
        blocked = NormalizedError(ErrorKind.RATE_LIMIT, "quota", "p", retryable=False)

        assert policy.should_retry(forced, 1)
        assert not policy.should_retry(blocked, 1)

    def test_custom_retryable_kinds(self):
        policy = RetryPolicy(retryable_kinds=frozenset({"timeout"}))
        assert policy.retryable_kinds == frozenset({ErrorKind.TIMEOUT})
        assert not policy.should_retry(NormalizedError(ErrorKind.SERVER_ERROR, "x", "p"), 1)

    def test_with_overrides(self):
        policy = RetryPolicy().with_overrides(
            {"max_retries": 5, "retry_delay_ms": 250, "retry_on_types": ["rate_limit"]}
        )
        assert policy.max_attempts == 5
        assert policy.base_delay == 0.25
        assert policy.retryable_kinds == frozenset({ErrorKind.RATE_LIMIT})

    def test_with_no_overrides_returns_same(self):
        policy = RetryPolicy()
        assert policy.with_overrides({"model": "x"}) is policy


class TestDeadline:
    """Tests for Deadline."""

    def test_expiry(self):
        clock = FakeClock()
        deadline = Deadline(2.0, clock=clock)
        assert not deadline.expired
        assert deadline.remaining() == 2.0

        clock.now = 2.5
        assert deadline.expired
        assert deadline.remaining() == 0.0

    def test_from_options(self):
        clock = FakeClock()
        deadline = Deadline.from_options({"timeout_ms": 1500}, clock=clock)
        assert deadline is not None
        assert deadline.remaining() == 1.5
        assert Deadline.from_options({}) is None


class TestRetryExecutor:
    """Tests for RetryExecutor."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self, executor, sleep):
        handle = ProviderHandle.for_provider(MockProvider("m"))
        result = await executor.execute(handle, Operation.GENERATE, ("hi",), {}, RetryPolicy())

        assert isinstance(result, DispatchResult)
        assert result.provider_id == "m"
        assert result.attempt_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, executor, sleep):
        provider = MockProvider("m")
        provider.set_responses(
            Operation.GENERATE,
            [RateLimitError("slow"), ServerError("boom"), GenerateResponse(content="ok")],
        )
        handle = ProviderHandle.for_provider(provider)
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, jitter=False)

        result = await executor.execute(handle, Operation.GENERATE, ("hi",), {}, policy)

        assert result.value.content == "ok"
        assert result.attempt_count == 3
        assert sleep.delays == [1.0, 2.0]
        assert len(provider.get_calls(Operation.GENERATE)) == 3

    @pytest.mark.asyncio
    async def test_non_retryable_tried_once(self, executor, sleep):
        provider = MockProvider("m")
        provider.fail_with(InvalidRequestError("bad prompt"))
        handle = ProviderHandle.for_provider(provider)

        with pytest.raises(ProviderCallError) as exc_info:
            await executor.execute(
                handle, Operation.GENERATE, ("hi",), {}, RetryPolicy(max_attempts=5)
            )

        assert exc_info.value.error.kind is ErrorKind.INVALID_REQUEST
        assert exc_info.value.attempts == 1
        assert len(provider.get_calls()) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_exhausts_attempts(self, executor, sleep):
        provider = MockProvider("m")
        provider.fail_with(ErrorKind.UNAVAILABLE)
        handle = ProviderHandle.for_provider(provider)
        policy = RetryPolicy(max_attempts=3, base_delay=0.1, jitter=False)

        with pytest.raises(ProviderCallError) as exc_info:
            await executor.execute(handle, Operation.GENERATE, ("hi",), {}, policy)

        assert exc_info.value.attempts == 3
        assert exc_info.value.error.kind is ErrorKind.UNAVAILABLE
        assert exc_info.value.error.provider_id == "m"
        assert len(sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_jitter_uses_rand(self, sleep):
        provider = MockProvider("m")
        provider.set_responses(Operation.GENERATE, [ServerError("boom")])
        handle = ProviderHandle.for_provider(provider)
        executor = RetryExecutor(sleep=sleep, rand=lambda: 0.0)
        policy = RetryPolicy(max_attempts=2, base_delay=4.0, jitter=True)

        await executor.execute(handle, Operation.GENERATE, ("hi",), {}, policy)

        assert sleep.delays == [2.0]

    @pytest.mark.asyncio
    async def test_expired_deadline_before_attempt(self, executor):
        clock = FakeClock()
        deadline = Deadline(1.0, clock=clock)
        clock.now = 5.0
        provider = MockProvider("m")
        handle = ProviderHandle.for_provider(provider)

        with pytest.raises(ProviderCallError) as exc_info:
            await executor.execute(
                handle, Operation.GENERATE, ("hi",), {}, RetryPolicy(), deadline
            )

        assert exc_info.value.error.kind is ErrorKind.TIMEOUT
        assert provider.get_calls() == []

    @pytest.mark.asyncio
    async def test_deadline_shorter_than_wait(self, executor, sleep):
        clock = FakeClock()
        deadline = Deadline(0.5, clock=clock)
        provider = MockProvider("m")
        provider.fail_with(ErrorKind.SERVER_ERROR)
        handle = ProviderHandle.for_provider(provider)
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, jitter=False)

        with pytest.raises(ProviderCallError) as exc_info:
            await executor.execute(handle, Operation.GENERATE, ("hi",), {}, policy, deadline)

        assert exc_info.value.error.kind is ErrorKind.TIMEOUT
        assert exc_info.value.attempts == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_deadline_cancels_running_call(self, executor, sleep):
        finished = []

        class SlowProvider:
            provider_id = "slow"

            async def generate(self, prompt, options):
                await asyncio.sleep(0.5)
                finished.append(prompt)
                return GenerateResponse(content="late")

        handle = ProviderHandle.for_provider(SlowProvider())
        policy = RetryPolicy(max_attempts=3, base_delay=0.01, jitter=False)

        with pytest.raises(ProviderCallError) as exc_info:
            await executor.execute(
                handle, Operation.GENERATE, ("hi",), {}, policy, Deadline(0.05)
            )

        error = exc_info.value.error
        assert error.kind is ErrorKind.TIMEOUT
        assert error.details["deadline"] is True
        assert exc_info.value.attempts == 1
        assert finished == []
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_provider_timeout_is_retried_under_deadline(self, executor, sleep):
        provider = MockProvider("m")
        provider.fail_with(ErrorKind.TIMEOUT, times=1)
        handle = ProviderHandle.for_provider(provider)
        policy = RetryPolicy(max_attempts=2, base_delay=0.01, jitter=False)

        result = await executor.execute(
            handle, Operation.GENERATE, ("hi",), {}, policy, Deadline(30.0)
        )

        assert result.attempt_count == 2
        assert sleep.delays == [0.01]

    @pytest.mark.asyncio
    async def test_sync_provider_method(self, executor):
        class SyncProvider:
            provider_id = "sync"

            def generate(self, prompt, options):
                return GenerateResponse(content=prompt.upper())

        handle = ProviderHandle.for_provider(SyncProvider())
        result = await executor.execute(handle, Operation.GENERATE, ("hi",), {}, RetryPolicy())
        assert result.value.content == "HI"

    @pytest.mark.asyncio
    async def test_options_passed_to_provider(self, executor):
        provider = MockProvider("m")
        handle = ProviderHandle.for_provider(provider)
        await executor.execute(
            handle, Operation.GENERATE, ("hi",), {"temperature": 0.2}, RetryPolicy()
        )
        assert provider.get_calls()[0].options == {"temperature": 0.2}
