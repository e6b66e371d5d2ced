"""
Mock provider for airoute.

Implements every operation with canned responses and records each call in a
per-instance log. Responses and failures can be scripted per operation.
"""

import logging
import random
import threading
from collections import deque
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from airoute.providers.base import Provider
from airoute.providers.exceptions import (
    AuthenticationError,
    ErrorKind,
    InvalidRequestError,
    NetworkError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
    UnsupportedOperationError,
)
from airoute.providers.models import (
    BatchEmbedding,
    Classification,
    CodeExplanation,
    CodeResult,
    Embedding,
    GenerateResponse,
    Operation,
    ResponseStream,
    StreamChunk,
    TokenUsage,
    iter_chunks,
)

logger = logging.getLogger(__name__)

DEFAULT_CONTENT = "This is a mocked response from the airoute mock provider."
EMBEDDING_DIMENSIONS = 768

_KIND_ERRORS: dict[ErrorKind, type[ProviderError]] = {
    ErrorKind.RATE_LIMIT: RateLimitError,
    ErrorKind.AUTH: AuthenticationError,
    ErrorKind.INVALID_REQUEST: InvalidRequestError,
    ErrorKind.SERVER_ERROR: ServerError,
    ErrorKind.TIMEOUT: RequestTimeoutError,
    ErrorKind.NETWORK_ERROR: NetworkError,
    ErrorKind.UNAVAILABLE: ProviderUnavailableError,
    ErrorKind.UNSUPPORTED: UnsupportedOperationError,
    ErrorKind.UNKNOWN: ProviderError,
}


def error_for_kind(kind: ErrorKind | str, provider: str | None = None) -> ProviderError:
    """Build the raw exception a real provider would raise for ``kind``."""
    kind = ErrorKind(kind)
    return _KIND_ERRORS[kind](f"Mock {kind.value} error", provider=provider)


@dataclass
class MockCall:
    """One recorded call."""

    operation: Operation
    args: tuple[Any, ...]
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class _Failure:
    error: BaseException
    remaining: int | None


class MockProvider(Provider):
    """
    Provider with scripted behaviour for tests and development.

    Resolution order for each call: the next scripted item from
    ``set_responses``, then an active ``fail_with`` failure, then the fixed
    ``set_response`` value, then the built-in default.
    """

    default_id = "mock"

    def __init__(
        self,
        provider_id: str | None = None,
        responses: Mapping[Operation | str, Any] | None = None,
        available: bool = True,
        track_calls: bool = True,
    ):
        """
        Initialize the mock provider.

        Args:
            provider_id: Provider identity (default ``mock``).
            responses: Fixed responses by operation.
            available: What ``is_available`` reports.
            track_calls: Whether calls are recorded.
        """
        super().__init__(provider_id)
        self.available = available
        self.track_calls = track_calls
        self._lock = threading.Lock()
        self._calls: list[MockCall] = []
        self._responses: dict[Operation, Any] = {}
        self._scripts: dict[Operation, deque[Any]] = {}
        self._failures: dict[Operation | None, _Failure] = {}
        for operation, response in (responses or {}).items():
            self.set_response(operation, response)

    def is_available(self) -> bool:
        return self.available

    def set_response(self, operation: Operation | str, response: Any) -> None:
        """Always answer ``operation`` with ``response``.

        A plain string is accepted for text operations and wrapped in the
        operation's response type.
        """
        with self._lock:
            self._responses[Operation(operation)] = response

    def set_responses(self, operation: Operation | str, responses: Iterable[Any]) -> None:
        """Script a sequence of results; exception items are raised."""
        with self._lock:
            self._scripts[Operation(operation)] = deque(responses)

    def fail_with(
        self,
        error: BaseException | ErrorKind | str,
        operation: Operation | str | None = None,
        times: int | None = None,
    ) -> None:
        """
        Make calls fail.

        Args:
            error: Exception to raise, or an error kind to raise the
                matching provider exception for.
            operation: Operation to fail (all operations if None).
            times: Number of calls to fail (every call if None).
        """
        if not isinstance(error, BaseException):
            error = error_for_kind(error, self.provider_id)
        key = Operation(operation) if operation is not None else None
        with self._lock:
            self._failures[key] = _Failure(error, times)
        logger.debug(f"{self.provider_id}: failing {key.value if key else 'all'} with {error!r}")

    def get_calls(self, operation: Operation | str | None = None) -> list[MockCall]:
        """Recorded calls in order, optionally for one operation only."""
        with self._lock:
            calls = list(self._calls)
        if operation is None:
            return calls
        operation = Operation(operation)
        return [call for call in calls if call.operation is operation]

    def clear_calls(self) -> None:
        with self._lock:
            self._calls.clear()

    def reset(self) -> None:
        """Forget all scripted behaviour and recorded calls."""
        with self._lock:
            self._calls.clear()
            self._responses.clear()
            self._scripts.clear()
            self._failures.clear()

    def _next(self, operation: Operation, args: tuple[Any, ...], options: Mapping[str, Any]) -> Any:
        with self._lock:
            if self.track_calls:
                self._calls.append(MockCall(operation, args, dict(options)))

            script = self._scripts.get(operation)
            if script:
                item = script.popleft()
                if isinstance(item, BaseException):
                    raise item
                return item

            failure = self._failures.get(operation) or self._failures.get(None)
            if failure is not None and failure.remaining != 0:
                if failure.remaining is not None:
                    failure.remaining -= 1
                raise failure.error

            return self._responses.get(operation)

    def _text_response(self, response: Any, model: str = "mock-model") -> GenerateResponse:
        if response is None:
            response = DEFAULT_CONTENT
        if isinstance(response, str):
            return GenerateResponse(
                content=response,
                model=model,
                provider=self.provider_id,
                usage=TokenUsage(input_tokens=10, output_tokens=20, total_tokens=30),
            )
        return response

    async def generate(self, prompt: str, options: Mapping[str, Any]) -> GenerateResponse:
        return self._text_response(self._next(Operation.GENERATE, (prompt,), options))

    async def stream(self, prompt: str, options: Mapping[str, Any]) -> ResponseStream:
        response = self._next(Operation.STREAM, (prompt,), options)
        if isinstance(response, ResponseStream):
            return response
        if isinstance(response, list):
            return ResponseStream(iter_chunks(response))
        text = self._text_response(response)
        chunk = StreamChunk(content=text.content, finish_reason="stop", model=text.model)
        return ResponseStream(iter_chunks([chunk]))

    async def embed(self, text: str, options: Mapping[str, Any]) -> Embedding:
        response = self._next(Operation.EMBED, (text,), options)
        if response is not None:
            return response
        return Embedding(vector=_vector_for(text), model="mock-embed")

    async def batch_embed(self, texts: Sequence[str], options: Mapping[str, Any]) -> BatchEmbedding:
        response = self._next(Operation.BATCH_EMBED, (list(texts),), options)
        if response is not None:
            return response
        return BatchEmbedding(vectors=[_vector_for(text) for text in texts], model="mock-embed")

    async def classify(
        self, text: str, labels: Sequence[str], options: Mapping[str, Any]
    ) -> Classification:
        """Default: the first label wins with confidence 0.95."""
        labels = list(labels)
        response = self._next(Operation.CLASSIFY, (text, labels), options)
        if response is not None:
            return response

        primary = 0.95
        remaining = (1.0 - primary) / max(len(labels) - 1, 1)
        scores = {label: primary if i == 0 else remaining for i, label in enumerate(labels)}
        return Classification(
            label=labels[0] if labels else "unknown", confidence=primary, scores=scores
        )

    async def generate_code(self, prompt: str, options: Mapping[str, Any]) -> CodeResult:
        response = self._next(Operation.GENERATE_CODE, (prompt,), options)
        if isinstance(response, str):
            return CodeResult(code=response, language="python", model="mock-code")
        if response is not None:
            return response
        return CodeResult(
            code="def example():\n    return 'mock'\n",
            language="python",
            explanation="This is a mock code example.",
            model="mock-code",
        )

    async def explain_code(self, code: str, options: Mapping[str, Any]) -> CodeExplanation:
        response = self._next(Operation.EXPLAIN_CODE, (code,), options)
        if isinstance(response, str):
            return CodeExplanation(explanation=response, model="mock-code")
        if response is not None:
            return response
        return CodeExplanation(
            explanation="This is a mock explanation of the code.",
            language="python",
            complexity="simple",
            model="mock-code",
        )


def _vector_for(text: str) -> list[float]:
    # seeded by the text so repeated calls agree
    rng = random.Random(text)
    return [rng.random() for _ in range(EMBEDDING_DIMENSIONS)]
