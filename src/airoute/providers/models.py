"""
Provider data models for airoute.

Defines the operation enum and the unified response types shared by all
providers.
"""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Operation(str, Enum):
    """AI operations a provider may implement."""

    GENERATE = "generate"
    STREAM = "stream"
    EMBED = "embed"
    BATCH_EMBED = "batch_embed"
    CLASSIFY = "classify"
    GENERATE_CODE = "generate_code"
    EXPLAIN_CODE = "explain_code"

    @property
    def description(self) -> str:
        """Human-readable capability name."""
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    Operation.GENERATE: "text generation",
    Operation.STREAM: "streaming",
    Operation.EMBED: "embeddings",
    Operation.BATCH_EMBED: "batch embeddings",
    Operation.CLASSIFY: "classification",
    Operation.GENERATE_CODE: "code generation",
    Operation.EXPLAIN_CODE: "code explanation",
}


@dataclass
class TokenUsage:
    """Token usage statistics."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __post_init__(self) -> None:
        if self.total_tokens == 0:
            self.total_tokens = self.input_tokens + self.output_tokens

    def to_dict(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }

    @classmethod
    def from_mapping(cls, tokens: Mapping[str, Any] | None) -> "TokenUsage":
        """
        Normalize token counts reported under provider-specific keys.

        Args:
            tokens: Mapping using any of the prompt/completion/input/output
                key spellings.

        Returns:
            Normalized usage; totals are recomputed from the parts.
        """
        if not tokens:
            return cls()
        prompt = _first_count(tokens, ("prompt", "prompt_tokens", "input", "input_tokens"))
        completion = _first_count(
            tokens, ("completion", "completion_tokens", "output", "output_tokens")
        )
        return cls(input_tokens=prompt, output_tokens=completion)


def _first_count(tokens: Mapping[str, Any], keys: tuple[str, ...]) -> int:
    for key in keys:
        value = tokens.get(key)
        if isinstance(value, int):
            return value
    return 0


@dataclass
class GenerateResponse:
    """Unified text generation response from any provider."""

    content: str
    model: str | None = None
    provider: str | None = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: str = "stop"
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class StreamChunk:
    """Single chunk from streaming response."""

    content: str
    finish_reason: str | None = None
    model: str | None = None


@dataclass
class Embedding:
    """Embedding vector for a single text."""

    vector: list[float]
    model: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def dimensions(self) -> int:
        return len(self.vector)


@dataclass
class BatchEmbedding:
    """Embedding vectors for several texts, in input order."""

    vectors: list[list[float]]
    model: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def dimensions(self) -> int:
        return len(self.vectors[0]) if self.vectors else 0


@dataclass
class Classification:
    """Classification result with confidence scores."""

    label: str
    confidence: float
    scores: dict[str, float] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_scores(cls, scores: Mapping[str, float]) -> "Classification":
        """Pick the highest scoring label."""
        if not scores:
            raise ValueError("scores cannot be empty")
        label, confidence = max(scores.items(), key=lambda item: item[1])
        return cls(label=label, confidence=confidence, scores=dict(scores))


@dataclass
class CodeResult:
    """Result of a code generation operation."""

    code: str
    language: str | None = None
    explanation: str | None = None
    tests: str | None = None
    model: str | None = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class CodeExplanation:
    """Explanation of a piece of code."""

    explanation: str
    language: str | None = None
    complexity: str | None = None
    model: str | None = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DispatchResult(Generic[T]):
    """Successful dispatch, tagged with the provider that answered."""

    value: T
    provider_id: str
    attempt_count: int

    def __post_init__(self) -> None:
        if self.attempt_count < 1:
            raise ValueError("attempt_count must be >= 1")


class ResponseStream:
    """
    Async iterator over stream chunks with an explicit close hook.

    The hook runs exactly once: when the source is exhausted, when it
    raises, or when the consumer closes the stream early.
    """

    def __init__(
        self,
        source: AsyncIterator[StreamChunk],
        on_close: Callable[[], Awaitable[None] | None] | None = None,
    ):
        self._source = source
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "ResponseStream":
        return self

    async def __anext__(self) -> StreamChunk:
        if self._closed:
            raise StopAsyncIteration
        try:
            return await self._source.__anext__()
        except BaseException:
            # exhaustion included
            await self.aclose()
            raise

    async def aclose(self) -> None:
        """Release the underlying stream. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            await aclose()
        if self._on_close is not None:
            result = self._on_close()
            if result is not None:
                await result
        logger.debug("Stream closed")

    async def collect(self) -> str:
        """Drain the stream and return the concatenated content."""
        parts = [chunk.content async for chunk in self]
        return "".join(parts)

    async def __aenter__(self) -> "ResponseStream":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


def iter_chunks(chunks: list[StreamChunk]) -> AsyncIterator[StreamChunk]:
    """Turn a list of chunks into an async iterator."""

    async def _gen() -> AsyncIterator[StreamChunk]:
        for chunk in chunks:
            yield chunk

    return _gen()


class HealthStatus(str, Enum):
    """Provider health status."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class ProviderHealth:
    """Health check result for a provider."""

    provider: str
    status: HealthStatus
    latency_ms: float | None
    last_check: datetime
    error: str | None = None
