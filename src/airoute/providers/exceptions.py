"""
Provider exceptions for airoute.

Defines the canonical error taxonomy, the normalized error value and the
exception hierarchy raised by providers and by the dispatcher.
"""

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx


class ErrorKind(str, Enum):
    """Canonical classification of provider failures."""

    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    INVALID_REQUEST = "invalid_request"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    UNAVAILABLE = "unavailable"
    UNSUPPORTED = "unsupported"
    UNKNOWN = "unknown"


RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset(
    {
        ErrorKind.RATE_LIMIT,
        ErrorKind.TIMEOUT,
        ErrorKind.NETWORK_ERROR,
        ErrorKind.SERVER_ERROR,
        ErrorKind.UNAVAILABLE,
    }
)


def should_retry(kind: ErrorKind) -> bool:
    """
    Determine if a failure kind is retryable by default.

    Args:
        kind: The classified failure kind.

    Returns:
        True if the same provider may be re-attempted.
    """
    return kind in RETRYABLE_KINDS


@dataclass(frozen=True)
class NormalizedError:
    """
    Provider-agnostic error value.

    ``retryable`` defaults from ``kind`` unless given explicitly. It is
    resolved once at construction; ``retryable_explicit`` records whether
    the caller overrode it.
    """

    kind: ErrorKind
    message: str
    provider_id: str
    details: Mapping[str, Any] = field(default_factory=dict)
    retryable: bool | None = None
    retryable_explicit: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", ErrorKind(self.kind))
        object.__setattr__(self, "details", dict(self.details))
        object.__setattr__(self, "retryable_explicit", self.retryable is not None)
        if self.retryable is None:
            object.__setattr__(self, "retryable", should_retry(self.kind))

    def __str__(self) -> str:
        return f"[{self.provider_id}] {self.kind.value}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dict (for logging and telemetry)."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "provider_id": self.provider_id,
            "details": dict(self.details),
            "retryable": self.retryable,
        }


class ProviderError(Exception):
    """Base exception for provider errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.provider = provider


class AuthenticationError(ProviderError):
    """API key invalid or missing."""

    kind = ErrorKind.AUTH


class RateLimitError(ProviderError):
    """Provider rate limit exceeded."""

    kind = ErrorKind.RATE_LIMIT

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        retry_after: int | None = None,
    ):
        super().__init__(message, provider)
        self.retry_after = retry_after


class ModelNotFoundError(ProviderError):
    """Requested model not found or not supported."""

    kind = ErrorKind.INVALID_REQUEST


class ContextLengthExceededError(ProviderError):
    """Request exceeded the model's context length."""

    kind = ErrorKind.INVALID_REQUEST

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        max_tokens: int | None = None,
        requested_tokens: int | None = None,
    ):
        super().__init__(message, provider)
        self.max_tokens = max_tokens
        self.requested_tokens = requested_tokens


class NetworkError(ProviderError):
    """Network-related error (connection reset, DNS, etc.)."""

    kind = ErrorKind.NETWORK_ERROR


class RequestTimeoutError(ProviderError):
    """Provider did not answer in time."""

    kind = ErrorKind.TIMEOUT


class ServerError(ProviderError):
    """Provider server error (5xx status codes)."""

    kind = ErrorKind.SERVER_ERROR


class ProviderUnavailableError(ProviderError):
    """Provider is overloaded or temporarily unreachable."""

    kind = ErrorKind.UNAVAILABLE


class InvalidRequestError(ProviderError):
    """Invalid request sent to provider."""

    kind = ErrorKind.INVALID_REQUEST


class UnsupportedOperationError(ProviderError):
    """Provider does not implement the requested operation."""

    kind = ErrorKind.UNSUPPORTED


class ProviderCallError(ProviderError):
    """A single provider gave up after exhausting its attempts.

    Raised by the retry executor; the dispatcher demotes it to a
    contributing failure and moves on.
    """

    def __init__(self, error: NormalizedError, attempts: int):
        super().__init__(str(error), error.provider_id)
        self.error = error
        self.attempts = attempts
        self.kind = error.kind


class AllProvidersFailedError(ProviderError):
    """All providers in the dispatch chain failed."""

    def __init__(
        self,
        errors: Sequence[tuple[str, NormalizedError]],
        provider: str = "composite",
        kind: ErrorKind = ErrorKind.SERVER_ERROR,
    ):
        super().__init__("All providers failed", provider)
        self.errors: list[tuple[str, NormalizedError]] = list(errors)
        self.kind = kind
        self.error = NormalizedError(
            kind=kind,
            message="All providers failed",
            provider_id=provider,
            details={"errors": list(self.errors)},
            retryable=False,
        )

    @property
    def failed_providers(self) -> list[str]:
        """Provider ids in attempted order."""
        return [provider_id for provider_id, _ in self.errors]

    def summary(self) -> str:
        """Human-readable description of every contributing failure."""
        if not self.errors:
            return "All providers failed"
        lines = [f"  - {error}" for _, error in self.errors]
        return "All providers failed:\n" + "\n".join(lines)


class ProviderNotRegisteredError(LookupError):
    """A provider was queried before being registered (wiring bug)."""


def classify_error(error: BaseException) -> ErrorKind:
    """
    Classify an exception into an error kind.

    Handles the airoute exception hierarchy, httpx transport and status
    errors, and builtin timeout/connection errors.

    Args:
        error: The exception to classify.

    Returns:
        The error kind classification.
    """
    if isinstance(error, ProviderError):
        return error.kind

    if isinstance(error, httpx.TimeoutException):
        return ErrorKind.TIMEOUT
    elif isinstance(error, httpx.HTTPStatusError):
        return kind_for_status(error.response.status_code)
    elif isinstance(error, httpx.TransportError):
        return ErrorKind.NETWORK_ERROR

    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return ErrorKind.TIMEOUT
    elif isinstance(error, ConnectionError):
        return ErrorKind.NETWORK_ERROR
    elif isinstance(error, NotImplementedError):
        return ErrorKind.UNSUPPORTED

    return ErrorKind.UNKNOWN


def kind_for_status(status: int | None) -> ErrorKind:
    """
    Map an HTTP status code to an error kind.

    Args:
        status: HTTP status code, or None when unknown.

    Returns:
        The error kind for that status.
    """
    if status is None:
        return ErrorKind.UNKNOWN
    if status == 429:
        return ErrorKind.RATE_LIMIT
    if status in (401, 403):
        return ErrorKind.AUTH
    if status in (408, 504):
        return ErrorKind.TIMEOUT
    if status in (502, 503):
        return ErrorKind.UNAVAILABLE
    if 500 <= status < 600:
        return ErrorKind.SERVER_ERROR
    if 400 <= status < 500:
        return ErrorKind.INVALID_REQUEST
    return ErrorKind.UNKNOWN
