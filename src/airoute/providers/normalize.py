"""
Error normalization for airoute.

Turns raw provider errors (exceptions from SDKs, HTTP clients or our own
hierarchy, and vendor error payloads) into NormalizedError values. Each
normalizer is a pure function of the raw error and the provider id.
"""

from collections.abc import Callable, Mapping
from typing import Any

import httpx

from airoute.providers.exceptions import (
    ErrorKind,
    NormalizedError,
    ProviderError,
    RateLimitError,
    classify_error,
    kind_for_status,
)

Normalizer = Callable[[Any, str], NormalizedError]


def _field(raw: Any, name: str) -> Any:
    """Read ``name`` from a mapping or an object attribute."""
    if isinstance(raw, Mapping):
        return raw.get(name)
    return getattr(raw, name, None)


def _is_timeout(raw: Any) -> bool:
    if isinstance(raw, (TimeoutError, httpx.TimeoutException)):
        return True
    return raw == "timeout" or raw == ("error", "timeout")


def normalize_error(raw: Any, provider_id: str) -> NormalizedError:
    """
    Default normalizer used when a provider supplies no mapping of its own.

    Args:
        raw: The raw error (usually an exception).
        provider_id: Id of the provider that produced it.

    Returns:
        The normalized error.
    """
    if isinstance(raw, NormalizedError):
        return raw

    existing = getattr(raw, "error", None)
    if isinstance(existing, NormalizedError):
        return existing

    if isinstance(raw, BaseException):
        kind = classify_error(raw)
        details: dict[str, Any] = {"exception": type(raw).__name__}

        if isinstance(raw, RateLimitError) and raw.retry_after is not None:
            details["retry_after"] = raw.retry_after
        if isinstance(raw, httpx.HTTPStatusError):
            details["status"] = raw.response.status_code

        retryable = getattr(raw, "retryable", None)
        if not isinstance(retryable, bool):
            retryable = None

        if isinstance(raw, ProviderError) and raw.provider and raw.provider != provider_id:
            details["reported_by"] = raw.provider

        message = str(raw) or type(raw).__name__
        return NormalizedError(kind, message, provider_id, details=details, retryable=retryable)

    status = _field(raw, "status") or _field(raw, "status_code")
    if isinstance(status, int):
        return NormalizedError(
            kind_for_status(status),
            f"Request failed with status {status}",
            provider_id,
            details={"status": status},
        )

    return NormalizedError(
        ErrorKind.UNKNOWN,
        f"Unknown error: {raw!r}",
        provider_id,
        details={"original": repr(raw)},
    )


def normalize_gemini_error(raw: Any, provider_id: str = "gemini") -> NormalizedError:
    """Map Gemini errors, which are keyed on HTTP status."""
    status = _field(raw, "status") or _field(raw, "code")

    if status == 429:
        return NormalizedError(ErrorKind.RATE_LIMIT, "Gemini rate limit exceeded", provider_id)
    if status in (401, 403):
        return NormalizedError(ErrorKind.AUTH, "Gemini authentication failed", provider_id)
    if status == 400:
        return NormalizedError(ErrorKind.INVALID_REQUEST, "Invalid request to Gemini", provider_id)
    if status == 503:
        return NormalizedError(ErrorKind.UNAVAILABLE, "Gemini is unavailable", provider_id)
    if isinstance(status, int) and status >= 500:
        return NormalizedError(ErrorKind.SERVER_ERROR, "Gemini server error", provider_id)
    if _is_timeout(raw):
        return NormalizedError(ErrorKind.TIMEOUT, "Gemini request timeout", provider_id)

    return _unknown("Gemini", raw, provider_id)


_CLAUDE_TYPES = {
    "rate_limit_error": (ErrorKind.RATE_LIMIT, "Claude rate limit exceeded"),
    "authentication_error": (ErrorKind.AUTH, "Claude authentication failed"),
    "permission_error": (ErrorKind.AUTH, "Claude permission denied"),
    "invalid_request_error": (ErrorKind.INVALID_REQUEST, "Invalid request to Claude"),
    "not_found_error": (ErrorKind.INVALID_REQUEST, "Claude resource not found"),
    "overloaded_error": (ErrorKind.UNAVAILABLE, "Claude is overloaded"),
    "api_error": (ErrorKind.SERVER_ERROR, "Claude server error"),
}


def normalize_claude_error(raw: Any, provider_id: str = "claude") -> NormalizedError:
    """Map Claude errors, which carry an error ``type`` string."""
    error_type = _field(raw, "type")
    nested = _field(raw, "error")
    if error_type in (None, "error") and nested is not None:
        error_type = _field(nested, "type")

    if error_type in _CLAUDE_TYPES:
        kind, message = _CLAUDE_TYPES[error_type]
        return NormalizedError(kind, message, provider_id)
    if _is_timeout(raw):
        return NormalizedError(ErrorKind.TIMEOUT, "Claude request timeout", provider_id)

    return _unknown("Claude", raw, provider_id)


_OPENAI_CODES = {
    "rate_limit_exceeded": (ErrorKind.RATE_LIMIT, "OpenAI rate limit exceeded"),
    "invalid_api_key": (ErrorKind.AUTH, "OpenAI authentication failed"),
    "invalid_request_error": (ErrorKind.INVALID_REQUEST, "Invalid request to OpenAI"),
    "context_length_exceeded": (ErrorKind.INVALID_REQUEST, "OpenAI context length exceeded"),
    "server_error": (ErrorKind.SERVER_ERROR, "OpenAI server error"),
}


def normalize_openai_error(raw: Any, provider_id: str = "openai") -> NormalizedError:
    """Map OpenAI/Codex errors, which nest a ``code`` under ``error``."""
    nested = _field(raw, "error")
    code = _field(nested, "code") if nested is not None else _field(raw, "code")

    if code in _OPENAI_CODES:
        kind, message = _OPENAI_CODES[code]
        return NormalizedError(kind, message, provider_id)
    if code == "insufficient_quota":
        # quota exhaustion looks like a rate limit but waiting will not help
        return NormalizedError(
            ErrorKind.RATE_LIMIT, "OpenAI quota exhausted", provider_id, retryable=False
        )
    if _is_timeout(raw):
        return NormalizedError(ErrorKind.TIMEOUT, "OpenAI request timeout", provider_id)

    return _unknown("OpenAI", raw, provider_id)


def _unknown(vendor: str, raw: Any, provider_id: str) -> NormalizedError:
    if isinstance(raw, BaseException):
        return normalize_error(raw, provider_id)
    return NormalizedError(
        ErrorKind.UNKNOWN,
        f"Unknown {vendor} error: {raw!r}",
        provider_id,
        details={"original": repr(raw)},
    )


_NORMALIZERS: dict[str, Normalizer] = {
    "gemini": normalize_gemini_error,
    "claude": normalize_claude_error,
    "anthropic": normalize_claude_error,
    "openai": normalize_openai_error,
    "codex": normalize_openai_error,
}


def get_normalizer(name: str) -> Normalizer:
    """
    Look up the normalizer for a vendor.

    Args:
        name: Vendor name (gemini, claude, anthropic, openai, codex).

    Returns:
        The vendor normalizer, or the default one for unknown vendors.
    """
    return _NORMALIZERS.get(name.lower(), normalize_error)
