"""
airoute provider dispatch layer.

Routes AI operations across prioritized providers with:
- Capability detection per provider
- Retry with exponential backoff
- Fallback, round-robin and random strategies
- Normalized errors across vendors
- Telemetry spans and usage tracking
"""

from airoute.providers.base import Provider
from airoute.providers.capabilities import (
    CapabilityRegistry,
    ProviderHandle,
    detect_capabilities,
)
from airoute.providers.composite import (
    Composite,
    FallbackAttempt,
    FallbackHandler,
    Strategy,
    default_composite,
)
from airoute.providers.exceptions import (
    RETRYABLE_KINDS,
    AllProvidersFailedError,
    AuthenticationError,
    ContextLengthExceededError,
    ErrorKind,
    InvalidRequestError,
    ModelNotFoundError,
    NetworkError,
    NormalizedError,
    ProviderCallError,
    ProviderError,
    ProviderNotRegisteredError,
    ProviderUnavailableError,
    RateLimitError,
    RequestTimeoutError,
    ServerError,
    UnsupportedOperationError,
    classify_error,
    should_retry,
)
from airoute.providers.manager import (
    ProviderManager,
    clear_provider_manager,
    get_provider_manager,
)
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
    StreamChunk,
    TokenUsage,
)
from airoute.providers.normalize import get_normalizer, normalize_error
from airoute.providers.retry import Deadline, RetryExecutor, RetryPolicy
from airoute.providers.telemetry import SpanEvent, SpanPhase, Telemetry, get_telemetry
from airoute.providers.usage import ProviderUsage, UsageTracker

__all__ = [
    # Dispatch
    "Composite",
    "Strategy",
    "default_composite",
    "FallbackHandler",
    "FallbackAttempt",
    "ProviderManager",
    "get_provider_manager",
    "clear_provider_manager",
    # Capabilities
    "Provider",
    "ProviderHandle",
    "CapabilityRegistry",
    "detect_capabilities",
    # Retry
    "RetryPolicy",
    "RetryExecutor",
    "Deadline",
    # Models
    "Operation",
    "DispatchResult",
    "GenerateResponse",
    "StreamChunk",
    "ResponseStream",
    "Embedding",
    "BatchEmbedding",
    "Classification",
    "CodeResult",
    "CodeExplanation",
    "TokenUsage",
    "HealthStatus",
    "ProviderHealth",
    # Errors
    "ErrorKind",
    "RETRYABLE_KINDS",
    "NormalizedError",
    "ProviderError",
    "AuthenticationError",
    "RateLimitError",
    "ModelNotFoundError",
    "ContextLengthExceededError",
    "NetworkError",
    "RequestTimeoutError",
    "ServerError",
    "ProviderUnavailableError",
    "InvalidRequestError",
    "UnsupportedOperationError",
    "ProviderCallError",
    "AllProvidersFailedError",
    "ProviderNotRegisteredError",
    "classify_error",
    "should_retry",
    "normalize_error",
    "get_normalizer",
    # Telemetry
    "Telemetry",
    "SpanEvent",
    "SpanPhase",
    "get_telemetry",
    "UsageTracker",
    "ProviderUsage",
]
