"""
Capability detection and registry for providers.

Each operation has one narrow interface. A provider's capability set is the
set of interfaces it satisfies, computed once at registration and cached on
its ProviderHandle.
"""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from airoute.providers.exceptions import NormalizedError, ProviderNotRegisteredError
from airoute.providers.models import (
    BatchEmbedding,
    Classification,
    CodeExplanation,
    CodeResult,
    Embedding,
    GenerateResponse,
    Operation,
    ResponseStream,
)
from airoute.providers.normalize import normalize_error

logger = logging.getLogger(__name__)

Options = Mapping[str, Any]


@runtime_checkable
class TextGenerator(Protocol):
    async def generate(self, prompt: str, options: Options) -> GenerateResponse: ...


@runtime_checkable
class TextStreamer(Protocol):
    async def stream(self, prompt: str, options: Options) -> ResponseStream: ...


@runtime_checkable
class Embedder(Protocol):
    async def embed(self, text: str, options: Options) -> Embedding: ...


@runtime_checkable
class BatchEmbedder(Protocol):
    async def batch_embed(self, texts: Sequence[str], options: Options) -> BatchEmbedding: ...


@runtime_checkable
class Classifier(Protocol):
    async def classify(
        self, text: str, labels: Sequence[str], options: Options
    ) -> Classification: ...


@runtime_checkable
class CodeGenerator(Protocol):
    async def generate_code(self, prompt: str, options: Options) -> CodeResult: ...


@runtime_checkable
class CodeExplainer(Protocol):
    async def explain_code(self, code: str, options: Options) -> CodeExplanation: ...


OPERATION_INTERFACES: dict[Operation, type] = {
    Operation.GENERATE: TextGenerator,
    Operation.STREAM: TextStreamer,
    Operation.EMBED: Embedder,
    Operation.BATCH_EMBED: BatchEmbedder,
    Operation.CLASSIFY: Classifier,
    Operation.GENERATE_CODE: CodeGenerator,
    Operation.EXPLAIN_CODE: CodeExplainer,
}


def detect_capabilities(provider: Any) -> frozenset[Operation]:
    """
    Check which operation interfaces a provider implements.

    A provider that exposes a ``capabilities`` set narrows the result to
    it. Composites declare the union of their children's capabilities.

    Args:
        provider: Provider instance.

    Returns:
        The set of supported operations.
    """
    detected = frozenset(
        operation
        for operation, interface in OPERATION_INTERFACES.items()
        if isinstance(provider, interface)
    )
    declared = getattr(provider, "capabilities", None)
    if isinstance(declared, (set, frozenset)):
        return detected & frozenset(Operation(op) for op in declared)
    return detected


def provider_id_of(provider: Any) -> str:
    """Identity of a provider: its ``provider_id`` or its lowercased class name."""
    provider_id = getattr(provider, "provider_id", None)
    if isinstance(provider_id, str) and provider_id:
        return provider_id
    return type(provider).__name__.lower()


@dataclass(frozen=True)
class ProviderHandle:
    """Provider identity plus its cached, immutable capability set."""

    provider_id: str
    capabilities: frozenset[Operation]
    provider: Any = field(compare=False, repr=False)

    @classmethod
    def for_provider(cls, provider: Any) -> "ProviderHandle":
        """Build a handle, detecting capabilities now."""
        if isinstance(provider, ProviderHandle):
            return provider
        return cls(
            provider_id=provider_id_of(provider),
            capabilities=detect_capabilities(provider),
            provider=provider,
        )

    def supports(self, operation: Operation) -> bool:
        return operation in self.capabilities

    def is_available(self) -> bool:
        check = getattr(self.provider, "is_available", None)
        return bool(check()) if callable(check) else True

    def normalize(self, error: Any) -> NormalizedError:
        """Normalize a raw error with the provider's own mapping."""
        normalizer = getattr(self.provider, "normalize_error", None)
        if callable(normalizer):
            return normalizer(error)
        return normalize_error(error, self.provider_id)

    def describe(self) -> str:
        if not self.capabilities:
            return f"{self.provider_id}: no capabilities"
        names = ", ".join(op.description for op in Operation if op in self.capabilities)
        return f"{self.provider_id}: {names}"


class CapabilityRegistry:
    """Registry of providers and their detected capabilities.

    Querying a provider that was never registered is a wiring bug and
    raises ProviderNotRegisteredError.
    """

    def __init__(self):
        """Initialize the capability registry."""
        self._handles: dict[str, ProviderHandle] = {}

    def register(self, provider: Any) -> ProviderHandle:
        """Register a provider.

        Args:
            provider: Provider instance to register

        Returns:
            The handle with the detected capability set

        Raises:
            ValueError: If a provider with the same id is already registered
        """
        handle = ProviderHandle.for_provider(provider)
        if handle.provider_id in self._handles:
            raise ValueError(f"Provider '{handle.provider_id}' is already registered")

        self._handles[handle.provider_id] = handle
        logger.info(f"Registered provider: {handle.describe()}")
        return handle

    def redetect(self, provider: Any) -> ProviderHandle:
        """Re-run capability detection for a reconfigured provider.

        Args:
            provider: Provider instance (must already be registered)

        Returns:
            A new handle replacing the old one
        """
        provider_id = self._key(provider)
        if provider_id not in self._handles:
            raise ProviderNotRegisteredError(f"Provider '{provider_id}' is not registered")

        target = provider.provider if isinstance(provider, ProviderHandle) else provider
        if isinstance(target, str):
            target = self._handles[provider_id].provider
        handle = ProviderHandle.for_provider(target)
        self._handles[provider_id] = handle
        return handle

    def unregister(self, provider: Any) -> bool:
        """Unregister a provider.

        Args:
            provider: Provider, handle or provider id

        Returns:
            True if provider was unregistered, False if not found
        """
        return self._handles.pop(self._key(provider), None) is not None

    def get(self, provider: Any) -> ProviderHandle:
        """Get the handle for a registered provider.

        Args:
            provider: Provider, handle or provider id

        Raises:
            ProviderNotRegisteredError: If the provider was never registered
        """
        provider_id = self._key(provider)
        try:
            return self._handles[provider_id]
        except KeyError:
            raise ProviderNotRegisteredError(
                f"Provider '{provider_id}' is not registered"
            ) from None

    def supports(self, provider: Any, operation: Operation) -> bool:
        """Check whether a registered provider supports an operation."""
        return self.get(provider).supports(Operation(operation))

    def list_capabilities(self, provider: Any) -> frozenset[Operation]:
        """Get all operations a registered provider supports."""
        return self.get(provider).capabilities

    def describe(self, provider: Any) -> str:
        """Human-readable summary, e.g. ``"gemini: text generation, streaming"``."""
        return self.get(provider).describe()

    def handles(self) -> list[ProviderHandle]:
        """All handles in registration order."""
        return list(self._handles.values())

    def clear(self) -> None:
        """Clear all registered providers."""
        self._handles.clear()

    def _key(self, provider: Any) -> str:
        if isinstance(provider, str):
            return provider
        if isinstance(provider, ProviderHandle):
            return provider.provider_id
        return provider_id_of(provider)

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, provider: Any) -> bool:
        return self._key(provider) in self._handles

    def __repr__(self) -> str:
        providers = ", ".join(self._handles.keys())
        return f"<CapabilityRegistry providers=[{providers}]>"


