"""Base class for provider adapters."""

from abc import ABC
from typing import Any

from airoute.providers.exceptions import NormalizedError
from airoute.providers.normalize import normalize_error


class Provider(ABC):
    """Base class for provider adapters.

    A provider declares what it can do by implementing any subset of the
    operation methods (``generate``, ``stream``, ``embed``, ``batch_embed``,
    ``classify``, ``generate_code``, ``explain_code``). Capability detection
    happens once, when the provider is registered.

    Subclasses that wrap a vendor SDK should override ``normalize_error``
    with the vendor's raw error mapping.
    """

    default_id: str = "provider"

    def __init__(self, provider_id: str | None = None):
        """Initialize the provider.

        Args:
            provider_id: Identity used in results, errors and telemetry.
        """
        self.provider_id = provider_id or self.default_id

    def is_available(self) -> bool:
        """Whether the provider can be reached/configured right now."""
        return True

    def normalize_error(self, error: Any) -> NormalizedError:
        """Map a raw error from this provider to a NormalizedError."""
        return normalize_error(error, self.provider_id)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.provider_id}>"
