"""
airoute - provider dispatch and resilience for AI operations

Routes generate/stream/embed/classify/code operations across prioritized
providers with capability detection, retries, fallback and telemetry.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("airoute")
except PackageNotFoundError:
    __version__ = "0.1.0"

__all__ = [
    "__version__",
]
