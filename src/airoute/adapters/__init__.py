"""
airoute provider adapters.

Concrete providers usable in a Composite:
- MockProvider: scripted responses and a per-instance call log
- HeuristicProvider: always-available template/keyword fallback
- LiteLLMProvider: any LiteLLM-supported model
"""

from airoute.adapters.heuristic import HeuristicProvider
from airoute.adapters.litellm_adapter import LiteLLMProvider, normalize_litellm_error
from airoute.adapters.mock import MockCall, MockProvider, error_for_kind

__all__ = [
    "HeuristicProvider",
    "LiteLLMProvider",
    "MockCall",
    "MockProvider",
    "error_for_kind",
    "normalize_litellm_error",
]
