"""
airoute configuration.

Pydantic schema, layered option merging and the YAML/environment loader.
"""

from airoute.config.loader import (
    ConfigurationError,
    apply_env_overrides,
    clear_config_cache,
    get_config,
    get_config_path,
    load_config,
    load_yaml_file,
)
from airoute.config.merger import deep_merge, get_nested_value, merge_configs, set_nested_value
from airoute.config.schema import (
    CompositeConfig,
    Config,
    FallbackConfig,
    ProfileConfig,
    RetryConfig,
    TelemetryConfig,
)

__all__ = [
    # Schema
    "Config",
    "ProfileConfig",
    "RetryConfig",
    "CompositeConfig",
    "FallbackConfig",
    "TelemetryConfig",
    # Loader
    "ConfigurationError",
    "load_config",
    "load_yaml_file",
    "apply_env_overrides",
    "get_config",
    "get_config_path",
    "clear_config_cache",
    # Merger
    "deep_merge",
    "merge_configs",
    "get_nested_value",
    "set_nested_value",
]
