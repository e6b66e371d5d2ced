"""
Configuration loader for airoute.

Loads and merges configuration from:
1. Default values
2. A YAML file (argument, AIROUTE_CONFIG, or ~/.airoute/config.yaml)
3. Environment variables (AIROUTE_*)
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from airoute.config.merger import deep_merge, get_nested_value, set_nested_value
from airoute.config.schema import Config

logger = logging.getLogger(__name__)

ENV_PREFIX = "AIROUTE_"
# Environment variables that locate config rather than override it
_LOCATION_VARS = {"AIROUTE_CONFIG", "AIROUTE_HOME"}


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


def get_airoute_home() -> Path:
    """
    Get the airoute home directory.

    Resolution order:
    1. AIROUTE_HOME environment variable
    2. Default: ~/.airoute

    Returns:
        Path to the airoute home directory.
    """
    env_home = os.environ.get("AIROUTE_HOME")
    if env_home:
        return Path(env_home).expanduser().resolve()
    return Path.home() / ".airoute"


def get_config_path(path: Path | str | None = None) -> Path:
    """Resolve the config file path: argument, AIROUTE_CONFIG, then home."""
    if path is not None:
        return Path(path).expanduser()
    env_path = os.environ.get("AIROUTE_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    return get_airoute_home() / "config.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML configuration file.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed configuration dictionary ({} if the file does not exist).

    Raises:
        ConfigurationError: If the file cannot be read or parsed.
    """
    try:
        with open(path, encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except FileNotFoundError:
        return {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e

    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigurationError(f"Expected a mapping at the top of {path}")
    return content


def apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    ``AIROUTE_<FIELD>`` sets a top-level field (``AIROUTE_DEFAULT_PROFILE``);
    ``AIROUTE_<SECTION>_<KEY>`` sets a key inside a section
    (``AIROUTE_RETRY_MAX_ATTEMPTS`` -> ``retry.max_attempts``).

    Args:
        config: Configuration dictionary to modify.

    Returns:
        Configuration with environment overrides applied.
    """
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX) or key in _LOCATION_VARS:
            continue

        name = key[len(ENV_PREFIX) :].lower()
        if name in Config.model_fields:
            config_key = name
        else:
            section, _, field = name.partition("_")
            if not field:
                continue
            config_key = f"{section}.{field}"

        logger.debug(f"Applying {key} to {config_key}")
        config = set_nested_value(config, config_key, _parse_env_value(value))

    return config


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to the appropriate type.

    Args:
        value: String value from environment.

    Returns:
        Parsed value (int, float, bool, list or string).
    """
    if re.match(r"^-?\d+$", value):
        return int(value)
    if re.match(r"^-?\d+\.\d+$", value):
        return float(value)

    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    # Comma-separated list
    if "," in value:
        return [item.strip() for item in value.split(",")]

    return value


def load_config(path: Path | str | None = None, skip_env: bool = False) -> Config:
    """
    Load and validate configuration.

    Args:
        path: Config file. Defaults to AIROUTE_CONFIG, then ~/.airoute/config.yaml.
        skip_env: Skip environment variable overrides.

    Returns:
        Validated Config object.

    Raises:
        ConfigurationError: If an explicit file is missing or the result is invalid.
    """
    config_path = get_config_path(path)
    if path is not None and not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    config_dict = Config().model_dump(mode="json")
    # the default profile only applies when no profiles are configured
    file_config = load_yaml_file(config_path)
    if get_nested_value(file_config, "profiles"):
        config_dict.pop("profiles")
    config_dict = deep_merge(config_dict, file_config)

    if not skip_env:
        config_dict = apply_env_overrides(config_dict)

    try:
        config = Config.model_validate(config_dict)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e

    logger.debug(f"Loaded configuration from {config_path}")
    return config


# Singleton for cached config
_cached_config: Config | None = None


def get_config(reload: bool = False) -> Config:
    """
    Get the global configuration instance.

    Args:
        reload: Force reload configuration from disk.

    Returns:
        Config instance.
    """
    global _cached_config

    if _cached_config is None or reload:
        _cached_config = load_config()

    return _cached_config


def clear_config_cache() -> None:
    """Clear the cached configuration."""
    global _cached_config
    _cached_config = None
