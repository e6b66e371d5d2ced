"""
Option and configuration merging for airoute.

Layers are merged left to right: later layers win. Nested dicts merge
recursively, lists are replaced unless the key carries a ``+``/``-`` prefix,
and a None value deletes the key.
"""

from typing import Any


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge ``override`` into a copy of ``base``.

    Args:
        base: Lower-precedence layer.
        override: Higher-precedence layer.

    Returns:
        The merged dictionary. Neither input is modified.

    Examples:
        >>> deep_merge({"retry_on_types": ["timeout"]}, {"+retry_on_types": ["rate_limit"]})
        {"retry_on_types": ["timeout", "rate_limit"]}

        >>> deep_merge({"model": "a", "temperature": 0.2}, {"temperature": None})
        {"model": "a"}
    """
    result = dict(base)

    for key, value in override.items():
        prefix, name = key[:1], key[1:]

        if prefix == "+" and isinstance(value, list):
            current = result.get(name)
            if isinstance(current, list):
                result[name] = current + [item for item in value if item not in current]
            else:
                result[name] = list(value)
        elif prefix == "-" and isinstance(value, list):
            current = result.get(name)
            if isinstance(current, list):
                result[name] = [item for item in current if item not in value]
        elif value is None:
            result.pop(key, None)
        elif isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def merge_configs(*layers: dict[str, Any] | None) -> dict[str, Any]:
    """
    Merge several layers in precedence order (lowest first).

    Args:
        *layers: Dictionaries to merge; None or empty layers are skipped.

    Returns:
        Merged dictionary.
    """
    result: dict[str, Any] = {}
    for layer in layers:
        if layer:
            result = deep_merge(result, layer)
    return result


def get_nested_value(config: dict[str, Any], key_path: str) -> Any:
    """Read a dot-separated path such as ``"retry.max_attempts"`` (None if missing)."""
    current: Any = config
    for key in key_path.split("."):
        if not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def set_nested_value(config: dict[str, Any], key_path: str, value: Any) -> dict[str, Any]:
    """
    Set a dot-separated path, creating intermediate dicts as needed.

    Args:
        config: Dictionary to modify in place.
        key_path: Path such as ``"retry.max_attempts"``.
        value: Value to store.

    Returns:
        The same dictionary, for chaining.
    """
    *parents, leaf = key_path.split(".")
    current = config
    for key in parents:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]
    current[leaf] = value
    return config
