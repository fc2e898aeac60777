from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import yaml

# Boolean true/false string values
_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def expand_env(value: Any) -> Any:
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, list):
        return [expand_env(item) for item in value]
    if isinstance(value, dict):
        return {key: expand_env(val) for key, val in value.items()}
    return value


def load_yaml_file(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a YAML mapping at the top level")
    return expand_env(data)


def parse_bool(value: Any, *, default: bool = False) -> bool:
    """Parse a YAML/env style boolean; unknown strings fall back to ``default``."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return default


def validate_url(url: Optional[str], schemes: tuple[str, ...] = ("http", "https")) -> bool:
    """Validate that URL has one of the allowed schemes and a host."""
    if not url:
        return False
    try:
        parsed = urlparse(url)
        return parsed.scheme in schemes and bool(parsed.netloc)
    except ValueError:
        return False
