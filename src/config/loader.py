# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

import os
from typing import Any, Dict

import yaml

_TRUTHY = ("1", "true", "yes", "y", "on")
_FALSY = ("0", "false", "no", "n", "off")

_config_cache: Dict[str, Dict[str, Any]] = {}


def get_bool_env(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    val = val.strip().lower()
    if val in _TRUTHY:
        return True
    if val in _FALSY:
        return False
    return default


def get_str_env(name: str, default: str = "") -> str:
    val = os.getenv(name)
    return default if val is None else str(val).strip()


def get_int_env(name: str, default: int = 0) -> int:
    val = os.getenv(name)
    if val is None:
        return default
    try:
        return int(val.strip())
    except ValueError:
        return default


def replace_env_vars(value: Any) -> Any:
    """Replace a ``$NAME`` string with the value of the environment variable."""
    if not isinstance(value, str):
        return value
    if value.startswith("$"):
        env_var = value[1:]
        return os.getenv(env_var, env_var)
    return value


def process_dict(config: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively resolve environment variables in a config mapping."""
    if not config:
        return {}
    result: Dict[str, Any] = {}
    for key, value in config.items():
        if isinstance(value, dict):
            result[key] = process_dict(value)
        else:
            result[key] = replace_env_vars(value)
    return result


def load_yaml_config(file_path: str) -> Dict[str, Any]:
    """Load and process a YAML configuration file, caching the result."""
    if not os.path.exists(file_path):
        return {}

    if file_path in _config_cache:
        return _config_cache[file_path]

    with open(file_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}
    processed_config = process_dict(config)

    _config_cache[file_path] = processed_config
    return processed_config


def clear_config_cache() -> None:
    _config_cache.clear()
