# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

import logging
import os
from typing import Any, Dict, Literal

from langchain_core.language_models import BaseChatModel
from langchain_openai import ChatOpenAI

from src.config.loader import get_str_env, load_yaml_config

logger = logging.getLogger(__name__)

LLMType = Literal["basic"]

# Map LLM types to their section in conf.yaml
_LLM_TYPE_CONFIG_KEYS: Dict[LLMType, str] = {
    "basic": "BASIC_MODEL",
}

_DEFAULT_MODEL_CONF: Dict[str, Any] = {
    "base_url": "https://api.deepseek.com/v1",
    "model": "deepseek-chat",
}

_llm_cache: dict[LLMType, BaseChatModel] = {}


def _get_config_file_path() -> str:
    return get_str_env("CONF_PATH", "conf.yaml")


def _get_env_llm_conf(llm_type: str) -> Dict[str, Any]:
    """Read ``BASIC_MODEL__<key>`` style overrides from the environment."""
    prefix = f"{llm_type.upper()}_MODEL__"
    conf: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if key.startswith(prefix):
            conf[key[len(prefix):].lower()] = value
    return conf


def _create_llm_use_conf(llm_type: LLMType, conf: Dict[str, Any]) -> BaseChatModel:
    config_key = _LLM_TYPE_CONFIG_KEYS.get(llm_type)
    if not config_key:
        raise ValueError(f"Unknown LLM type: {llm_type}")

    llm_conf = conf.get(config_key, {})
    if not isinstance(llm_conf, dict):
        raise ValueError(f"Invalid LLM configuration for {llm_type}: {llm_conf}")

    merged_conf = {**_DEFAULT_MODEL_CONF, **llm_conf, **_get_env_llm_conf(llm_type)}
    if not merged_conf.get("api_key"):
        merged_conf["api_key"] = get_str_env("DEEPSEEK_API_KEY")
    if not merged_conf.get("api_key"):
        raise ValueError(
            f"No API key configured for {llm_type} model; set DEEPSEEK_API_KEY or {config_key}__api_key"
        )

    logger.info("Creating %s model %s at %s", llm_type, merged_conf.get("model"), merged_conf.get("base_url"))
    return ChatOpenAI(**merged_conf)


def get_llm_by_type(llm_type: LLMType) -> BaseChatModel:
    """Get an LLM instance by type. Returns the cached instance if available."""
    if llm_type in _llm_cache:
        return _llm_cache[llm_type]

    conf = load_yaml_config(_get_config_file_path())
    llm = _create_llm_use_conf(llm_type, conf)
    _llm_cache[llm_type] = llm
    return llm


def get_configured_llm_models() -> dict[str, list[str]]:
    """Return the model names configured per LLM type."""
    try:
        conf = load_yaml_config(_get_config_file_path())
        configured: dict[str, list[str]] = {}
        for llm_type, config_key in _LLM_TYPE_CONFIG_KEYS.items():
            llm_conf = conf.get(config_key, {})
            if not isinstance(llm_conf, dict):
                llm_conf = {}
            env_conf = _get_env_llm_conf(llm_type)
            model_name = env_conf.get("model") or llm_conf.get("model") or _DEFAULT_MODEL_CONF["model"]
            configured.setdefault(llm_type, []).append(model_name)
        return configured
    except Exception as e:
        logger.warning("Failed to load LLM configuration: %s", e)
        return {}


def reset_llm_cache() -> None:
    _llm_cache.clear()
