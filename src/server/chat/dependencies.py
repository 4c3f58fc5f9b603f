# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends

from src.config.loader import get_bool_env, get_str_env
from src.llms.completion import CompletionSource, LangChainCompletionSource
from src.llms.llm import get_llm_by_type
from src.server.session.base import HistoryStore
from src.server.session.dependencies import get_session_store
from src.server.session.title import ensure_session_title

from .controller import SessionController
from .errors import ConfigurationError
from .gate import SessionGate

logger = logging.getLogger(__name__)

_COMPLETION_SOURCE: Optional[CompletionSource] = None
_SESSION_GATE: Optional[SessionGate] = None


def set_completion_source(source: Optional[CompletionSource]) -> None:
    global _COMPLETION_SOURCE
    _COMPLETION_SOURCE = source


def get_completion_source() -> CompletionSource:
    global _COMPLETION_SOURCE
    if _COMPLETION_SOURCE is None:
        try:
            llm = get_llm_by_type("basic")
        except ValueError as exc:
            logger.error("Completion provider is not configured: %s", exc)
            raise ConfigurationError("Completion provider is not configured.", details=str(exc)) from exc
        _COMPLETION_SOURCE = LangChainCompletionSource(llm)
    return _COMPLETION_SOURCE


def set_session_gate(gate: Optional[SessionGate]) -> None:
    global _SESSION_GATE
    _SESSION_GATE = gate


def get_session_gate() -> SessionGate:
    global _SESSION_GATE
    if _SESSION_GATE is None:
        _SESSION_GATE = SessionGate(enabled=get_bool_env("CHAT_SINGLE_FLIGHT", True))
        logger.info("Single-flight session gate %s", "enabled" if _SESSION_GATE.enabled else "disabled")
    return _SESSION_GATE


def get_session_controller(
    store: HistoryStore = Depends(get_session_store),
    source: CompletionSource = Depends(get_completion_source),
    gate: SessionGate = Depends(get_session_gate),
) -> SessionController:
    async def _ensure_title(session_id: str) -> None:
        await ensure_session_title(store, session_id)

    return SessionController(
        store,
        source,
        gate,
        system_prompt=get_str_env("CHAT_SYSTEM_PROMPT", ""),
        on_commit=_ensure_title,
    )
