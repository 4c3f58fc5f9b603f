# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

import logging
from typing import Iterable, Optional

from langchain_core.messages import HumanMessage

from src.config.loader import get_bool_env
from src.llms.llm import get_llm_by_type

from .base import HistoryStore
from .models import MessageRecord

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Chat"

_MAX_TITLE_LENGTH = 40


async def ensure_session_title(store: HistoryStore, session_id: str) -> Optional[str]:
    """Give the session a title if it does not have one yet.

    The title is derived from the first user message. When
    ``ENABLE_LLM_SESSION_TITLE`` is set the basic model is asked for a short
    summary instead, falling back to the derived title on any failure.
    """
    if await store.session_has_title(session_id):
        return None

    messages = await store.get_first_exchange(session_id)
    if not messages:
        logger.debug("Session %s has no messages yet; skipping title generation", session_id)
        return None

    fallback = _derive_fallback_title(messages)
    if not get_bool_env("ENABLE_LLM_SESSION_TITLE", False):
        await store.update_session_title(session_id, fallback)
        return fallback

    try:
        llm = get_llm_by_type("basic")
    except Exception as exc:  # noqa: BLE001 - LLM misconfiguration should not fail request
        logger.warning("LLM unavailable for session title generation: %s", exc)
        await store.update_session_title(session_id, fallback)
        return fallback

    try:
        ai_message = await llm.ainvoke([HumanMessage(content=_build_prompt(messages))])
    except Exception as exc:  # noqa: BLE001
        logger.warning("Failed to generate session title via LLM: %s", exc)
        await store.update_session_title(session_id, fallback)
        return fallback

    content = getattr(ai_message, "content", ai_message)
    title = str(content).strip().strip("\"'")
    title = _truncate_to_limit(title) if title else fallback
    await store.update_session_title(session_id, title)
    return title


def _build_prompt(messages: Iterable[MessageRecord]) -> str:
    lines: list[str] = []
    for message in messages:
        if message.role == "user":
            lines.append(f"User: {message.content}")
        elif message.role == "assistant":
            lines.append(f"Assistant: {message.content}")
    joined = "\n".join(lines)
    return (
        "Read the conversation below and write a short title that captures its topic.\n"
        "Rules:\n"
        f"1. At most {_MAX_TITLE_LENGTH} characters;\n"
        "2. No quotes and no trailing period;\n"
        f"3. If no topic is clear, answer \"{DEFAULT_TITLE}\".\n\n"
        f"Conversation:\n{joined}\n\n"
        "Title:"
    )


def _derive_fallback_title(messages: Iterable[MessageRecord]) -> str:
    for message in messages:
        if message.role == "user" and message.content.strip():
            return _truncate_to_limit(message.content)
    return DEFAULT_TITLE


def _truncate_to_limit(text: str) -> str:
    cleaned = " ".join(text.split())
    if len(cleaned) <= _MAX_TITLE_LENGTH:
        return cleaned or DEFAULT_TITLE
    trimmed = cleaned[: _MAX_TITLE_LENGTH - 1].rstrip()
    return f"{trimmed}…"
