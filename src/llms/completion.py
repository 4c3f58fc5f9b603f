# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Completion sources turn an ordered history into a stream of text fragments.

A stream yields zero or more ``TextFragment`` values followed by exactly one
``FinishSignal``. If the upstream call fails, or the stream stops before a
finish reason arrives, ``ProviderError`` is raised instead and no finish
signal is delivered. Streams are single pass.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Protocol, Sequence, Union

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from src.server.chat.errors import ProviderError
from src.server.session.models import MessageRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TextFragment:
    content: str


@dataclass(frozen=True, slots=True)
class FinishSignal:
    reason: str


CompletionEvent = Union[TextFragment, FinishSignal]


class CompletionSource(Protocol):
    def stream(self, messages: Sequence[MessageRecord]) -> AsyncIterator[CompletionEvent]: ...


def to_langchain_messages(messages: Sequence[MessageRecord]) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    for message in messages:
        if message.role == "system":
            converted.append(SystemMessage(content=message.content))
        elif message.role == "assistant":
            converted.append(AIMessage(content=message.content))
        else:
            converted.append(HumanMessage(content=message.content))
    return converted


def _chunk_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and item.get("type") == "text":
                parts.append(str(item.get("text", "")))
        return "".join(parts)
    return ""


class LangChainCompletionSource:
    """Streams completions from a LangChain chat model."""

    def __init__(self, llm: BaseChatModel) -> None:
        self._llm = llm

    async def stream(self, messages: Sequence[MessageRecord]) -> AsyncIterator[CompletionEvent]:
        lc_messages = to_langchain_messages(messages)
        try:
            async for chunk in self._llm.astream(lc_messages):
                yield TextFragment(_chunk_text(chunk.content))
                finish_reason = (getattr(chunk, "response_metadata", None) or {}).get("finish_reason")
                if finish_reason:
                    yield FinishSignal(str(finish_reason))
                    return
        except Exception as exc:  # noqa: BLE001 - any upstream failure becomes a ProviderError
            raise ProviderError("Completion request failed.", details=str(exc) or type(exc).__name__) from exc
        raise ProviderError("Completion stream ended before a finish signal.")
