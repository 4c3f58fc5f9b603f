# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Optional, Sequence

from src.llms.completion import CompletionSource, FinishSignal
from src.server.session.base import HistoryStore
from src.server.session.models import MessageRecord

from .errors import ProviderError
from .events import error_event, message_event, session_event

logger = logging.getLogger(__name__)

CommitHook = Callable[[str], Awaitable[object]]


class RelayState(str, Enum):
    IDLE = "idle"
    OPENED = "opened"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class StreamSession:
    """State of one completion call. Discarded once the stream closes."""

    session_id: str
    is_new_session: bool = False
    is_retry: bool = False
    fragments: list[str] = field(default_factory=list)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    state: RelayState = RelayState.IDLE
    finish_reason: Optional[str] = None
    committed: bool = False

    @property
    def text(self) -> str:
        return "".join(self.fragments)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def log_prefix(self) -> str:
        return f"Session {self.session_id}{' (retry)' if self.is_retry else ''}"


class StreamRelay:
    """Forwards completion fragments as SSE events and commits the finished reply.

    ``run`` walks Idle -> Opened -> Streaming -> Completed | Failed. Exactly one
    assistant message is written on a completed, non-blank stream; failures and
    cancellation write nothing.
    """

    def __init__(
        self,
        store: HistoryStore,
        source: CompletionSource,
        *,
        on_commit: Optional[CommitHook] = None,
    ) -> None:
        self._store = store
        self._source = source
        self._on_commit = on_commit

    async def run(self, session: StreamSession, history: Sequence[MessageRecord]) -> AsyncIterator[str]:
        session.state = RelayState.OPENED
        if session.is_new_session and not session.is_retry:
            yield session_event(session.session_id)
            logger.info("%s: sent session id to client", session.log_prefix)

        session.state = RelayState.STREAMING
        logger.info("%s: requesting completion for %d messages", session.log_prefix, len(history))

        finish: Optional[FinishSignal] = None
        try:
            async with aclosing(self._source.stream(history)) as events:
                async for item in events:
                    if session.cancelled:
                        break
                    if isinstance(item, FinishSignal):
                        finish = item
                        break
                    if not item.content:
                        continue
                    session.fragments.append(item.content)
                    yield message_event(item.content)
        except ProviderError as exc:
            session.state = RelayState.FAILED
            logger.error("%s: completion stream failed: %s (%s)", session.log_prefix, exc.message, exc.details)
            yield error_event(exc.message, exc.details)
            return
        except asyncio.CancelledError:
            session.state = RelayState.FAILED
            logger.info("%s: relay cancelled, nothing committed", session.log_prefix)
            raise
        except Exception as exc:
            session.state = RelayState.FAILED
            logger.exception("%s: unexpected error while relaying completion", session.log_prefix)
            yield error_event("Error while streaming the completion.", str(exc) or type(exc).__name__)
            return

        if session.cancelled:
            session.state = RelayState.FAILED
            logger.info("%s: stream cancelled after %d fragments, nothing committed", session.log_prefix, len(session.fragments))
            return

        if finish is None:
            session.state = RelayState.FAILED
            logger.error("%s: completion stream ended without a finish signal", session.log_prefix)
            yield error_event("Error while streaming the completion.", "Completion stream ended before a finish signal.")
            return

        session.finish_reason = finish.reason
        logger.info("%s: completion finished, reason: %s", session.log_prefix, finish.reason)

        text = session.text
        if not text.strip():
            session.state = RelayState.COMPLETED
            logger.info("%s: assistant returned no content, nothing added to history", session.log_prefix)
            return

        try:
            await self._store.append(session.session_id, "assistant", text)
        except Exception as exc:
            session.state = RelayState.FAILED
            logger.exception("%s: failed to store assistant reply", session.log_prefix)
            yield error_event("Failed to save the assistant reply.", str(exc) or type(exc).__name__)
            return

        session.committed = True
        session.state = RelayState.COMPLETED
        logger.debug("%s: stored assistant reply (%d chars)", session.log_prefix, len(text))

        if self._on_commit is not None:
            try:
                await self._on_commit(session.session_id)
            except Exception as exc:  # noqa: BLE001 - the reply is already stored and delivered
                logger.warning("%s: post-commit hook failed: %s", session.log_prefix, exc)
