# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Session controller: turns "new message" and "retry" requests into streams.

Both entry points do all validation and history mutation up front and only
then hand back the event stream. Anything raised from them is a pre-stream
rejection; anything that goes wrong later is reported inside the stream.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from functools import partial
from typing import Any, AsyncIterator, Callable, Optional, Sequence
from uuid import uuid4

from src.llms.completion import CompletionSource
from src.server.session.base import HistoryStore
from src.server.session.models import MessageRecord

from .errors import ConflictError, NotFoundError, ValidationError
from .gate import SessionGate
from .relay import CommitHook, StreamRelay, StreamSession

logger = logging.getLogger(__name__)


class ChatStream:
    """Event stream of one request, holding the session's gate slot.

    The slot is released exactly once: when the events run out or fail, on
    ``aclose()`` (also before iteration has started), or when the stream is
    garbage collected without being closed.
    """

    def __init__(self, events: AsyncIterator[str], release: Callable[[], None]) -> None:
        self._events = events
        self._release = release
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def __aiter__(self) -> "ChatStream":
        return self

    async def __anext__(self) -> str:
        try:
            return await self._events.__anext__()
        except BaseException:
            self._finish()
            raise

    async def aclose(self) -> None:
        try:
            await self._events.aclose()
        finally:
            self._finish()

    def _finish(self) -> None:
        if not self._released:
            self._released = True
            self._release()

    def __del__(self) -> None:
        self._finish()


class SessionController:
    def __init__(
        self,
        store: HistoryStore,
        source: CompletionSource,
        gate: Optional[SessionGate] = None,
        *,
        system_prompt: str = "",
        on_commit: Optional[CommitHook] = None,
    ) -> None:
        self._store = store
        self._gate = gate or SessionGate()
        self._system_prompt = system_prompt.strip()
        self._relay = StreamRelay(store, source, on_commit=on_commit)

    async def new_message(self, session_id: Any, content: Any) -> ChatStream:
        """Append a user message and return the event stream for the reply.

        A known ``session_id`` is continued. A missing or unknown one is
        replaced by a freshly minted id, announced by a ``session`` event.
        """
        if not isinstance(content, str) or not content.strip():
            raise ValidationError('Request body must contain a non-empty "newMessageContent".')
        if session_id is not None and not isinstance(session_id, str):
            raise ValidationError('"sessionId" must be a string when provided.')

        if session_id and await self._store.exists(session_id):
            is_new_session = False
            logger.info("Continuing session %s", session_id)
        else:
            if session_id:
                logger.info("Session %s is unknown, starting a new one", session_id)
            session_id = uuid4().hex
            is_new_session = True
            logger.info("Starting new session %s", session_id)

        self._gate.acquire(session_id)
        try:
            if is_new_session and self._system_prompt:
                await self._store.append(session_id, "system", self._system_prompt)
            await self._store.append(session_id, "user", content)
            logger.debug("Session %s: appended user message: %s", session_id, content)
            history = await self._store.get(session_id)
        except BaseException:
            self._gate.release(session_id)
            raise

        stream_session = StreamSession(session_id=session_id, is_new_session=is_new_session)
        return self._open(stream_session, history)

    async def retry(self, session_id: Any) -> ChatStream:
        """Drop the trailing assistant reply, if any, and stream a new one."""
        if not isinstance(session_id, str) or not session_id.strip():
            raise ValidationError('Request body must contain a valid "sessionId".')
        if not await self._store.exists(session_id):
            raise NotFoundError(f'Session "{session_id}" not found.')

        self._gate.acquire(session_id)
        try:
            history = await self._prepare_retry_history(session_id)
        except BaseException:
            self._gate.release(session_id)
            raise

        stream_session = StreamSession(session_id=session_id, is_retry=True)
        return self._open(stream_session, history)

    async def _prepare_retry_history(self, session_id: str) -> list[MessageRecord]:
        last = await self._store.last_message(session_id)
        if last is None:
            raise ValidationError("Cannot retry an empty session.")

        if last.role == "assistant":
            if await self._store.remove_last_if_assistant(session_id):
                logger.info("Session %s retry: removed previous assistant message", session_id)
            new_last = await self._store.last_message(session_id)
            if new_last is None or new_last.role != "user":
                logger.error(
                    "Session %s history is inconsistent: after removing the assistant reply the tail is %s",
                    session_id,
                    new_last.role if new_last else "empty",
                )
                raise ConflictError("History is in an inconsistent state and cannot be retried.")
        elif last.role == "user":
            logger.info("Session %s retry: last message is from the user, retrying on current history", session_id)
        else:
            raise ValidationError("Cannot retry: the last message is neither a user nor an assistant message.")

        return await self._store.get(session_id)

    def _open(self, session: StreamSession, history: Sequence[MessageRecord]) -> ChatStream:
        return ChatStream(self._stream(session, history), partial(self._gate.release, session.session_id))

    async def _stream(self, session: StreamSession, history: Sequence[MessageRecord]) -> AsyncIterator[str]:
        try:
            async with aclosing(self._relay.run(session, history)) as events:
                async for event in events:
                    yield event
        except (asyncio.CancelledError, GeneratorExit):
            session.cancel()
            logger.info("%s: client disconnected, stream abandoned", session.log_prefix)
            raise
        finally:
            logger.info("%s: stream closed in state %s", session.log_prefix, session.state.value)
