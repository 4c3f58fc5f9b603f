# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Literal, Optional
from uuid import uuid4

import httpx

from .errors import ChatClientError
from .sse import ErrorEvent, MessageEvent, ParseFailure, SessionEvent, stream_chat

logger = logging.getLogger(__name__)

DisplayRole = Literal["user", "assistant", "error"]


@dataclass
class DisplayMessage:
    """One transcript entry. ``error`` entries exist only on the client."""

    id: str
    role: DisplayRole
    content: str
    streaming: bool = False


def _new_id(kind: str) -> str:
    return f"{uuid4().hex}-{kind}"


class ChatStreamConsumer:
    """Keeps a live transcript in step with the relay's event stream.

    While a request is in flight the transcript ends with a streaming
    assistant placeholder. Every exit path clears ``is_loading`` and the
    placeholder's ``streaming`` flag: a clean close keeps the reply, an error
    adds an error entry (dropping the placeholder if it is still empty), and
    ``cancel`` discards the placeholder.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        chat_path: str = "/api/chat",
        retry_path: str = "/api/chat/retry",
    ) -> None:
        self._client = client
        self._chat_path = chat_path
        self._retry_path = retry_path
        self.messages: list[DisplayMessage] = []
        self.session_id: Optional[str] = None
        self.error: Optional[str] = None
        self.is_loading = False
        self._current: Optional[asyncio.Task] = None
        self._cancel_requested = False

    async def send_message(self, content: str) -> None:
        if self.is_loading:
            logger.warning("Already processing a message")
            return

        self.messages.append(DisplayMessage(id=_new_id("user"), role="user", content=content))
        body: dict[str, Any] = {"newMessageContent": content}
        if self.session_id:
            body["sessionId"] = self.session_id
        await self._run_stream(self._chat_path, body, retry=False)

    async def retry_message(self, message_id: str) -> None:
        """Drop ``message_id`` and what follows it up to the next user entry, then retry."""
        if self.is_loading:
            logger.warning("Already processing a message")
            return
        if not self.session_id:
            logger.error("Cannot retry without a session id")
            self.error = "Cannot retry: missing session id."
            return

        index = self._index_of(message_id)
        if index is None:
            logger.error("Cannot retry: message %s not found", message_id)
            self.error = "Cannot retry: message not found."
            return

        end = index + 1
        while end < len(self.messages) and self.messages[end].role != "user":
            end += 1
        del self.messages[index:end]
        logger.info("Removed %d messages starting at index %d for retry", end - index, index)

        await self._run_stream(self._retry_path, {"sessionId": self.session_id}, retry=True)

    def cancel(self) -> None:
        if not self.is_loading or self._current is None:
            return
        logger.info("Cancelling stream")
        self._cancel_requested = True
        self._current.cancel()
        self.is_loading = False

    def reset(self) -> None:
        """Forget the transcript and session so the next message starts a new session."""
        self.cancel()
        self.messages = []
        self.session_id = None
        self.error = None

    async def load_history(self, session_id: str) -> None:
        response = await self._client.get(f"/api/chat/history/{session_id}")
        if response.is_error:
            raise ChatClientError(f"Failed to fetch history: {_response_error(response)}")
        data = response.json()
        self.messages = [
            DisplayMessage(id=_new_id(item["role"]), role=item["role"], content=item["content"])
            for item in data.get("history", [])
            if item.get("role") in ("user", "assistant")
        ]
        self.session_id = data.get("sessionId", session_id)
        self.error = None

    async def list_sessions(self) -> list[dict[str, Any]]:
        response = await self._client.get("/api/chat/sessions")
        if response.is_error:
            raise ChatClientError(f"Failed to fetch sessions: {_response_error(response)}")
        return response.json().get("sessions", [])

    async def _run_stream(self, path: str, body: dict[str, Any], *, retry: bool) -> None:
        placeholder = DisplayMessage(
            id=_new_id("assistant-retry" if retry else "assistant"),
            role="assistant",
            content="",
            streaming=True,
        )
        self.messages.append(placeholder)
        self.error = None
        self.is_loading = True
        self._cancel_requested = False

        self._current = asyncio.create_task(self._consume(path, body, placeholder, retry=retry))
        try:
            await self._current
        except asyncio.CancelledError:
            if not self._cancel_requested:
                raise
            logger.info("User aborted the stream")
            self._discard(placeholder)
        except ChatClientError as exc:
            logger.error("Error while starting or reading the stream: %s", exc)
            self._fail(placeholder, str(exc), prefix="Stream error")
        finally:
            self._current = None
            self._cancel_requested = False
            self.is_loading = False
            if placeholder.streaming:
                placeholder.streaming = False
                logger.warning("Stream ended without a clean close, marking reply as finished")

    async def _consume(
        self,
        path: str,
        body: dict[str, Any],
        placeholder: DisplayMessage,
        *,
        retry: bool,
    ) -> None:
        async for event in stream_chat(self._client, path, body):
            if isinstance(event, SessionEvent):
                if retry:
                    logger.warning("Received session id during retry: %s", event.session_id)
                else:
                    self.session_id = event.session_id
            elif isinstance(event, MessageEvent):
                placeholder.content += event.content
            elif isinstance(event, ErrorEvent):
                logger.error("Received error event from server: %s", event.message)
                self._fail(placeholder, event.message)
            elif isinstance(event, ParseFailure):
                # Reported, but the underlying stream stays healthy.
                self._record_error(str(event.error))
        placeholder.streaming = False

    def _fail(self, placeholder: DisplayMessage, message: str, prefix: str = "Error") -> None:
        self._record_error(message, prefix=prefix)
        self.is_loading = False
        placeholder.streaming = False
        if not placeholder.content:
            self._discard(placeholder)

    def _record_error(self, message: str, prefix: str = "Error") -> None:
        self.error = message
        self.messages.append(DisplayMessage(id=_new_id("error"), role="error", content=f"{prefix}: {message}"))

    def _discard(self, placeholder: DisplayMessage) -> None:
        self.messages = [message for message in self.messages if message.id != placeholder.id]

    def _index_of(self, message_id: str) -> Optional[int]:
        for index, message in enumerate(self.messages):
            if message.id == message_id:
                return index
        return None


def _response_error(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return f"{response.status_code} {response.reason_phrase}"
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return f"{response.status_code} {response.reason_phrase}"
