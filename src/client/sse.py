# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Server-Sent Events parsing for the chat relay.

``iter_sse`` turns response lines into raw frames. ``stream_chat`` opens the
request and decodes the frames into ``SessionEvent``, ``MessageEvent`` and
``ErrorEvent`` values. A frame whose payload cannot be decoded is yielded as
``ParseFailure`` so the caller can report it while the stream keeps going.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Optional, Union

import httpx

from .errors import ParseError, StreamConnectionError, StreamOpenError

logger = logging.getLogger(__name__)

EVENT_STREAM_MEDIA_TYPE = "text/event-stream"


@dataclass(frozen=True, slots=True)
class ServerSentEvent:
    event: str
    data: str


@dataclass(frozen=True, slots=True)
class SessionEvent:
    session_id: str


@dataclass(frozen=True, slots=True)
class MessageEvent:
    content: str


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    error: str
    details: Optional[str] = None

    @property
    def message(self) -> str:
        return f"{self.error}: {self.details}" if self.details else self.error


@dataclass(frozen=True, slots=True)
class ParseFailure:
    error: ParseError


ChatEvent = Union[SessionEvent, MessageEvent, ErrorEvent, ParseFailure]


async def iter_sse(lines: AsyncIterable[str]) -> AsyncIterator[ServerSentEvent]:
    event_type = ""
    data_lines: list[str] = []
    async for line in lines:
        line = line.rstrip("\r\n")
        if not line:
            if data_lines:
                yield ServerSentEvent(event=event_type or "message", data="\n".join(data_lines))
            event_type = ""
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event_type = value
        elif field == "data":
            data_lines.append(value)
    if data_lines:
        logger.debug("Discarding unterminated SSE frame: %s", data_lines)


def decode_event(frame: ServerSentEvent) -> Optional[ChatEvent]:
    if frame.event not in ("session", "message", "error"):
        logger.warning("Ignoring unknown SSE event %r: %s", frame.event, frame.data)
        return None

    try:
        payload: Any = json.loads(frame.data)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Failed to parse SSE message: {exc}", event=frame.event, raw=frame.data) from exc
    if not isinstance(payload, dict):
        raise ParseError("SSE payload is not a JSON object", event=frame.event, raw=frame.data)

    if frame.event == "session":
        session_id = payload.get("sessionId")
        if not isinstance(session_id, str) or not session_id:
            raise ParseError("Session event without sessionId", event=frame.event, raw=frame.data)
        return SessionEvent(session_id=session_id)

    if frame.event == "message":
        content = payload.get("content")
        if not isinstance(content, str):
            raise ParseError("Message event with invalid content", event=frame.event, raw=frame.data)
        return MessageEvent(content=content)

    details = payload.get("details")
    return ErrorEvent(
        error=str(payload.get("error") or "Unknown server error"),
        details=str(details) if details else None,
    )


def _error_message(response: httpx.Response, body: str) -> str:
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        data = None
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return body or response.reason_phrase


async def stream_chat(
    client: httpx.AsyncClient,
    path: str,
    body: dict[str, Any],
) -> AsyncIterator[ChatEvent]:
    """POST ``body`` to ``path`` and yield decoded chat events until the stream closes."""
    logger.info("Streaming from %s", path)
    try:
        async with client.stream(
            "POST",
            path,
            json=body,
            headers={"Accept": EVENT_STREAM_MEDIA_TYPE},
        ) as response:
            content_type = response.headers.get("content-type", "")
            if response.is_error or EVENT_STREAM_MEDIA_TYPE not in content_type:
                text = (await response.aread()).decode("utf-8", errors="replace")
                message = _error_message(response, text)
                logger.error("Failed to open event stream on %s: %d %s", path, response.status_code, message)
                raise StreamOpenError(
                    f"Failed to open event stream on {path}: {response.status_code} {message}",
                    status_code=response.status_code,
                    body=text,
                )

            async for frame in iter_sse(response.aiter_lines()):
                try:
                    event = decode_event(frame)
                except ParseError as exc:
                    logger.error("Error parsing SSE message data: %s (%r)", exc, exc.raw)
                    yield ParseFailure(error=exc)
                    continue
                if event is not None:
                    yield event
    except httpx.HTTPError as exc:
        logger.error("SSE connection error on %s: %s", path, exc)
        raise StreamConnectionError(f"Stream connection failed: {exc}") from exc
    logger.info("SSE connection to %s closed", path)
