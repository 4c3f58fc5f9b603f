# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

from typing import Optional


class ChatClientError(Exception):
    """Base class for errors raised on the client side of the relay."""


class StreamConnectionError(ChatClientError):
    """The connection failed or dropped while the stream was open."""


class StreamOpenError(ChatClientError):
    """The server answered with something other than an event stream."""

    def __init__(self, message: str, status_code: int, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class ParseError(ChatClientError):
    """An event frame carried a payload that could not be decoded."""

    def __init__(self, message: str, event: str = "", raw: Optional[str] = None) -> None:
        self.event = event
        self.raw = raw
        super().__init__(message)
