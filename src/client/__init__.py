# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Client side of the chat relay: SSE parsing and a live transcript."""

from .consumer import ChatStreamConsumer, DisplayMessage
from .errors import ChatClientError, ParseError, StreamConnectionError, StreamOpenError
from .sse import ErrorEvent, MessageEvent, ParseFailure, SessionEvent, stream_chat

__all__ = [
    "ChatClientError",
    "ChatStreamConsumer",
    "DisplayMessage",
    "ErrorEvent",
    "MessageEvent",
    "ParseError",
    "ParseFailure",
    "SessionEvent",
    "StreamConnectionError",
    "StreamOpenError",
    "stream_chat",
]
