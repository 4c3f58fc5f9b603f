# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

import json
from typing import Any, Optional

SESSION_EVENT = "session"
MESSAGE_EVENT = "message"
ERROR_EVENT = "error"

EVENT_STREAM_MEDIA_TYPE = "text/event-stream"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def make_event(event_type: str, data: dict[str, Any]) -> str:
    json_data = json.dumps(data, ensure_ascii=False)
    return f"event: {event_type}\ndata: {json_data}\n\n"


def session_event(session_id: str) -> str:
    return make_event(SESSION_EVENT, {"sessionId": session_id})


def message_event(content: str) -> str:
    return make_event(MESSAGE_EVENT, {"content": content})


def error_event(error: str, details: Optional[str] = None) -> str:
    payload: dict[str, Any] = {"error": error}
    if details:
        payload["details"] = details
    return make_event(ERROR_EVENT, payload)
