# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from .controller import ChatStream, SessionController
from .dependencies import get_session_controller
from .events import EVENT_STREAM_MEDIA_TYPE, SSE_HEADERS
from .schemas import ChatRequest, ErrorResponse, RetryRequest

router = APIRouter(prefix="/api/chat", tags=["chat"])

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


@router.post("", responses=_ERROR_RESPONSES)
async def chat(
    request: ChatRequest,
    controller: SessionController = Depends(get_session_controller),
) -> StreamingResponse:
    stream = await controller.new_message(request.session_id, request.new_message_content)
    return _event_stream_response(stream)


@router.post("/retry", responses=_ERROR_RESPONSES)
async def retry(
    request: RetryRequest,
    controller: SessionController = Depends(get_session_controller),
) -> StreamingResponse:
    stream = await controller.retry(request.session_id)
    return _event_stream_response(stream)


def _event_stream_response(stream: ChatStream) -> StreamingResponse:
    # Closing after the response also covers a client that left before the first event.
    return StreamingResponse(
        stream,
        media_type=EVENT_STREAM_MEDIA_TYPE,
        headers=SSE_HEADERS,
        background=BackgroundTask(stream.aclose),
    )
