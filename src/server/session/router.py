# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status

from src.server.chat.errors import NotFoundError

from .base import HistoryStore
from .dependencies import get_session_store
from .models import MessageRecord, SessionRecord
from .schemas import (
    HistoryMessage,
    HistoryResponse,
    SessionCreateRequest,
    SessionCreateResponse,
    SessionListResponse,
    SessionSummary,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["sessions"])


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(store: HistoryStore = Depends(get_session_store)) -> SessionListResponse:
    records = await store.list_sessions()
    logger.info("Listing %d sessions", len(records))
    return SessionListResponse(sessions=[_to_summary(record) for record in records])


@router.post("/sessions", status_code=status.HTTP_201_CREATED, response_model=SessionCreateResponse)
async def create_session(
    payload: Optional[SessionCreateRequest] = None,
    store: HistoryStore = Depends(get_session_store),
) -> SessionCreateResponse:
    session = await store.create_session(title=payload.title if payload else None)
    logger.info("Created empty session %s", session.id)
    return SessionCreateResponse(session=_to_summary(session))


@router.get("/history/{session_id}", response_model=HistoryResponse)
async def get_history(
    session_id: str,
    store: HistoryStore = Depends(get_session_store),
) -> HistoryResponse:
    if not await store.exists(session_id):
        logger.info("History requested for unknown session %s", session_id)
        raise NotFoundError(f'Session "{session_id}" not found.')
    messages = await store.get(session_id)
    logger.info("History requested for session %s: %d messages", session_id, len(messages))
    return HistoryResponse(session_id=session_id, history=[_to_message(message) for message in messages])


def _to_summary(record: SessionRecord) -> SessionSummary:
    return SessionSummary(
        id=record.id,
        title=record.title,
        last_message_preview=record.last_message_preview,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _to_message(record: MessageRecord) -> HistoryMessage:
    return HistoryMessage(role=record.role, content=record.content)
