# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from itertools import count
from threading import Lock
from typing import Dict, List, Optional
from uuid import uuid4

from .models import MessageRecord, Role, SessionRecord

logger = logging.getLogger(__name__)

_PREVIEW_LENGTH = 200
_FIRST_EXCHANGE_LIMIT = 4


@dataclass
class _SessionData:
    record: SessionRecord
    messages: List[MessageRecord] = field(default_factory=list)
    next_seq: int = 1
    touched: int = 0


class InMemoryHistoryStore:
    """Process-local history store. Everything is lost on restart."""

    backend = "memory"

    def __init__(self) -> None:
        self._lock = Lock()
        self._sessions: Dict[str, _SessionData] = {}
        self._clock = count(1)

    async def init(self) -> None:
        logger.info("Using in-memory session store; history is lost on restart")

    async def close(self) -> None:
        return None

    async def exists(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    async def get(self, session_id: str) -> list[MessageRecord]:
        with self._lock:
            data = self._sessions.get(session_id)
            return list(data.messages) if data else []

    async def append(self, session_id: str, role: Role, content: str) -> MessageRecord:
        now = _utc_now()
        with self._lock:
            data = self._get_or_create(session_id, now)
            message = MessageRecord(
                id=uuid4().hex,
                session_id=session_id,
                role=role,
                content=content,
                seq=data.next_seq,
                created_at=now,
            )
            data.messages.append(message)
            data.next_seq += 1
            data.record = replace(
                data.record,
                updated_at=now,
                last_message_preview=content[:_PREVIEW_LENGTH],
            )
            data.touched = next(self._clock)
        return message

    async def last_message(self, session_id: str) -> Optional[MessageRecord]:
        with self._lock:
            data = self._sessions.get(session_id)
            if not data or not data.messages:
                return None
            return data.messages[-1]

    async def remove_last_if_assistant(self, session_id: str) -> bool:
        with self._lock:
            data = self._sessions.get(session_id)
            if not data or not data.messages or data.messages[-1].role != "assistant":
                return False
            data.messages.pop()
            tail = data.messages[-1].content if data.messages else None
            data.record = replace(
                data.record,
                updated_at=_utc_now(),
                last_message_preview=tail[:_PREVIEW_LENGTH] if tail else None,
            )
            data.touched = next(self._clock)
            return True

    async def list_sessions(self) -> list[SessionRecord]:
        with self._lock:
            ordered = sorted(self._sessions.values(), key=lambda data: data.touched, reverse=True)
            return [data.record for data in ordered]

    async def create_session(
        self, session_id: Optional[str] = None, *, title: Optional[str] = None
    ) -> SessionRecord:
        session_id = session_id or uuid4().hex
        now = _utc_now()
        with self._lock:
            data = self._get_or_create(session_id, now)
            if title is not None:
                data.record = replace(data.record, title=title)
            return data.record

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            data = self._sessions.get(session_id)
            return data.record if data else None

    async def update_session_title(self, session_id: str, title: str) -> None:
        with self._lock:
            data = self._sessions.get(session_id)
            if data is not None:
                data.record = replace(data.record, title=title, updated_at=_utc_now())
                data.touched = next(self._clock)

    async def session_has_title(self, session_id: str) -> bool:
        with self._lock:
            data = self._sessions.get(session_id)
            return bool(data and data.record.title)

    async def get_first_exchange(self, session_id: str) -> list[MessageRecord]:
        with self._lock:
            data = self._sessions.get(session_id)
            return list(data.messages[:_FIRST_EXCHANGE_LIMIT]) if data else []

    def _get_or_create(self, session_id: str, now: datetime) -> _SessionData:
        data = self._sessions.get(session_id)
        if data is None:
            record = SessionRecord(
                id=session_id,
                title=None,
                created_at=now,
                updated_at=now,
                last_message_preview=None,
            )
            data = _SessionData(record=record)
            data.touched = next(self._clock)
            self._sessions[session_id] = data
        return data


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
