# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Capability interface shared by every history store backend.

The session controller and the stream relay only talk to this protocol, so
the in-memory and SQLite stores are interchangeable at process start.

``append`` creates the session when it does not exist yet. Both backends
must honour that identically.
"""

from __future__ import annotations

from typing import Optional, Protocol

from .models import MessageRecord, Role, SessionRecord


class HistoryStore(Protocol):
    backend: str

    async def init(self) -> None: ...

    async def close(self) -> None: ...

    async def exists(self, session_id: str) -> bool: ...

    async def get(self, session_id: str) -> list[MessageRecord]:
        """Return the ordered history, or an empty list for unknown sessions."""
        ...

    async def append(self, session_id: str, role: Role, content: str) -> MessageRecord: ...

    async def last_message(self, session_id: str) -> Optional[MessageRecord]: ...

    async def remove_last_if_assistant(self, session_id: str) -> bool:
        """Pop the tail message only if it is an assistant message."""
        ...

    async def list_sessions(self) -> list[SessionRecord]: ...

    async def create_session(
        self, session_id: Optional[str] = None, *, title: Optional[str] = None
    ) -> SessionRecord: ...

    async def get_session(self, session_id: str) -> Optional[SessionRecord]: ...

    async def update_session_title(self, session_id: str, title: str) -> None: ...

    async def session_has_title(self, session_id: str) -> bool: ...

    async def get_first_exchange(self, session_id: str) -> list[MessageRecord]: ...
