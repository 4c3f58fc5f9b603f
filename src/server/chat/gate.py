# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

import logging

from .errors import ConflictError

logger = logging.getLogger(__name__)


class SessionGate:
    """Allows at most one in-flight stream per session.

    Acquire and release never await, so on a single event loop the check and
    the update cannot interleave with another request.
    """

    def __init__(self, enabled: bool = True) -> None:
        self._enabled = enabled
        self._active: set[str] = set()

    @property
    def enabled(self) -> bool:
        return self._enabled

    def is_active(self, session_id: str) -> bool:
        return session_id in self._active

    def acquire(self, session_id: str) -> None:
        if not self._enabled:
            return
        if session_id in self._active:
            logger.warning("Session %s already has a stream in flight; rejecting request", session_id)
            raise ConflictError(
                f'Session "{session_id}" is already streaming a reply.',
                details="Wait for the current reply to finish or cancel it before sending another request.",
            )
        self._active.add(session_id)

    def release(self, session_id: str) -> None:
        self._active.discard(session_id)
