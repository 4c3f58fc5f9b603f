# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends

from src.config.loader import get_str_env

from .base import HistoryStore
from .memory import InMemoryHistoryStore
from .store import SQLiteSessionStore

logger = logging.getLogger(__name__)

_SESSION_STORE: Optional[HistoryStore] = None


def build_session_store(backend: str, db_path: str) -> HistoryStore:
    backend = backend.strip().lower()
    if backend == "memory":
        return InMemoryHistoryStore()
    if backend == "sqlite":
        return SQLiteSessionStore(db_path)
    raise ValueError(f"Unknown session store backend: {backend!r} (expected 'memory' or 'sqlite')")


def initialise_session_store() -> HistoryStore:
    """Create the session store selected by configuration, once per process."""
    global _SESSION_STORE
    if _SESSION_STORE is not None:
        return _SESSION_STORE

    backend = get_str_env("SESSION_STORE_BACKEND", "sqlite")
    db_path = get_str_env("SESSION_DB_PATH", "chat_sessions.db")
    store = build_session_store(backend, db_path)
    _SESSION_STORE = store
    logger.info("Initialised %s session store", store.backend)
    return store


def set_session_store(store: Optional[HistoryStore]) -> None:
    global _SESSION_STORE
    _SESSION_STORE = store


def get_session_store(_: HistoryStore = Depends(initialise_session_store)) -> HistoryStore:
    if _SESSION_STORE is None:
        raise RuntimeError("Session store has not been initialised")
    return _SESSION_STORE
