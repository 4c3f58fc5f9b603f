# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Session history persistence: in-memory and SQLite-backed stores plus APIs."""

from .base import HistoryStore
from .dependencies import get_session_store
from .memory import InMemoryHistoryStore
from .store import SQLiteSessionStore

__all__ = ["HistoryStore", "InMemoryHistoryStore", "SQLiteSessionStore", "get_session_store"]
