# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from uuid import uuid4

from .models import MessageRecord, Role, SessionRecord

logger = logging.getLogger(__name__)


_SESSIONS_DDL = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    title TEXT,
    last_message_preview TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

_MESSAGES_DDL = """
CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    role TEXT NOT NULL CHECK (role IN ('user', 'assistant', 'system')),
    content TEXT NOT NULL,
    seq INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY(session_id) REFERENCES sessions(id) ON DELETE CASCADE
);
"""

_CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_sessions_updated ON sessions(updated_at DESC);",
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_messages_session_seq ON messages(session_id, seq);",
]

_SESSION_COLUMNS = "id, title, last_message_preview, created_at, updated_at"
_MESSAGE_COLUMNS = "id, session_id, role, content, seq, created_at"

_PREVIEW_LENGTH = 200
_FIRST_EXCHANGE_LIMIT = 4


def _ensure_pragmas(connection: sqlite3.Connection) -> None:
    connection.execute("PRAGMA foreign_keys = ON;")
    connection.execute("PRAGMA journal_mode = WAL;")


class SQLiteSessionStore:
    """SQLite-backed history store for chat sessions and their messages."""

    backend = "sqlite"

    def __init__(self, db_path: str) -> None:
        path = Path(db_path)
        if not path.is_absolute():
            path = Path.cwd() / path
        if path.suffix != ".db":
            path = path.with_suffix(".db")
        self._db_path = str(path)
        self._write_lock = asyncio.Lock()

    @property
    def db_path(self) -> str:
        return self._db_path

    async def init(self) -> None:
        """Initialise database schema."""
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        def _init() -> None:
            with sqlite3.connect(self._db_path) as connection:
                _ensure_pragmas(connection)
                connection.execute(_SESSIONS_DDL)
                connection.execute(_MESSAGES_DDL)
                for statement in _CREATE_INDEXES:
                    connection.execute(statement)
                connection.commit()

        await asyncio.to_thread(_init)
        logger.info("Session database initialised at %s", self._db_path)

    async def close(self) -> None:  # pragma: no cover - connections are per call
        return None

    async def exists(self, session_id: str) -> bool:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT 1 FROM sessions WHERE id = ?",
            (session_id,),
        )
        return row is not None

    async def create_session(
        self, session_id: Optional[str] = None, *, title: Optional[str] = None
    ) -> SessionRecord:
        session_id = session_id or uuid4().hex
        now = _utc_now_str()

        async with self._write_lock:
            await asyncio.to_thread(
                self._execute,
                "INSERT OR IGNORE INTO sessions (id, title, last_message_preview, created_at, updated_at)"
                " VALUES (?, ?, ?, ?, ?)",
                (session_id, title, None, now, now),
            )

        session = await self.get_session(session_id)
        if session is None:
            raise RuntimeError(f"Session {session_id} missing right after creation")
        return session

    async def list_sessions(self) -> list[SessionRecord]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_SESSION_COLUMNS} FROM sessions ORDER BY updated_at DESC, rowid DESC",
        )
        return [self._row_to_session(row) for row in rows]

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE id = ?",
            (session_id,),
        )
        return self._row_to_session(row) if row else None

    async def get(self, session_id: str) -> list[MessageRecord]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE session_id = ? ORDER BY seq ASC",
            (session_id,),
        )
        return [self._row_to_message(row) for row in rows]

    async def last_message(self, session_id: str) -> Optional[MessageRecord]:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE session_id = ? ORDER BY seq DESC LIMIT 1",
            (session_id,),
        )
        return self._row_to_message(row) if row else None

    async def append(self, session_id: str, role: Role, content: str) -> MessageRecord:
        message_id = uuid4().hex
        now = _utc_now_str()

        async with self._write_lock:
            def _insert() -> int:
                # One transaction: ensure session, insert message, refresh summary.
                with sqlite3.connect(self._db_path) as connection:
                    connection.row_factory = sqlite3.Row
                    _ensure_pragmas(connection)

                    connection.execute(
                        "INSERT OR IGNORE INTO sessions (id, title, last_message_preview, created_at, updated_at)"
                        " VALUES (?, ?, ?, ?, ?)",
                        (session_id, None, None, now, now),
                    )
                    cursor = connection.execute(
                        "SELECT COALESCE(MAX(seq), 0) AS max_seq FROM messages WHERE session_id = ?",
                        (session_id,),
                    )
                    row = cursor.fetchone()
                    next_seq = int(row["max_seq"] or 0) + 1

                    connection.execute(
                        f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                        (message_id, session_id, role, content, next_seq, now),
                    )
                    connection.execute(
                        "UPDATE sessions SET updated_at = ?, last_message_preview = ? WHERE id = ?",
                        (now, content[:_PREVIEW_LENGTH], session_id),
                    )
                    connection.commit()
                    return next_seq

            seq = await asyncio.to_thread(_insert)

        return MessageRecord(
            id=message_id,
            session_id=session_id,
            role=role,
            content=content,
            seq=seq,
            created_at=_parse_ts(now),
        )

    async def remove_last_if_assistant(self, session_id: str) -> bool:
        now = _utc_now_str()

        async with self._write_lock:
            def _remove() -> bool:
                with sqlite3.connect(self._db_path) as connection:
                    connection.row_factory = sqlite3.Row
                    _ensure_pragmas(connection)

                    tail = connection.execute(
                        "SELECT id, role FROM messages WHERE session_id = ? ORDER BY seq DESC LIMIT 1",
                        (session_id,),
                    ).fetchone()
                    if tail is None or tail["role"] != "assistant":
                        return False

                    connection.execute("DELETE FROM messages WHERE id = ?", (tail["id"],))
                    previous = connection.execute(
                        "SELECT content FROM messages WHERE session_id = ? ORDER BY seq DESC LIMIT 1",
                        (session_id,),
                    ).fetchone()
                    preview = previous["content"][:_PREVIEW_LENGTH] if previous else None
                    connection.execute(
                        "UPDATE sessions SET updated_at = ?, last_message_preview = ? WHERE id = ?",
                        (now, preview, session_id),
                    )
                    connection.commit()
                    return True

            return await asyncio.to_thread(_remove)

    async def update_session_title(self, session_id: str, title: str) -> None:
        now = _utc_now_str()
        async with self._write_lock:
            await asyncio.to_thread(
                self._execute,
                "UPDATE sessions SET title = ?, updated_at = ? WHERE id = ?",
                (title, now, session_id),
            )

    async def session_has_title(self, session_id: str) -> bool:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT title FROM sessions WHERE id = ?",
            (session_id,),
        )
        return bool(row and row["title"])

    async def get_first_exchange(self, session_id: str) -> list[MessageRecord]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE session_id = ? ORDER BY seq ASC LIMIT ?",
            (session_id, _FIRST_EXCHANGE_LIMIT),
        )
        return [self._row_to_message(row) for row in rows]

    def _execute(self, query: str, params: tuple = ()) -> None:
        with sqlite3.connect(self._db_path) as connection:
            _ensure_pragmas(connection)
            connection.execute(query, params)
            connection.commit()

    def _fetchall(self, query: str, params: tuple = ()) -> list[sqlite3.Row]:
        with sqlite3.connect(self._db_path) as connection:
            connection.row_factory = sqlite3.Row
            _ensure_pragmas(connection)
            cursor = connection.execute(query, params)
            return cursor.fetchall()

    def _fetchone(self, query: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with sqlite3.connect(self._db_path) as connection:
            connection.row_factory = sqlite3.Row
            _ensure_pragmas(connection)
            cursor = connection.execute(query, params)
            return cursor.fetchone()

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> SessionRecord:
        return SessionRecord(
            id=row["id"],
            title=row["title"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
            last_message_preview=row["last_message_preview"],
        )

    @staticmethod
    def _row_to_message(row: sqlite3.Row) -> MessageRecord:
        return MessageRecord(
            id=row["id"],
            session_id=row["session_id"],
            role=row["role"],
            content=row["content"],
            seq=row["seq"],
            created_at=_parse_ts(row["created_at"]),
        )


def _utc_now_str() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat(timespec="microseconds") + "Z"


def _parse_ts(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1]
    return datetime.fromisoformat(value)
