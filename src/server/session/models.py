# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

Role = Literal["user", "assistant", "system"]


@dataclass(frozen=True, slots=True)
class SessionRecord:
    id: str
    title: Optional[str]
    created_at: datetime
    updated_at: datetime
    last_message_preview: Optional[str]


@dataclass(frozen=True, slots=True)
class MessageRecord:
    id: str
    session_id: str
    role: Role
    content: str
    seq: int
    created_at: datetime
