# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .models import Role


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HistoryMessage(CamelModel):
    role: Role
    content: str


class SessionSummary(CamelModel):
    id: str
    title: Optional[str] = None
    last_message_preview: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class SessionListResponse(CamelModel):
    sessions: list[SessionSummary]


class HistoryResponse(CamelModel):
    session_id: str
    history: list[HistoryMessage] = Field(default_factory=list)


class SessionCreateRequest(CamelModel):
    title: Optional[str] = Field(default=None, description="Optional session title.")

    @field_validator("title")
    @classmethod
    def validate_title_length(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not value:
            return None
        if len(value) > 255:
            raise ValueError("Title must be 255 characters or fewer")
        return value


class SessionCreateResponse(CamelModel):
    session: SessionSummary
