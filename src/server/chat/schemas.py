# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

from typing import Optional

from pydantic import Field, StrictStr

from src.server.session.schemas import CamelModel


class ChatRequest(CamelModel):
    session_id: Optional[StrictStr] = Field(
        default=None,
        description="Session to continue. A new session is started when omitted or unknown.",
    )
    new_message_content: Optional[StrictStr] = Field(
        default=None,
        description="The user message to send.",
    )


class RetryRequest(CamelModel):
    session_id: Optional[StrictStr] = Field(
        default=None,
        description="Session whose last turn should be regenerated.",
    )


class ErrorResponse(CamelModel):
    error: str
    details: Optional[str] = None
