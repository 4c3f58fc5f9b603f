# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Chat error taxonomy.

Errors raised before the event stream opens become a JSON body with
``status_code``. Once the stream is open the status is fixed at 200 and
failures can only be reported as an ``error`` event.
"""

from __future__ import annotations

from typing import Any, Optional


class ChatError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(ChatError):
    """Bad or missing input."""

    status_code = 400


class NotFoundError(ChatError):
    status_code = 404


class ConflictError(ChatError):
    """History is not in a state the request can work with."""

    status_code = 409


class ConfigurationError(ChatError):
    """The completion provider cannot be built from the current configuration."""

    status_code = 503


class ProviderError(ChatError):
    """The upstream completion call failed or broke before finishing.

    Only ever reported inside an open stream as an ``error`` event.
    """
