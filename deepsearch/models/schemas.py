from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


# --- Requests ---


class DeepSearchRequest(BaseModel):
    model_config = {"populate_by_name": True}

    topic: str | None = None
    session_id: str | None = Field(default=None, alias="sessionId")
    depth: Literal["basic", "advanced"] = "basic"
    model: str | None = None


# --- Responses ---


class RecoveryResponse(BaseModel):
    model_config = {"populate_by_name": True}

    recoverable: bool
    message_id: str | None = Field(default=None, alias="messageId")
    status: str | None = None
    state: dict[str, Any] | None = None
