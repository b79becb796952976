"""User schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PushTokenUpdate(BaseModel):
    push_token: str = Field(..., alias="pushToken", min_length=1, max_length=255)

    model_config = {"populate_by_name": True}


class PushTokenResponse(BaseModel):
    user_id: str = Field(..., serialization_alias="userId")
    push_token: str | None = Field(default=None, serialization_alias="pushToken")
