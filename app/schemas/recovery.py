from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, constr


class RecoveryInitiateRequest(BaseModel):
    email: constr(strip_whitespace=True, min_length=3, max_length=255)  # type: ignore[valid-type]


class RecoveryInitiateResponse(BaseModel):
    status: Literal["issued", "pending"]
    message: str
    code: str | None = Field(None, description="Shown in-app; no email channel is configured")
    expires_at: datetime | None = None
    request_id: str | None = None


class RecoveryCompleteRequest(BaseModel):
    email: constr(strip_whitespace=True, min_length=3, max_length=255)  # type: ignore[valid-type]
    code: constr(strip_whitespace=True, min_length=1, max_length=12)  # type: ignore[valid-type]
    new_password: str = Field(..., min_length=1, max_length=128)


class RecoveryCompleteResponse(BaseModel):
    status: str = "ok"
    message: str = "Password updated successfully. You can now log in."
