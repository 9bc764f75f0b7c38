from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, constr


class RegisterRequest(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=100)  # type: ignore[valid-type]
    email: constr(strip_whitespace=True, min_length=3, max_length=255)  # type: ignore[valid-type]
    password: str = Field(..., min_length=6, max_length=128)
    role: Literal["admin", "publisher", "subscriber"] = "subscriber"


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    name: str
    email: str
    role: str
    status: str


class RegisterResponse(BaseModel):
    user: UserSummary
    message: str


class LoginRequest(BaseModel):
    email: constr(strip_whitespace=True, min_length=3, max_length=255)  # type: ignore[valid-type]
    password: str = Field(..., min_length=1, max_length=128)
    portal: Literal["admin", "publisher", "subscriber"] | None = Field(
        None, description="Role interface the user is signing in to; admins may use any"
    )


class AccessResponse(BaseModel):
    status: Literal["granted", "pending"]
    request_id: str | None = None
    session_token: str | None = None
    expires_in: int | None = Field(None, description="Seconds until the session token expires")
    user: UserSummary | None = None
    trusted_devices: list[str] = Field(default_factory=list)


class RequestStatusResponse(BaseModel):
    request_id: str
    status: Literal["pending", "approved", "rejected", "expired"]


class SessionResponse(BaseModel):
    user: UserSummary
    device_id: str
    trusted_devices: list[str]


class SecurityRequestItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    request_id: str
    user_id: int
    user_name: str | None
    user_email: str | None
    device_id: str
    kind: str
    status: str
    ip_address: str | None
    created_at: datetime | None
    expires_at: datetime


class SecurityRequestListResponse(BaseModel):
    items: list[SecurityRequestItem]


class RespondRequest(BaseModel):
    action: Literal["approve", "reject"]


class RespondResponse(BaseModel):
    request_id: str
    status: str
    changed: bool
    trusted_devices: list[str]


class TrustedDeviceItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    device_id: str
    source: str
    trusted_at: datetime | None
    last_used_at: datetime | None
    current: bool = False


class TrustedDeviceListResponse(BaseModel):
    items: list[TrustedDeviceItem]
