from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any, TypedDict

from app.core.config import settings


class SessionTokenError(Exception):
    """Raised when a session token cannot be issued or verified."""

    def __init__(self, code: str, detail: str | None = None) -> None:
        self.code = code
        self.detail = detail or code
        super().__init__(self.detail)


class TokenPayload(TypedDict):
    v: int
    uid: int
    did: str
    role: str
    iat: int
    exp: int


@dataclass(slots=True)
class IssuedToken:
    token: str
    payload: TokenPayload


def issue_session_token(user_id: int, device_id: str, role: str, ttl_seconds: int | None = None) -> IssuedToken:
    if not device_id:
        raise SessionTokenError("missing_device_id")
    ttl = ttl_seconds or settings.session_token_ttl_seconds
    now = int(time.time())
    payload: TokenPayload = {
        "v": settings.session_token_version,
        "uid": int(user_id),
        "did": device_id,
        "role": role,
        "iat": now,
        "exp": now + ttl,
    }
    encoded = _encode_payload(payload)
    signature = _sign(encoded)
    return IssuedToken(token=f"{encoded}.{signature}", payload=payload)


def verify_session_token(token: str) -> TokenPayload:
    if not token:
        raise SessionTokenError("token_missing")
    parts = token.split(".")
    if len(parts) != 2:
        raise SessionTokenError("token_malformed")
    payload_part, signature_part = parts
    expected_signature = _sign(payload_part)
    if not hmac.compare_digest(signature_part, expected_signature):
        raise SessionTokenError("invalid_signature")

    try:
        payload_dict: dict[str, Any] = json.loads(_decode_payload(payload_part))
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError) as exc:
        raise SessionTokenError("token_corrupted") from exc

    required_fields = {"v", "uid", "did", "role", "iat", "exp"}
    if not required_fields.issubset(payload_dict):
        raise SessionTokenError("token_fields_missing")

    payload: TokenPayload = {
        "v": int(payload_dict["v"]),
        "uid": int(payload_dict["uid"]),
        "did": str(payload_dict["did"]),
        "role": str(payload_dict["role"]),
        "iat": int(payload_dict["iat"]),
        "exp": int(payload_dict["exp"]),
    }

    if payload["v"] != settings.session_token_version:
        raise SessionTokenError("token_version_mismatch")

    if payload["exp"] < int(time.time()):
        raise SessionTokenError("token_expired")

    return payload


def token_expires_in(payload: TokenPayload) -> int:
    return max(payload["exp"] - int(time.time()), 0)


def _encode_payload(payload: TokenPayload) -> str:
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def _decode_payload(encoded: str) -> str:
    padding = "=" * (-len(encoded) % 4)
    raw = base64.urlsafe_b64decode(encoded + padding)
    return raw.decode("utf-8")


def _sign(message: str) -> str:
    secret = settings.session_hmac_secret.encode("utf-8")
    digest = hmac.new(secret, msg=message.encode("utf-8"), digestmod=hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8").rstrip("=")
