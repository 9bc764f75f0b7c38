from __future__ import annotations

from dataclasses import dataclass, field

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.models.user import User
from app.db.session import get_db
from app.services.credential_store import CredentialStore
from app.services.errors import DeviceTrustError
from app.services.session_tokens import SessionTokenError, TokenPayload, verify_session_token

DEVICE_ID_HEADER = settings.device_id_header
SESSION_TOKEN_HEADER = settings.session_token_header


@dataclass(slots=True)
class SessionAuthContext:
    user: User
    token: TokenPayload
    trusted_devices: list[str] = field(default_factory=list)

    @property
    def device_id(self) -> str:
        return self.token["did"]

    @property
    def is_admin(self) -> bool:
        return self.user.role == "admin"


def require_device_id(device_id: str = Header(..., alias=DEVICE_ID_HEADER)) -> str:
    device_id = device_id.strip()
    if not device_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="device_id_required")
    return device_id


def require_session(
    device_id: str = Header(..., alias=DEVICE_ID_HEADER),
    session_token: str = Header(..., alias=SESSION_TOKEN_HEADER),
    db: Session = Depends(get_db),
) -> SessionAuthContext:
    return resolve_session(device_id, session_token, db)


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def resolve_session(device_id: str, session_token: str, db: Session) -> SessionAuthContext:
    try:
        payload = verify_session_token(session_token)
    except SessionTokenError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.code) from exc

    if payload["did"] != device_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="session_device_mismatch")

    store = CredentialStore(db)
    user = store.get_user(payload["uid"])
    if not user or user.status != "active":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="session_user_inactive")

    # A revoked device loses its sessions immediately.
    trusted = store.trusted_device_ids(user.user_id)
    if device_id not in trusted:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="device_not_trusted")

    return SessionAuthContext(user=user, token=payload, trusted_devices=trusted)


def http_error(exc: DeviceTrustError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.code)
