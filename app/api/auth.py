from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.api.deps import SessionAuthContext, client_ip, http_error, require_device_id, require_session
from app.api.ws import push_request_opened, request_event
from app.db.session import get_db
from app.schemas.auth import (
    AccessResponse,
    LoginRequest,
    RegisterRequest,
    RegisterResponse,
    RequestStatusResponse,
    SessionResponse,
    UserSummary,
)
from app.services.credential_store import CredentialStore
from app.services.errors import DeviceTrustError
from app.services.login_service import LoginService
from app.services.security_ledger import SecurityRequestLedger
from app.services.session_tokens import token_expires_in

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

_DENIAL_STATUS = {
    "invalid_credentials": status.HTTP_401_UNAUTHORIZED,
    "account_blocked": status.HTTP_403_FORBIDDEN,
    "account_pending": status.HTTP_403_FORBIDDEN,
    "role_mismatch": status.HTTP_403_FORBIDDEN,
}


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, db: Session = Depends(get_db)) -> RegisterResponse:
    store = CredentialStore(db)
    # Only the very first admin may self-register; later admins are promoted by an admin.
    if payload.role == "admin" and store.admin_exists():
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin_already_exists")
    try:
        user = store.create_user(payload.name, payload.email, payload.password, role=payload.role)
    except DeviceTrustError as exc:
        raise http_error(exc) from exc
    db.commit()
    db.refresh(user)

    message = "Registration successful."
    if user.status == "pending":
        message = "Registration successful! Your account is pending admin approval."
    return RegisterResponse(user=UserSummary.model_validate(user), message=message)


@router.post("/login", response_model=AccessResponse, status_code=status.HTTP_200_OK)
def login(
    payload: LoginRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    device_id: str = Depends(require_device_id),
    db: Session = Depends(get_db),
) -> AccessResponse:
    service = LoginService(db)
    try:
        result = service.login(
            payload.email,
            payload.password,
            device_id,
            portal=payload.portal,
            ip_address=client_ip(request),
        )
    except DeviceTrustError as exc:
        raise http_error(exc) from exc

    decision = result.decision
    if decision.status == "denied":
        reason = decision.reason or "invalid_credentials"
        raise HTTPException(status_code=_DENIAL_STATUS.get(reason, status.HTTP_401_UNAUTHORIZED), detail=reason)

    if decision.status == "pending":
        if decision.request_created and decision.user is not None:
            pending = SecurityRequestLedger(db).get(decision.request_id or "")
            if pending is not None:
                background_tasks.add_task(
                    push_request_opened, decision.user.user_id, request_event("security_request.opened", pending)
                )
        return AccessResponse(status="pending", request_id=decision.request_id)

    assert result.token is not None and decision.user is not None
    return AccessResponse(
        status="granted",
        session_token=result.token.token,
        expires_in=token_expires_in(result.token.payload),
        user=UserSummary.model_validate(decision.user),
        trusted_devices=result.trusted_devices or [],
    )


@router.get("/requests/{request_id}/status", response_model=RequestStatusResponse)
def get_request_status(request_id: str, db: Session = Depends(get_db)) -> RequestStatusResponse:
    ledger = SecurityRequestLedger(db)
    return RequestStatusResponse(request_id=request_id, status=ledger.check_status(request_id))


@router.get("/session", response_model=SessionResponse)
def get_session(auth: SessionAuthContext = Depends(require_session)) -> SessionResponse:
    return SessionResponse(
        user=UserSummary.model_validate(auth.user),
        device_id=auth.device_id,
        trusted_devices=auth.trusted_devices,
    )
