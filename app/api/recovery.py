from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.api.deps import client_ip, http_error, require_device_id
from app.api.ws import push_request_opened, request_event
from app.db.session import get_db
from app.schemas.recovery import (
    RecoveryCompleteRequest,
    RecoveryCompleteResponse,
    RecoveryInitiateRequest,
    RecoveryInitiateResponse,
)
from app.services.errors import DeviceTrustError
from app.services.recovery_codes import RecoveryCodeIssuer
from app.services.security_ledger import SecurityRequestLedger

router = APIRouter(prefix="/recovery", tags=["recovery"])


@router.post("/initiate", response_model=RecoveryInitiateResponse)
def initiate_recovery(
    payload: RecoveryInitiateRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    device_id: str = Depends(require_device_id),
    db: Session = Depends(get_db),
) -> RecoveryInitiateResponse:
    issuer = RecoveryCodeIssuer(db)
    try:
        result = issuer.issue_recovery_code(payload.email, device_id, ip_address=client_ip(request))
    except DeviceTrustError as exc:
        raise http_error(exc) from exc

    if result.status == "denied":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result.reason or "recovery_unavailable")

    if result.status == "pending" and result.request_id:
        pending = SecurityRequestLedger(db).get(result.request_id)
        if pending is not None and pending.status == "pending":
            background_tasks.add_task(
                push_request_opened, pending.user_id, request_event("security_request.opened", pending)
            )

    return RecoveryInitiateResponse(
        status=result.status,
        message=result.message,
        code=result.code,
        expires_at=result.expires_at,
        request_id=result.request_id,
    )


@router.post("/complete", response_model=RecoveryCompleteResponse)
def complete_recovery(payload: RecoveryCompleteRequest, db: Session = Depends(get_db)) -> RecoveryCompleteResponse:
    issuer = RecoveryCodeIssuer(db)
    try:
        issuer.complete_recovery(payload.email, payload.code, payload.new_password)
    except DeviceTrustError as exc:
        raise http_error(exc) from exc
    return RecoveryCompleteResponse()
