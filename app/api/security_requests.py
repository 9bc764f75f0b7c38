from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from app.api.deps import SessionAuthContext, http_error, require_session
from app.api.ws import push_request_resolved, request_event
from app.db.session import get_db
from app.schemas.auth import (
    RespondRequest,
    RespondResponse,
    SecurityRequestItem,
    SecurityRequestListResponse,
)
from app.services.approval_responder import ApprovalResponder
from app.services.errors import DeviceTrustError
from app.services.security_ledger import SecurityRequestLedger

router = APIRouter(prefix="/security-requests", tags=["security-requests"])


@router.get("", response_model=SecurityRequestListResponse)
def list_security_requests(
    auth: SessionAuthContext = Depends(require_session),
    db: Session = Depends(get_db),
) -> SecurityRequestListResponse:
    ledger = SecurityRequestLedger(db)
    items = ledger.list_pending(None if auth.is_admin else auth.user.user_id)
    return SecurityRequestListResponse(items=[SecurityRequestItem.model_validate(item) for item in items])


@router.post("/{request_id}/respond", response_model=RespondResponse)
def respond_to_security_request(
    request_id: str,
    payload: RespondRequest,
    background_tasks: BackgroundTasks,
    auth: SessionAuthContext = Depends(require_session),
    db: Session = Depends(get_db),
) -> RespondResponse:
    responder = ApprovalResponder(db)
    try:
        result = responder.respond(request_id, payload.action, auth)
    except DeviceTrustError as exc:
        raise http_error(exc) from exc

    if result.changed:
        background_tasks.add_task(
            push_request_resolved, request_id, request_event("security_request.resolved", result.request)
        )
    return RespondResponse(
        request_id=result.request.request_id,
        status=result.request.status,
        changed=result.changed,
        trusted_devices=auth.trusted_devices,
    )
