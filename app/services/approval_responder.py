from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from sqlalchemy.orm import Session

from app.api.deps import SessionAuthContext
from app.core.cache import cache_terminal_status
from app.db.models import SecurityRequest
from app.services.credential_store import CredentialStore
from app.services.errors import ExpiredError, InvalidInputError, NotFoundError, UnauthorizedError
from app.services.security_ledger import SecurityRequestLedger

logger = logging.getLogger(__name__)

ApprovalAction = Literal["approve", "reject"]

_OUTCOMES = {"approve": "approved", "reject": "rejected"}


@dataclass(slots=True)
class ApprovalResult:
    request: SecurityRequest
    changed: bool
    device_added: bool = False


class ApprovalResponder:
    def __init__(self, db: Session) -> None:
        self.db = db
        self.store = CredentialStore(db)
        self.ledger = SecurityRequestLedger(db)

    def respond(self, request_id: str, action: ApprovalAction, actor: SessionAuthContext) -> ApprovalResult:
        outcome = _OUTCOMES.get(action)
        if outcome is None:
            raise InvalidInputError("invalid_action")

        request = self.ledger.get(request_id)
        if request is None:
            raise NotFoundError("security_request_not_found")

        if request.user_id != actor.user.user_id and not actor.is_admin:
            logger.warning(
                "Rejected approval attempt: request=%s actor=%s target=%s",
                request_id,
                actor.user.user_id,
                request.user_id,
            )
            # Reported exactly like an unknown id so request ids cannot be enumerated.
            raise UnauthorizedError("security_request_not_found", status_code=404)

        if request.status == "expired":
            raise ExpiredError("security_request_expired")
        if request.status != "pending":
            return ApprovalResult(request=request, changed=False)

        if self.ledger.expire_if_stale(request):
            self.db.commit()
            cache_terminal_status(request.request_id, request.status)
            raise ExpiredError("security_request_expired")

        if not self.ledger.resolve(request, outcome, resolved_by=actor.user.user_id):
            self.db.rollback()
            self.db.refresh(request)
            if request.status == "expired" or self.ledger.expire_if_stale(request):
                self.db.commit()
                raise ExpiredError("security_request_expired")
            return ApprovalResult(request=request, changed=False)

        device_added = False
        if outcome == "approved":
            device_added = self.store.add_trusted_device(
                request.user_id,
                request.device_id,
                source="approval",
                request_id=request.request_id,
            )
        self.db.commit()
        self.db.refresh(request)
        cache_terminal_status(request.request_id, request.status)

        logger.info(
            "Security request %s: id=%s device=%s by=%s",
            outcome,
            request.request_id,
            request.device_id,
            actor.user.user_id,
        )
        if request.user_id == actor.user.user_id:
            actor.trusted_devices = self.store.trusted_device_ids(actor.user.user_id)
        return ApprovalResult(request=request, changed=True, device_added=device_added)
