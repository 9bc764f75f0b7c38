from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from sqlalchemy.orm import Session

from app.db.models import User
from app.services.credential_store import CredentialStore, utcnow
from app.services.errors import InvalidInputError
from app.services.passwords import burn_password_check, verify_password
from app.services.security_ledger import SecurityRequestLedger

logger = logging.getLogger(__name__)

AccessIntent = Literal["login", "recovery"]
AccessStatus = Literal["granted", "denied", "pending"]

# Bootstrap can lose a compare-and-swap to a concurrent writer; the loser re-reads.
_MAX_BOOTSTRAP_ATTEMPTS = 3


@dataclass(slots=True)
class AccessDecision:
    status: AccessStatus
    reason: str | None = None
    request_id: str | None = None
    user: User | None = None
    request_created: bool = False

    @property
    def granted(self) -> bool:
        return self.status == "granted"


class AccessGate:
    def __init__(self, db: Session) -> None:
        self.db = db
        self.store = CredentialStore(db)
        self.ledger = SecurityRequestLedger(db)

    def evaluate_access(
        self,
        email: str,
        secret: str,
        device_id: str,
        intent: AccessIntent,
        ip_address: str | None = None,
    ) -> AccessDecision:
        device_id = (device_id or "").strip()
        if not device_id:
            raise InvalidInputError("device_id_required")
        if intent not in ("login", "recovery"):
            raise InvalidInputError("invalid_intent")

        user = self.store.get_user_by_email(email)
        if intent == "login":
            if user is None:
                burn_password_check()
                return AccessDecision(status="denied", reason="invalid_credentials")
            if not verify_password(secret, user.password_hash):
                return AccessDecision(status="denied", reason="invalid_credentials")
            if user.status == "blocked":
                return AccessDecision(status="denied", reason="account_blocked")
            if user.status == "pending":
                return AccessDecision(status="denied", reason="account_pending")
        elif user is None:
            return AccessDecision(status="denied", reason="recovery_unavailable")

        for _ in range(_MAX_BOOTSTRAP_ATTEMPTS):
            if self.store.is_trusted(user.user_id, device_id):
                self.store.touch_device(user.user_id, device_id)
                user.last_seen_at = utcnow()
                self.db.commit()
                return AccessDecision(status="granted", user=user)

            if self.store.bootstrap_trust(user, device_id):
                user.last_seen_at = utcnow()
                self.db.commit()
                return AccessDecision(status="granted", user=user)

            # Lost the bootstrap race, or the set is non-empty. Re-read before deciding.
            self.db.rollback()
            self.db.refresh(user)
            if self.store.trusted_device_ids(user.user_id):
                break

        request, created = self.ledger.open_request(user, device_id, intent, ip_address=ip_address)
        return AccessDecision(
            status="pending",
            reason="device_approval_required",
            request_id=request.request_id,
            user=user,
            request_created=created,
        )
