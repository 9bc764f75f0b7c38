from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal, Protocol

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.models import RecoveryCode
from app.services.access_gate import AccessGate
from app.services.credential_store import CredentialStore, normalize_email, utcnow
from app.services.errors import ExpiredError, InvalidInputError

logger = logging.getLogger(__name__)


class RecoveryCodeNotifier(Protocol):
    def send_recovery_code(self, email: str, code: str) -> None: ...


class LoggingNotifier:
    """Stand-in delivery channel; the caller is expected to display the code."""

    def send_recovery_code(self, email: str, code: str) -> None:
        logger.info("Recovery code issued for %s (code ending %s)", email, code[-2:])


@dataclass(slots=True)
class RecoveryIssueResult:
    status: Literal["issued", "pending", "denied"]
    message: str
    code: str | None = None
    expires_at: datetime | None = None
    request_id: str | None = None
    reason: str | None = None


class RecoveryCodeIssuer:
    def __init__(self, db: Session, notifier: RecoveryCodeNotifier | None = None) -> None:
        self.db = db
        self.store = CredentialStore(db)
        self.gate = AccessGate(db)
        self.notifier = notifier or LoggingNotifier()

    def issue_recovery_code(self, email: str, device_id: str, ip_address: str | None = None) -> RecoveryIssueResult:
        decision = self.gate.evaluate_access(email, "", device_id, "recovery", ip_address=ip_address)
        if decision.status == "denied":
            return RecoveryIssueResult(
                status="denied",
                reason=decision.reason,
                message="Unable to start recovery for this account.",
            )
        if decision.status == "pending":
            return RecoveryIssueResult(
                status="pending",
                request_id=decision.request_id,
                reason=decision.reason,
                message="Approve this device from a signed-in device to continue.",
            )

        user = decision.user
        assert user is not None  # granted decisions always carry the user
        now = utcnow()
        self.db.execute(
            update(RecoveryCode)
            .where(
                RecoveryCode.user_id == user.user_id,
                RecoveryCode.redeemed_at.is_(None),
                RecoveryCode.revoked_at.is_(None),
            )
            .values(revoked_at=now)
            .execution_options(synchronize_session=False)
        )

        code = self._generate_code()
        record = RecoveryCode(
            user_id=user.user_id,
            email=user.email,
            code_hash=self._hash_code(user.email, code),
            device_id=device_id,
            failed_attempts=0,
            created_at=now,
            expires_at=now + timedelta(minutes=settings.recovery_code_ttl_minutes),
        )
        self.db.add(record)
        self.db.commit()

        try:
            self.notifier.send_recovery_code(user.email, code)
        except Exception:  # delivery is fire-and-forget
            logger.exception("Recovery code delivery failed for user %s", user.user_id)

        return RecoveryIssueResult(
            status="issued",
            code=code,
            expires_at=record.expires_at,
            message=f"Your verification code is {code}.",
        )

    def complete_recovery(self, email: str, code: str, new_secret: str) -> None:
        if len(new_secret or "") < settings.password_min_length:
            raise InvalidInputError("password_too_short")
        code = (code or "").strip()
        if len(code) != settings.recovery_code_length or not code.isdigit():
            raise InvalidInputError("invalid_verification_code")

        normalized = normalize_email(email)
        user = self.store.get_user_by_email(normalized)
        if user is None:
            raise InvalidInputError("invalid_verification_code")

        active = self.db.scalars(
            select(RecoveryCode)
            .where(
                RecoveryCode.user_id == user.user_id,
                RecoveryCode.redeemed_at.is_(None),
                RecoveryCode.revoked_at.is_(None),
            )
            .order_by(RecoveryCode.created_at.desc())
        ).all()
        code_hash = self._hash_code(user.email, code)
        record = next((item for item in active if hmac.compare_digest(item.code_hash, code_hash)), None)
        if record is None:
            self._register_failure(active)
            raise InvalidInputError("invalid_verification_code")

        now = utcnow()
        if record.expires_at <= now:
            record.revoked_at = now
            self.db.commit()
            raise ExpiredError("recovery_code_expired")

        result = self.db.execute(
            update(RecoveryCode)
            .where(
                RecoveryCode.code_id == record.code_id,
                RecoveryCode.redeemed_at.is_(None),
                RecoveryCode.revoked_at.is_(None),
            )
            .values(redeemed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Redeemed concurrently.
            self.db.rollback()
            raise InvalidInputError("invalid_verification_code")

        self.store.set_password(user, new_secret)
        self.db.commit()
        logger.info("Password reset via recovery code: user=%s", user.user_id)

    def _register_failure(self, active: list[RecoveryCode]) -> None:
        if not active:
            return
        now = utcnow()
        for record in active:
            record.failed_attempts += 1
            if record.failed_attempts >= settings.recovery_code_max_attempts:
                record.revoked_at = now
                logger.warning("Recovery code revoked after repeated failures: user=%s", record.user_id)
        self.db.commit()

    def _generate_code(self) -> str:
        length = settings.recovery_code_length
        return str(secrets.randbelow(10**length)).zfill(length)

    def _hash_code(self, email: str, code: str) -> str:
        secret = settings.session_hmac_secret.encode("utf-8")
        message = f"{normalize_email(email)}:{code.strip()}".encode("utf-8")
        return hmac.new(secret, msg=message, digestmod=hashlib.sha256).hexdigest()
