from __future__ import annotations

import logging
import uuid
from datetime import timedelta

from sqlalchemy import desc, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.cache import cache_terminal_status, get_cached_status
from app.core.config import settings
from app.db.models import SecurityRequest, User
from app.services.credential_store import utcnow
from app.services.errors import InvalidInputError

logger = logging.getLogger(__name__)

REQUEST_KINDS = ("login", "recovery")
TERMINAL_STATUSES = frozenset({"approved", "rejected", "expired"})


def pending_key(user_id: int, device_id: str) -> str:
    return f"{user_id}:{device_id}"


class SecurityRequestLedger:
    """Append-mostly log of cross-device approval requests.

    ``pending_key`` is unique and only set while a request is pending, so the
    database itself refuses a second pending request for the same
    (user, device) pair. Terminal rows are kept as an audit trail.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, request_id: str) -> SecurityRequest | None:
        if not request_id:
            return None
        return self.db.get(SecurityRequest, request_id)

    def find_pending(self, user_id: int, device_id: str) -> SecurityRequest | None:
        stmt = select(SecurityRequest).where(SecurityRequest.pending_key == pending_key(user_id, device_id))
        request = self.db.scalar(stmt)
        if request is None or self.expire_if_stale(request):
            return None
        return request

    def open_request(
        self,
        user: User,
        device_id: str,
        kind: str,
        ip_address: str | None = None,
    ) -> tuple[SecurityRequest, bool]:
        """Return the pending request for (user, device), creating it if needed.

        The boolean is True only when this call inserted the row. Commits.
        """
        if kind not in REQUEST_KINDS:
            raise InvalidInputError("invalid_request_kind")

        existing = self.find_pending(user.user_id, device_id)
        if existing is not None:
            self.db.commit()
            return existing, False

        now = utcnow()
        key = pending_key(user.user_id, device_id)
        request = SecurityRequest(
            request_id=uuid.uuid4().hex,
            user_id=user.user_id,
            user_name=user.name,
            user_email=user.email,
            device_id=device_id,
            kind=kind,
            status="pending",
            pending_key=key,
            ip_address=ip_address,
            created_at=now,
            expires_at=now + timedelta(seconds=settings.security_request_ttl_seconds),
        )
        self.db.add(request)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            winner = self.db.scalar(select(SecurityRequest).where(SecurityRequest.pending_key == key))
            if winner is None:
                raise
            logger.debug("Concurrent request for %s collapsed onto %s", key, winner.request_id)
            return winner, False

        logger.info(
            "Security request opened: id=%s user=%s device=%s kind=%s",
            request.request_id,
            user.user_id,
            device_id,
            kind,
        )
        return request, True

    def check_status(self, request_id: str) -> str:
        """Polling contract. Unknown ids read as ``rejected`` so clients never wait forever."""
        cached = get_cached_status(request_id)
        if cached in TERMINAL_STATUSES:
            return cached

        request = self.get(request_id)
        if request is None:
            return "rejected"
        if self.expire_if_stale(request):
            self.db.commit()
        if request.status in TERMINAL_STATUSES:
            cache_terminal_status(request.request_id, request.status)
        return request.status

    def resolve(self, request: SecurityRequest, outcome: str, resolved_by: int | None) -> bool:
        """Compare-and-swap ``pending -> outcome``. Does not commit.

        Returns False when the request was no longer pending or already past
        its deadline; nothing is written in that case.
        """
        if outcome not in ("approved", "rejected"):
            raise InvalidInputError("invalid_outcome")
        now = utcnow()
        result = self.db.execute(
            update(SecurityRequest)
            .where(
                SecurityRequest.request_id == request.request_id,
                SecurityRequest.status == "pending",
                SecurityRequest.expires_at > now,
            )
            .values(status=outcome, pending_key=None, resolved_at=now, resolved_by=resolved_by)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def expire_if_stale(self, request: SecurityRequest) -> bool:
        """Move an overdue pending request to ``expired``. Does not commit."""
        if request.status != "pending":
            return False
        now = utcnow()
        if request.expires_at > now:
            return False
        result = self.db.execute(
            update(SecurityRequest)
            .where(SecurityRequest.request_id == request.request_id, SecurityRequest.status == "pending")
            .values(status="expired", pending_key=None, resolved_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.refresh(request)
        if result.rowcount:
            logger.info("Security request expired: id=%s", request.request_id)
        return request.status == "expired"

    def expire_stale(self) -> int:
        now = utcnow()
        result = self.db.execute(
            update(SecurityRequest)
            .where(SecurityRequest.status == "pending", SecurityRequest.expires_at <= now)
            .values(status="expired", pending_key=None, resolved_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount:
            logger.info("Expired %s stale security requests", result.rowcount)
        return result.rowcount

    def list_pending(self, user_id: int | None = None) -> list[SecurityRequest]:
        stmt = select(SecurityRequest).where(
            SecurityRequest.status == "pending",
            SecurityRequest.expires_at > utcnow(),
        )
        if user_id is not None:
            stmt = stmt.where(SecurityRequest.user_id == user_id)
        stmt = stmt.order_by(desc(SecurityRequest.created_at))
        return list(self.db.scalars(stmt).all())
