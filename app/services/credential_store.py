from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.models import TrustedDevice, User
from app.services.errors import DeviceTrustError, InvalidInputError
from app.services.passwords import hash_password

logger = logging.getLogger(__name__)

USER_ROLES = ("admin", "publisher", "subscriber")


class CredentialStore:
    """User records and their trusted-device sets.

    Mutating methods flush but never commit; the calling service owns the
    transaction so that a trust change commits together with whatever ledger
    change caused it.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_user(self, user_id: int) -> User | None:
        return self.db.get(User, user_id)

    def get_user_by_email(self, email: str) -> User | None:
        normalized = normalize_email(email)
        if not normalized:
            return None
        return self.db.scalar(select(User).where(func.lower(User.email) == normalized))

    def create_user(self, name: str, email: str, password: str, role: str = "subscriber") -> User:
        if role not in USER_ROLES:
            raise InvalidInputError("invalid_role")
        normalized = normalize_email(email)
        if not normalized:
            raise InvalidInputError("email_required")
        if self.get_user_by_email(normalized):
            raise DeviceTrustError("email_already_registered", status_code=409)

        # Publishers wait for an admin; subscribers and the first admin are active at once.
        user = User(
            name=name.strip(),
            email=normalized,
            password_hash=hash_password(password),
            role=role,
            status="pending" if role == "publisher" else "active",
            trust_version=0,
        )
        self.db.add(user)
        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            raise DeviceTrustError("email_already_registered", status_code=409) from exc
        return user

    def admin_exists(self) -> bool:
        return self.db.scalar(select(func.count()).select_from(User).where(User.role == "admin")) > 0

    def set_password(self, user: User, new_secret: str) -> None:
        user.password_hash = hash_password(new_secret)
        self.db.add(user)

    # ------------------------------------------------------------------ #
    # Trusted devices
    # ------------------------------------------------------------------ #
    def trusted_device_ids(self, user_id: int) -> list[str]:
        stmt = (
            select(TrustedDevice.device_id)
            .where(TrustedDevice.user_id == user_id)
            .order_by(TrustedDevice.trusted_id)
        )
        return list(self.db.scalars(stmt).all())

    def list_trusted_devices(self, user_id: int) -> list[TrustedDevice]:
        stmt = select(TrustedDevice).where(TrustedDevice.user_id == user_id).order_by(TrustedDevice.trusted_id)
        return list(self.db.scalars(stmt).all())

    def is_trusted(self, user_id: int, device_id: str) -> bool:
        return self._get_trusted(user_id, device_id) is not None

    def touch_device(self, user_id: int, device_id: str) -> None:
        self.db.execute(
            update(TrustedDevice)
            .where(TrustedDevice.user_id == user_id, TrustedDevice.device_id == device_id)
            .values(last_used_at=utcnow())
        )

    def bootstrap_trust(self, user: User, device_id: str) -> bool:
        """Trust ``device_id`` if the user has no trusted devices yet.

        Returns False when the set is non-empty or another writer changed it
        since ``user`` was read; the caller should then re-evaluate.
        """
        seen_version = user.trust_version
        count = self.db.scalar(
            select(func.count()).select_from(TrustedDevice).where(TrustedDevice.user_id == user.user_id)
        )
        if count:
            return False
        result = self.db.execute(
            update(User)
            .where(User.user_id == user.user_id, User.trust_version == seen_version)
            .values(trust_version=seen_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        self._insert_device(user.user_id, device_id, source="bootstrap", request_id=None)
        logger.info("Bootstrap trust granted: user=%s device=%s", user.user_id, device_id)
        return True

    def add_trusted_device(
        self,
        user_id: int,
        device_id: str,
        source: str,
        request_id: str | None = None,
    ) -> bool:
        """Set-union insert; returns False when the device was already trusted."""
        if self._get_trusted(user_id, device_id):
            return False
        self.db.execute(
            update(User)
            .where(User.user_id == user_id)
            .values(trust_version=User.trust_version + 1)
            .execution_options(synchronize_session=False)
        )
        return self._insert_device(user_id, device_id, source=source, request_id=request_id)

    def revoke_device(self, user_id: int, device_id: str) -> bool:
        result = self.db.execute(
            delete(TrustedDevice).where(TrustedDevice.user_id == user_id, TrustedDevice.device_id == device_id)
        )
        if not result.rowcount:
            return False
        self.db.execute(
            update(User)
            .where(User.user_id == user_id)
            .values(trust_version=User.trust_version + 1)
            .execution_options(synchronize_session=False)
        )
        logger.info("Trusted device revoked: user=%s device=%s", user_id, device_id)
        return True

    def _get_trusted(self, user_id: int, device_id: str) -> TrustedDevice | None:
        stmt = select(TrustedDevice).where(TrustedDevice.user_id == user_id, TrustedDevice.device_id == device_id)
        return self.db.scalar(stmt)

    def _insert_device(self, user_id: int, device_id: str, source: str, request_id: str | None) -> bool:
        now = utcnow()
        try:
            with self.db.begin_nested():
                self.db.add(
                    TrustedDevice(
                        user_id=user_id,
                        device_id=device_id,
                        source=source,
                        security_request_id=request_id,
                        trusted_at=now,
                        last_used_at=now,
                    )
                )
        except IntegrityError:
            # A concurrent writer trusted the same device first.
            return False
        return True


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
