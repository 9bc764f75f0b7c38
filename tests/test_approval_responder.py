from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.db.models import SecurityRequest, TrustedDevice
from app.services.access_gate import AccessGate
from app.services.approval_responder import ApprovalResponder
from app.services.credential_store import CredentialStore, utcnow
from app.services.errors import ExpiredError, InvalidInputError, NotFoundError, UnauthorizedError
from app.services.security_ledger import SecurityRequestLedger


@pytest.fixture()
def pending_setup(db_session: Session, make_user):
    user = make_user()
    gate = AccessGate(db_session)
    assert gate.evaluate_access("u1@example.com", "secret123", "DEV-AAA", "login").status == "granted"
    decision = gate.evaluate_access("u1@example.com", "secret123", "DEV-BBB", "login")
    assert decision.status == "pending"
    return user, decision.request_id


def _device_rows(db: Session, user_id: int, device_id: str) -> int:
    return db.scalar(
        select(func.count())
        .select_from(TrustedDevice)
        .where(TrustedDevice.user_id == user_id, TrustedDevice.device_id == device_id)
    )


def test_owner_approval_trusts_device(db_session: Session, pending_setup, make_auth) -> None:
    user, request_id = pending_setup
    auth = make_auth(user, "DEV-AAA")

    result = ApprovalResponder(db_session).respond(request_id, "approve", auth)

    assert result.changed is True
    assert result.device_added is True
    assert result.request.status == "approved"
    assert CredentialStore(db_session).trusted_device_ids(user.user_id) == ["DEV-AAA", "DEV-BBB"]
    # The approving session sees the new device without re-reading.
    assert auth.trusted_devices == ["DEV-AAA", "DEV-BBB"]


def test_login_after_approval_is_granted(db_session: Session, pending_setup, make_auth) -> None:
    user, request_id = pending_setup
    ApprovalResponder(db_session).respond(request_id, "approve", make_auth(user, "DEV-AAA"))

    decision = AccessGate(db_session).evaluate_access("u1@example.com", "secret123", "DEV-BBB", "login")

    assert decision.status == "granted"
    pending = db_session.scalar(
        select(func.count()).select_from(SecurityRequest).where(SecurityRequest.status == "pending")
    )
    assert pending == 0


def test_repeated_approval_never_duplicates_device(db_session: Session, pending_setup, make_auth) -> None:
    user, request_id = pending_setup
    responder = ApprovalResponder(db_session)
    auth = make_auth(user, "DEV-AAA")

    responder.respond(request_id, "approve", auth)
    again = responder.respond(request_id, "approve", auth)

    assert again.changed is False
    assert again.request.status == "approved"
    assert _device_rows(db_session, user.user_id, "DEV-BBB") == 1


def test_rejection_is_final(db_session: Session, pending_setup, make_auth) -> None:
    user, request_id = pending_setup
    responder = ApprovalResponder(db_session)
    auth = make_auth(user, "DEV-AAA")

    result = responder.respond(request_id, "reject", auth)
    late_approval = responder.respond(request_id, "approve", auth)

    assert result.changed is True
    assert late_approval.changed is False
    ledger = SecurityRequestLedger(db_session)
    for _ in range(3):
        assert ledger.check_status(request_id) == "rejected"
    assert _device_rows(db_session, user.user_id, "DEV-BBB") == 0


def test_stranger_cannot_approve(db_session: Session, pending_setup, make_user, make_auth) -> None:
    user, request_id = pending_setup
    stranger = make_user(email="other@example.com")
    CredentialStore(db_session).add_trusted_device(stranger.user_id, "DEV-ZZZ", source="bootstrap")
    db_session.commit()

    with pytest.raises(UnauthorizedError) as exc:
        ApprovalResponder(db_session).respond(request_id, "approve", make_auth(stranger, "DEV-ZZZ"))

    # Indistinguishable from an unknown request id.
    assert exc.value.code == "security_request_not_found"
    assert exc.value.status_code == 404
    assert SecurityRequestLedger(db_session).check_status(request_id) == "pending"
    assert _device_rows(db_session, user.user_id, "DEV-BBB") == 0


def test_admin_can_approve_for_another_user(db_session: Session, pending_setup, make_user, make_auth) -> None:
    user, request_id = pending_setup
    admin = make_user(email="chief@example.com", role="admin")

    result = ApprovalResponder(db_session).respond(request_id, "approve", make_auth(admin, "DEV-ADM"))

    assert result.changed is True
    assert result.request.resolved_by == admin.user_id
    assert _device_rows(db_session, user.user_id, "DEV-BBB") == 1


def test_late_approval_of_expired_request_is_refused(db_session: Session, pending_setup, make_auth) -> None:
    user, request_id = pending_setup
    request = db_session.get(SecurityRequest, request_id)
    request.expires_at = utcnow() - timedelta(seconds=5)
    db_session.commit()

    with pytest.raises(ExpiredError):
        ApprovalResponder(db_session).respond(request_id, "approve", make_auth(user, "DEV-AAA"))

    assert SecurityRequestLedger(db_session).check_status(request_id) == "expired"
    assert _device_rows(db_session, user.user_id, "DEV-BBB") == 0


def test_unknown_request_and_action(db_session: Session, pending_setup, make_auth) -> None:
    user, request_id = pending_setup
    auth = make_auth(user, "DEV-AAA")
    responder = ApprovalResponder(db_session)

    with pytest.raises(NotFoundError):
        responder.respond("missing", "approve", auth)
    with pytest.raises(InvalidInputError):
        responder.respond(request_id, "maybe", auth)  # type: ignore[arg-type]


def test_approval_after_poll_expired_the_request_is_refused(db_session: Session, pending_setup, make_auth) -> None:
    user, request_id = pending_setup
    request = db_session.get(SecurityRequest, request_id)
    request.expires_at = utcnow() - timedelta(seconds=5)
    db_session.commit()
    # The waiting device polls first and moves the request to expired.
    assert SecurityRequestLedger(db_session).check_status(request_id) == "expired"

    with pytest.raises(ExpiredError) as exc:
        ApprovalResponder(db_session).respond(request_id, "approve", make_auth(user, "DEV-AAA"))

    assert exc.value.code == "security_request_expired"
    assert exc.value.status_code == 410
    assert _device_rows(db_session, user.user_id, "DEV-BBB") == 0


def test_sweep_expired_request_cannot_be_rejected_either(db_session: Session, pending_setup, make_auth) -> None:
    user, request_id = pending_setup
    request = db_session.get(SecurityRequest, request_id)
    request.expires_at = utcnow() - timedelta(seconds=5)
    db_session.commit()
    assert SecurityRequestLedger(db_session).expire_stale() == 1

    with pytest.raises(ExpiredError):
        ApprovalResponder(db_session).respond(request_id, "reject", make_auth(user, "DEV-AAA"))
    assert SecurityRequestLedger(db_session).check_status(request_id) == "expired"
