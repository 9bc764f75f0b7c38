from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import RecoveryCode
from app.services.access_gate import AccessGate
from app.services.credential_store import CredentialStore, utcnow
from app.services.errors import ExpiredError, InvalidInputError
from app.services.recovery_codes import RecoveryCodeIssuer


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def send_recovery_code(self, email: str, code: str) -> None:
        self.sent.append((email, code))


class BrokenNotifier:
    def send_recovery_code(self, email: str, code: str) -> None:
        raise RuntimeError("smtp down")


def _other_code(code: str) -> str:
    return "000000" if code != "000000" else "111111"


def _login(db: Session, password: str, device_id: str = "DEV-AAA") -> str:
    return AccessGate(db).evaluate_access("u1@example.com", password, device_id, "login").status


@pytest.fixture()
def trusted_user(db_session: Session, make_user):
    user = make_user()
    CredentialStore(db_session).add_trusted_device(user.user_id, "DEV-AAA", source="bootstrap")
    db_session.commit()
    return user


def test_trusted_device_resets_password(db_session: Session, trusted_user) -> None:
    notifier = RecordingNotifier()
    issuer = RecoveryCodeIssuer(db_session, notifier=notifier)

    issued = issuer.issue_recovery_code("u1@example.com", "DEV-AAA")

    assert issued.status == "issued"
    assert issued.code is not None and len(issued.code) == 6 and issued.code.isdigit()
    assert notifier.sent == [("u1@example.com", issued.code)]

    issuer.complete_recovery("u1@example.com", issued.code, "newpass99")

    assert _login(db_session, "newpass99") == "granted"
    assert _login(db_session, "secret123") == "denied"


def test_code_is_stored_hashed(db_session: Session, trusted_user) -> None:
    issued = RecoveryCodeIssuer(db_session).issue_recovery_code("u1@example.com", "DEV-AAA")
    record = db_session.scalar(select(RecoveryCode).where(RecoveryCode.user_id == trusted_user.user_id))

    assert record.code_hash != issued.code
    assert issued.code not in record.code_hash


def test_code_is_single_use(db_session: Session, trusted_user) -> None:
    issuer = RecoveryCodeIssuer(db_session)
    issued = issuer.issue_recovery_code("u1@example.com", "DEV-AAA")
    issuer.complete_recovery("u1@example.com", issued.code, "newpass99")

    with pytest.raises(InvalidInputError) as exc:
        issuer.complete_recovery("u1@example.com", issued.code, "another99")

    assert exc.value.code == "invalid_verification_code"
    assert _login(db_session, "newpass99") == "granted"


def test_wrong_code_changes_nothing(db_session: Session, trusted_user) -> None:
    issuer = RecoveryCodeIssuer(db_session)
    issued = issuer.issue_recovery_code("u1@example.com", "DEV-AAA")

    with pytest.raises(InvalidInputError) as exc:
        issuer.complete_recovery("u1@example.com", _other_code(issued.code), "newpass99")

    assert exc.value.code == "invalid_verification_code"
    assert _login(db_session, "secret123") == "granted"
    # The right code still works afterwards.
    issuer.complete_recovery("u1@example.com", issued.code, "newpass99")


@pytest.mark.parametrize("code", ["", "12345", "abcdef", "1234567"])
def test_malformed_code_is_rejected(db_session: Session, trusted_user, code: str) -> None:
    with pytest.raises(InvalidInputError) as exc:
        RecoveryCodeIssuer(db_session).complete_recovery("u1@example.com", code, "newpass99")
    assert exc.value.code == "invalid_verification_code"


def test_short_password_is_rejected_before_code_check(db_session: Session, trusted_user) -> None:
    issuer = RecoveryCodeIssuer(db_session)
    issued = issuer.issue_recovery_code("u1@example.com", "DEV-AAA")

    with pytest.raises(InvalidInputError) as exc:
        issuer.complete_recovery("u1@example.com", issued.code, "abc")

    assert exc.value.code == "password_too_short"
    issuer.complete_recovery("u1@example.com", issued.code, "longenough")


def test_expired_code_is_refused(db_session: Session, trusted_user) -> None:
    issuer = RecoveryCodeIssuer(db_session)
    issued = issuer.issue_recovery_code("u1@example.com", "DEV-AAA")
    record = db_session.scalar(select(RecoveryCode).where(RecoveryCode.user_id == trusted_user.user_id))
    record.expires_at = utcnow() - timedelta(minutes=1)
    db_session.commit()

    with pytest.raises(ExpiredError):
        issuer.complete_recovery("u1@example.com", issued.code, "newpass99")

    assert _login(db_session, "secret123") == "granted"


def test_new_code_revokes_previous(db_session: Session, trusted_user) -> None:
    issuer = RecoveryCodeIssuer(db_session)
    first = issuer.issue_recovery_code("u1@example.com", "DEV-AAA")
    second = issuer.issue_recovery_code("u1@example.com", "DEV-AAA")

    if first.code != second.code:
        with pytest.raises(InvalidInputError):
            issuer.complete_recovery("u1@example.com", first.code, "newpass99")
    issuer.complete_recovery("u1@example.com", second.code, "newpass99")
    assert _login(db_session, "newpass99") == "granted"


def test_repeated_failures_revoke_the_code(db_session: Session, trusted_user) -> None:
    issuer = RecoveryCodeIssuer(db_session)
    issued = issuer.issue_recovery_code("u1@example.com", "DEV-AAA")
    wrong = _other_code(issued.code)

    for _ in range(5):
        with pytest.raises(InvalidInputError):
            issuer.complete_recovery("u1@example.com", wrong, "newpass99")

    with pytest.raises(InvalidInputError):
        issuer.complete_recovery("u1@example.com", issued.code, "newpass99")
    record = db_session.scalar(select(RecoveryCode).where(RecoveryCode.user_id == trusted_user.user_id))
    assert record.revoked_at is not None


def test_untrusted_device_needs_approval_first(db_session: Session, trusted_user) -> None:
    result = RecoveryCodeIssuer(db_session).issue_recovery_code("u1@example.com", "DEV-NEW")

    assert result.status == "pending"
    assert result.request_id
    assert result.code is None
    assert db_session.scalar(select(RecoveryCode)) is None


def test_unknown_email_is_denied(db_session: Session) -> None:
    result = RecoveryCodeIssuer(db_session).issue_recovery_code("ghost@example.com", "DEV-AAA")

    assert result.status == "denied"
    assert result.reason == "recovery_unavailable"


def test_delivery_failure_does_not_block_issuance(db_session: Session, trusted_user) -> None:
    issued = RecoveryCodeIssuer(db_session, notifier=BrokenNotifier()).issue_recovery_code("u1@example.com", "DEV-AAA")

    assert issued.status == "issued"
    assert issued.code is not None
