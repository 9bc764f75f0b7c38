from __future__ import annotations

import threading
from datetime import timedelta

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker

from app.db.base import Base
from app.db.models import SecurityRequest
from app.services.access_gate import AccessGate
from app.services.credential_store import CredentialStore, utcnow
from app.services.security_ledger import SecurityRequestLedger


def _trusted_user(db: Session, make_user):
    user = make_user()
    CredentialStore(db).add_trusted_device(user.user_id, "DEV-AAA", source="bootstrap")
    db.commit()
    return user


def _age(db: Session, request_id: str, seconds: int = 1) -> None:
    request = db.get(SecurityRequest, request_id)
    request.expires_at = utcnow() - timedelta(seconds=seconds)
    db.commit()


def test_unknown_request_reads_as_rejected(db_session: Session) -> None:
    assert SecurityRequestLedger(db_session).check_status("does-not-exist") == "rejected"
    assert SecurityRequestLedger(db_session).check_status("") == "rejected"


def test_open_request_is_pending(db_session: Session, make_user) -> None:
    user = _trusted_user(db_session, make_user)
    ledger = SecurityRequestLedger(db_session)

    request, created = ledger.open_request(user, "DEV-BBB", "login", ip_address="10.0.0.1")

    assert created is True
    assert ledger.check_status(request.request_id) == "pending"
    assert ledger.find_pending(user.user_id, "DEV-BBB").request_id == request.request_id
    assert [item.request_id for item in ledger.list_pending(user.user_id)] == [request.request_id]


def test_stale_request_expires_on_read(db_session: Session, make_user) -> None:
    user = _trusted_user(db_session, make_user)
    ledger = SecurityRequestLedger(db_session)
    request, _ = ledger.open_request(user, "DEV-BBB", "login")
    _age(db_session, request.request_id)

    assert ledger.check_status(request.request_id) == "expired"
    assert ledger.find_pending(user.user_id, "DEV-BBB") is None
    assert ledger.list_pending(user.user_id) == []

    refreshed = db_session.get(SecurityRequest, request.request_id)
    assert refreshed.pending_key is None


def test_expired_request_makes_room_for_a_new_one(db_session: Session, make_user) -> None:
    user = _trusted_user(db_session, make_user)
    ledger = SecurityRequestLedger(db_session)
    old, _ = ledger.open_request(user, "DEV-BBB", "login")
    _age(db_session, old.request_id)

    new, created = ledger.open_request(user, "DEV-BBB", "login")

    assert created is True
    assert new.request_id != old.request_id
    assert ledger.check_status(old.request_id) == "expired"


def test_expire_stale_sweeps_overdue_requests(db_session: Session, make_user) -> None:
    user = _trusted_user(db_session, make_user)
    ledger = SecurityRequestLedger(db_session)
    stale, _ = ledger.open_request(user, "DEV-BBB", "login")
    fresh, _ = ledger.open_request(user, "DEV-CCC", "recovery")
    _age(db_session, stale.request_id)

    assert ledger.expire_stale() == 1
    assert ledger.check_status(stale.request_id) == "expired"
    assert ledger.check_status(fresh.request_id) == "pending"


def test_racing_insert_collapses_onto_existing_request(db_session: Session, make_user, monkeypatch) -> None:
    user = _trusted_user(db_session, make_user)
    ledger = SecurityRequestLedger(db_session)
    first, _ = ledger.open_request(user, "DEV-BBB", "login")

    # Simulate a writer that checked for a pending request before the first insert committed.
    monkeypatch.setattr(ledger, "find_pending", lambda user_id, device_id: None)
    second, created = ledger.open_request(user, "DEV-BBB", "login")

    assert created is False
    assert second.request_id == first.request_id
    total = db_session.scalar(select(func.count()).select_from(SecurityRequest))
    assert total == 1


def test_concurrent_attempts_create_one_request(tmp_path) -> None:
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        future=True,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine)

    with factory() as db:
        store = CredentialStore(db)
        user = store.create_user("User One", "u1@example.com", "secret123")
        db.flush()
        store.add_trusted_device(user.user_id, "DEV-AAA", source="bootstrap")
        db.commit()

    barrier = threading.Barrier(2)
    results: list[str | None] = []
    errors: list[BaseException] = []

    def attempt() -> None:
        try:
            with factory() as db:
                barrier.wait()
                decision = AccessGate(db).evaluate_access("u1@example.com", "secret123", "DEV-BBB", "login")
                results.append(decision.request_id)
        except BaseException as exc:  # surfaced by the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=attempt) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert len(results) == 2
    assert results[0] == results[1]
    with factory() as db:
        total = db.scalar(select(func.count()).select_from(SecurityRequest))
    assert total == 1
    engine.dispose()
