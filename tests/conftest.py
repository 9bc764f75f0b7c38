from __future__ import annotations

from collections.abc import Callable, Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.deps import SessionAuthContext
from app.db.base import Base
from app.db.models import User
from app.services.credential_store import CredentialStore
from app.services.session_tokens import issue_session_token


@pytest.fixture()
def engine() -> Iterator[Engine]:
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine)


@pytest.fixture()
def db_session(session_factory: sessionmaker) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., User]:
    def _make_user(
        email: str = "u1@example.com",
        password: str = "secret123",
        role: str = "subscriber",
        name: str = "User One",
        status: str | None = None,
    ) -> User:
        user = CredentialStore(db_session).create_user(name, email, password, role=role)
        if status:
            user.status = status
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def make_auth(db_session: Session) -> Callable[[User, str], SessionAuthContext]:
    def _make_auth(user: User, device_id: str) -> SessionAuthContext:
        issued = issue_session_token(user.user_id, device_id, user.role)
        trusted = CredentialStore(db_session).trusted_device_ids(user.user_id)
        return SessionAuthContext(user=user, token=issued.payload, trusted_devices=trusted)

    return _make_auth
