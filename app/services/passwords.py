from __future__ import annotations

from passlib.context import CryptContext

from app.core.config import settings

pwd_context = CryptContext(schemes=settings.password_hash_schemes, deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str | None) -> bool:
    if not plain or not hashed:
        return False
    return pwd_context.verify(plain, hashed)


def burn_password_check() -> None:
    # Equalises timing between unknown-user and wrong-password denials.
    pwd_context.dummy_verify()
