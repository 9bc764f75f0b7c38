from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.services.access_gate import AccessDecision, AccessGate
from app.services.credential_store import CredentialStore
from app.services.session_tokens import IssuedToken, issue_session_token


@dataclass(slots=True)
class LoginResult:
    decision: AccessDecision
    token: IssuedToken | None = None
    trusted_devices: list[str] | None = None


class LoginService:
    """Access Gate check followed by session issuance for granted logins."""

    def __init__(self, db: Session) -> None:
        self.db = db
        self.gate = AccessGate(db)

    def login(
        self,
        email: str,
        password: str,
        device_id: str,
        portal: str | None = None,
        ip_address: str | None = None,
    ) -> LoginResult:
        decision = self.gate.evaluate_access(email, password, device_id, "login", ip_address=ip_address)
        if not decision.granted:
            return LoginResult(decision=decision)

        user = decision.user
        assert user is not None
        # Admins may sign in through any portal; everyone else only through their own.
        if portal and user.role != portal and user.role != "admin":
            return LoginResult(decision=AccessDecision(status="denied", reason="role_mismatch"))

        token = issue_session_token(user.user_id, device_id.strip(), user.role)
        trusted = CredentialStore(self.db).trusted_device_ids(user.user_id)
        return LoginResult(decision=decision, token=token, trusted_devices=trusted)
