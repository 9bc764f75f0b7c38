from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal, Protocol

import requests
from sqlalchemy.orm import Session

from app.core.config import settings
from app.services.errors import DeviceTrustError
from app.services.login_service import LoginService
from app.services.recovery_codes import RecoveryCodeIssuer, RecoveryCodeNotifier
from app.services.security_ledger import SecurityRequestLedger

logger = logging.getLogger(__name__)


class AuthBackendError(Exception):
    """Transport-level failure talking to the auth service."""

    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(code)


@dataclass(slots=True)
class AccessOutcome:
    status: Literal["granted", "denied", "pending"]
    reason: str | None = None
    request_id: str | None = None
    session_token: str | None = None
    user_id: int | None = None
    role: str | None = None


@dataclass(slots=True)
class RecoveryOutcome:
    status: Literal["issued", "denied", "pending"]
    message: str = ""
    code: str | None = None
    request_id: str | None = None
    reason: str | None = None


@dataclass(slots=True)
class CompletionOutcome:
    ok: bool
    reason: str | None = None


class AuthBackend(Protocol):
    def login(self, email: str, password: str, device_id: str, portal: str | None = None) -> AccessOutcome: ...

    def check_status(self, request_id: str) -> str: ...

    def initiate_recovery(self, email: str, device_id: str) -> RecoveryOutcome: ...

    def complete_recovery(self, email: str, code: str, new_password: str) -> CompletionOutcome: ...


class LocalAuthBackend:
    """Runs the services in-process, one database session per call."""

    def __init__(self, session_factory: Callable[[], Session], notifier: RecoveryCodeNotifier | None = None) -> None:
        self.session_factory = session_factory
        self.notifier = notifier

    def login(self, email: str, password: str, device_id: str, portal: str | None = None) -> AccessOutcome:
        with self.session_factory() as db:
            try:
                result = LoginService(db).login(email, password, device_id, portal=portal)
            except DeviceTrustError as exc:
                return AccessOutcome(status="denied", reason=exc.code)
            decision = result.decision
            if decision.status != "granted":
                return AccessOutcome(status=decision.status, reason=decision.reason, request_id=decision.request_id)
            assert result.token is not None
            return AccessOutcome(
                status="granted",
                session_token=result.token.token,
                user_id=result.token.payload["uid"],
                role=result.token.payload["role"],
            )

    def check_status(self, request_id: str) -> str:
        with self.session_factory() as db:
            return SecurityRequestLedger(db).check_status(request_id)

    def initiate_recovery(self, email: str, device_id: str) -> RecoveryOutcome:
        with self.session_factory() as db:
            try:
                result = RecoveryCodeIssuer(db, notifier=self.notifier).issue_recovery_code(email, device_id)
            except DeviceTrustError as exc:
                return RecoveryOutcome(status="denied", reason=exc.code)
            return RecoveryOutcome(
                status=result.status,
                message=result.message,
                code=result.code,
                request_id=result.request_id,
                reason=result.reason,
            )

    def complete_recovery(self, email: str, code: str, new_password: str) -> CompletionOutcome:
        with self.session_factory() as db:
            try:
                RecoveryCodeIssuer(db, notifier=self.notifier).complete_recovery(email, code, new_password)
            except DeviceTrustError as exc:
                return CompletionOutcome(ok=False, reason=exc.code)
            return CompletionOutcome(ok=True)


class HttpAuthBackend:
    """Talks to the `/v1` HTTP API."""

    def __init__(self, base_url: str, session: requests.Session | None = None, timeout: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def login(self, email: str, password: str, device_id: str, portal: str | None = None) -> AccessOutcome:
        body: dict[str, Any] = {"email": email, "password": password}
        if portal:
            body["portal"] = portal
        status_code, data = self._post("/v1/auth/login", body, device_id=device_id)
        if status_code != 200:
            return AccessOutcome(status="denied", reason=_detail(data))
        if data.get("status") == "pending":
            return AccessOutcome(status="pending", request_id=data.get("request_id"))
        user = data.get("user") or {}
        return AccessOutcome(
            status="granted",
            session_token=data.get("session_token"),
            user_id=user.get("user_id"),
            role=user.get("role"),
        )

    def check_status(self, request_id: str) -> str:
        try:
            resp = self.session.get(
                f"{self.base_url}/v1/auth/requests/{request_id}/status",
                timeout=self.timeout,
            )
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Status poll failed for %s: %s", request_id, exc)
            raise AuthBackendError("service_unavailable") from exc
        return str(payload.get("status") or "rejected")

    def initiate_recovery(self, email: str, device_id: str) -> RecoveryOutcome:
        status_code, data = self._post("/v1/recovery/initiate", {"email": email}, device_id=device_id)
        if status_code != 200:
            return RecoveryOutcome(status="denied", reason=_detail(data))
        return RecoveryOutcome(
            status=data.get("status", "denied"),
            message=data.get("message", ""),
            code=data.get("code"),
            request_id=data.get("request_id"),
        )

    def complete_recovery(self, email: str, code: str, new_password: str) -> CompletionOutcome:
        body = {"email": email, "code": code, "new_password": new_password}
        status_code, data = self._post("/v1/recovery/complete", body)
        if status_code != 200:
            return CompletionOutcome(ok=False, reason=_detail(data))
        return CompletionOutcome(ok=True)

    def _post(self, path: str, body: dict[str, Any], device_id: str | None = None) -> tuple[int, dict[str, Any]]:
        headers = {settings.device_id_header: device_id} if device_id else {}
        try:
            resp = self.session.post(f"{self.base_url}{path}", json=body, headers=headers, timeout=self.timeout)
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Request to %s failed: %s", path, exc)
            raise AuthBackendError("service_unavailable") from exc
        return resp.status_code, data if isinstance(data, dict) else {}


def _detail(data: dict[str, Any]) -> str:
    detail = data.get("detail")
    # FastAPI validation errors arrive as a list of error objects.
    return detail if isinstance(detail, str) else "invalid_input"
