"""Client-side login and recovery state machines.

Both orchestrators drive the same approval sub-flow: when the Access Gate
answers ``pending`` they poll the request status at a fixed interval until it
is approved, rejected or expired, the wait exceeds ``max_wait``, or the user
cancels. Cancelling only stops local polling; the request stays pending on the
server.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from enum import Enum

from app.client.backends import AccessOutcome, AuthBackend, AuthBackendError
from app.core.config import settings

logger = logging.getLogger(__name__)

MESSAGES = {
    "invalid_credentials": "Invalid credentials.",
    "account_blocked": "Account is blocked.",
    "account_pending": "Account is pending approval.",
    "role_mismatch": "This account cannot sign in to this portal.",
    "rejected": "Access Denied by User.",
    "expired": "The approval request expired. Please start again.",
    "recovery_unavailable": "Unable to start recovery for this account.",
    "invalid_verification_code": "Invalid verification code.",
    "recovery_code_expired": "The verification code expired. Please request a new one.",
    "password_too_short": f"New password must be at least {settings.password_min_length} characters.",
    "service_unavailable": "The service is unavailable. Please try again.",
}


def message_for(reason: str | None) -> str:
    return MESSAGES.get(reason or "", "Request failed. Please try again.")


class LoginState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    AWAITING_APPROVAL = "awaiting_approval"
    GRANTED = "granted"
    DENIED = "denied"
    EXPIRED = "expired"


class RecoveryState(str, Enum):
    EMAIL_ENTRY = "email_entry"
    DEVICE_APPROVAL_PENDING = "device_approval_pending"
    CODE_ENTRY = "code_entry"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


class _ApprovalPoller:
    def __init__(
        self,
        backend: AuthBackend,
        device_id: str,
        poll_interval: float | None = None,
        max_wait: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.backend = backend
        self.device_id = device_id
        self.poll_interval = settings.approval_poll_interval_sec if poll_interval is None else poll_interval
        self.max_wait = settings.approval_max_wait_sec if max_wait is None else max_wait
        self.clock = clock
        self.request_id: str | None = None
        self.error: str | None = None
        self._cancel = threading.Event()
        self._polling = False

    def cancel(self) -> None:
        self._cancel.set()

    def _poll(self) -> str:
        """Block until the pending request settles. Returns approved, rejected, expired or cancelled."""
        assert self.request_id is not None
        self._polling = True
        deadline = self.clock() + self.max_wait
        try:
            while True:
                if self._cancel.wait(self.poll_interval):
                    return "cancelled"
                try:
                    status = self.backend.check_status(self.request_id)
                except AuthBackendError as exc:
                    logger.warning("Polling %s failed (%s), retrying", self.request_id, exc.code)
                    status = "pending"
                if status in ("approved", "rejected", "expired"):
                    return status
                if status != "pending":
                    # Fail closed on anything unrecognised.
                    return "rejected"
                if self.clock() >= deadline:
                    return "expired"
        finally:
            self._polling = False


class LoginOrchestrator(_ApprovalPoller):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.state = LoginState.IDLE
        self.session_token: str | None = None
        self.role: str | None = None
        self._credentials: tuple[str, str, str | None] | None = None

    def login(self, email: str, password: str, portal: str | None = None) -> LoginState:
        """Submit and, if approval is needed, wait for it."""
        self.submit(email, password, portal)
        # The retry after an approval can land on a fresh pending request (e.g. the
        # device was revoked in between), so keep waiting until something settles.
        while self.state == LoginState.AWAITING_APPROVAL:
            self.wait_for_approval()
        return self.state

    def submit(self, email: str, password: str, portal: str | None = None) -> LoginState:
        self._cancel.clear()
        self._credentials = (email, password, portal)
        self.request_id = None
        self.session_token = None
        self.error = None
        self.state = LoginState.SUBMITTING
        self._apply(self._call_login())
        return self.state

    def wait_for_approval(self) -> LoginState:
        if self.state != LoginState.AWAITING_APPROVAL:
            return self.state
        result = self._poll()
        if result == "approved":
            # The device is now trusted, so the same credentials go straight through.
            self.state = LoginState.SUBMITTING
            self._apply(self._call_login())
        elif result == "rejected":
            self._finish(LoginState.DENIED, message_for("rejected"))
        elif result == "expired":
            self._finish(LoginState.EXPIRED, message_for("expired"))
        else:
            self._finish(LoginState.IDLE, None)
            self.request_id = None
        return self.state

    def cancel(self) -> None:
        super().cancel()
        if self.state == LoginState.AWAITING_APPROVAL and not self._polling:
            self._finish(LoginState.IDLE, None)
            self.request_id = None

    def _call_login(self) -> AccessOutcome:
        assert self._credentials is not None
        email, password, portal = self._credentials
        try:
            return self.backend.login(email, password, self.device_id, portal=portal)
        except AuthBackendError as exc:
            return AccessOutcome(status="denied", reason=exc.code)

    def _apply(self, outcome: AccessOutcome) -> None:
        if outcome.status == "granted":
            self.session_token = outcome.session_token
            self.role = outcome.role
            self._finish(LoginState.GRANTED, None)
        elif outcome.status == "pending":
            self.request_id = outcome.request_id
            self.state = LoginState.AWAITING_APPROVAL
        else:
            self._finish(LoginState.DENIED, message_for(outcome.reason))

    def _finish(self, state: LoginState, error: str | None) -> None:
        self.state = state
        self.error = error
        self._credentials = None


class RecoveryOrchestrator(_ApprovalPoller):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.state = RecoveryState.EMAIL_ENTRY
        self.email: str | None = None
        self.code: str | None = None
        self.message: str | None = None

    def start(self, email: str) -> RecoveryState:
        self._cancel.clear()
        self.email = email.strip()
        self.error = None
        self._request_code()
        return self.state

    def wait_for_approval(self) -> RecoveryState:
        if self.state != RecoveryState.DEVICE_APPROVAL_PENDING:
            return self.state
        result = self._poll()
        if result == "approved":
            self._request_code()
        elif result == "rejected":
            self.state = RecoveryState.FAILED
            self.error = message_for("rejected")
        elif result == "expired":
            self.state = RecoveryState.EXPIRED
            self.error = message_for("expired")
        else:
            self.state = RecoveryState.EMAIL_ENTRY
            self.request_id = None
        return self.state

    def submit_code(self, code: str, new_password: str) -> RecoveryState:
        if self.state != RecoveryState.CODE_ENTRY:
            return self.state
        assert self.email is not None
        self.error = None
        if len(new_password) < settings.password_min_length:
            self.error = message_for("password_too_short")
            return self.state
        try:
            outcome = self.backend.complete_recovery(self.email, code.strip(), new_password)
        except AuthBackendError as exc:
            self.error = message_for(exc.code)
            return self.state
        if outcome.ok:
            self.state = RecoveryState.COMPLETED
            self.message = "Password updated successfully! You can now login."
            self.code = None
        elif outcome.reason == "recovery_code_expired":
            self.state = RecoveryState.EXPIRED
            self.error = message_for(outcome.reason)
        else:
            self.error = message_for(outcome.reason)
        return self.state

    def cancel(self) -> None:
        super().cancel()
        if self.state == RecoveryState.DEVICE_APPROVAL_PENDING and not self._polling:
            self.state = RecoveryState.EMAIL_ENTRY
            self.request_id = None

    def _request_code(self) -> None:
        assert self.email is not None
        try:
            outcome = self.backend.initiate_recovery(self.email, self.device_id)
        except AuthBackendError as exc:
            self.state = RecoveryState.EMAIL_ENTRY
            self.error = message_for(exc.code)
            return
        if outcome.status == "issued":
            self.state = RecoveryState.CODE_ENTRY
            self.code = outcome.code
            self.message = outcome.message
        elif outcome.status == "pending":
            self.state = RecoveryState.DEVICE_APPROVAL_PENDING
            self.request_id = outcome.request_id
            self.message = outcome.message
        else:
            self.state = RecoveryState.EMAIL_ENTRY
            self.error = message_for(outcome.reason)
