from __future__ import annotations


class DeviceTrustError(Exception):
    status_code = 400

    def __init__(self, code: str, status_code: int | None = None) -> None:
        self.code = code
        if status_code is not None:
            self.status_code = status_code
        super().__init__(code)


class NotFoundError(DeviceTrustError):
    status_code = 404


class UnauthorizedError(DeviceTrustError):
    status_code = 403


class InvalidInputError(DeviceTrustError):
    status_code = 422


class ExpiredError(DeviceTrustError):
    """A security request or recovery code is past its deadline; the flow must restart."""

    status_code = 410
