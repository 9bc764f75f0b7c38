"""Client-side pieces of the device-trust flow: device identity, service backends and orchestrators."""

from .backends import AuthBackend, AuthBackendError, HttpAuthBackend, LocalAuthBackend
from .device_identity import DeviceIdentityProvider, generate_device_id
from .orchestrators import LoginOrchestrator, LoginState, RecoveryOrchestrator, RecoveryState

__all__ = [
    "AuthBackend",
    "AuthBackendError",
    "HttpAuthBackend",
    "LocalAuthBackend",
    "DeviceIdentityProvider",
    "generate_device_id",
    "LoginOrchestrator",
    "LoginState",
    "RecoveryOrchestrator",
    "RecoveryState",
]
