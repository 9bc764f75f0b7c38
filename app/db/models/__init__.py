from app.db.models.recovery_code import RecoveryCode
from app.db.models.security_request import SecurityRequest
from app.db.models.trusted_device import TrustedDevice
from app.db.models.user import User
from app.db.base import Base

__all__ = [
    "Base",
    "User",
    "TrustedDevice",
    "SecurityRequest",
    "RecoveryCode",
]
