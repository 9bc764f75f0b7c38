from datetime import datetime

from sqlalchemy import TIMESTAMP, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.types import BIGINT


class SecurityRequest(Base):
    __tablename__ = "security_requests"
    __table_args__ = (Index("ix_security_requests_user_status", "user_id", "status"),)

    request_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    user_id: Mapped[int] = mapped_column(
        BIGINT, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    user_name: Mapped[str | None] = mapped_column(String(100))
    user_email: Mapped[str | None] = mapped_column(String(255))
    device_id: Mapped[str] = mapped_column(String(64), nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)  # login | recovery
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    # "{user_id}:{device_id}" while pending, NULL once terminal. The unique index
    # allows only one pending request per (user, device).
    pending_key: Mapped[str | None] = mapped_column(String(96), unique=True)
    ip_address: Mapped[str | None] = mapped_column(String(45))
    created_at: Mapped[datetime | None] = mapped_column(TIMESTAMP, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP, nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(TIMESTAMP)
    resolved_by: Mapped[int | None] = mapped_column(BIGINT)
