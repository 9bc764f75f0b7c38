from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import TIMESTAMP, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.types import BIGINT

if TYPE_CHECKING:
    from app.db.models.user import User


class TrustedDevice(Base):
    __tablename__ = "trusted_devices"
    __table_args__ = (UniqueConstraint("user_id", "device_id", name="uq_trusted_devices_user_device"),)

    trusted_id: Mapped[int] = mapped_column(BIGINT, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BIGINT, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True
    )
    device_id: Mapped[str] = mapped_column(String(64), nullable=False)
    source: Mapped[str] = mapped_column(String(16), nullable=False)  # bootstrap | approval
    security_request_id: Mapped[str | None] = mapped_column(String(32))
    trusted_at: Mapped[datetime | None] = mapped_column(TIMESTAMP, server_default=func.now())
    last_used_at: Mapped[datetime | None] = mapped_column(TIMESTAMP)

    user: Mapped[User] = relationship(back_populates="trusted_devices")
