from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import TIMESTAMP, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.types import BIGINT

if TYPE_CHECKING:
    from app.db.models.trusted_device import TrustedDevice


class User(Base):
    __tablename__ = "users"

    user_id: Mapped[int] = mapped_column(BIGINT, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="subscriber")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    # Bumped on every trusted-device mutation; compare-and-swap guard for bootstrap trust.
    trust_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime | None] = mapped_column(TIMESTAMP, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
    last_seen_at: Mapped[datetime | None] = mapped_column(TIMESTAMP)

    trusted_devices: Mapped[list[TrustedDevice]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="TrustedDevice.trusted_id",
    )
