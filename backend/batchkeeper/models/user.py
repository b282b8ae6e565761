from __future__ import annotations

from datetime import datetime
from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from batchkeeper.core.time import utcnow
from batchkeeper.db.base import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    # Most recently known provider credential for this user (cache)
    provider_access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_correlation_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    # Application session refresh token (64 hex), single-use
    refresh_token: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="user")
    role_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    has_logged_in: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    entitlements: Mapped[list["UserBatchEntitlement"]] = relationship(
        "UserBatchEntitlement",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="UserBatchEntitlement.id",
    )


class UserBatchEntitlement(Base):
    """A batch the user is entitled to, keyed by the provider's external batch id."""

    __tablename__ = "user_batch_entitlements"
    __table_args__ = (UniqueConstraint("user_id", "batch_id", name="uq_user_batch_entitlement"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    batch_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    user: Mapped["User"] = relationship("User", back_populates="entitlements")
