from __future__ import annotations

from datetime import datetime
from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from batchkeeper.core.time import utcnow
from batchkeeper.db.base import Base


class Batch(Base):
    __tablename__ = "batches"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    batch_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)  # provider id
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    template: Mapped[str] = mapped_column(String(32), nullable=False, default="NORMAL")
    language: Mapped[str] = mapped_column(String(64), nullable=False, default="English")
    by_name: Mapped[str] = mapped_column(String(255), nullable=False, default="Unknown")
    start_date: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    end_date: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    enrolled_tokens: Mapped[list["EnrolledToken"]] = relationship(
        "EnrolledToken",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="EnrolledToken.id",
    )


class EnrolledToken(Base):
    """Provider credential of one user, attached to one batch.

    owner_id is a plain reference to users.id: removing a user never deletes
    the batch's tokens, and removing a token never touches the user.
    """

    __tablename__ = "enrolled_tokens"
    __table_args__ = (UniqueConstraint("batch_pk", "owner_id", name="uq_enrolled_token_batch_owner"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    batch_pk: Mapped[int] = mapped_column(ForeignKey("batches.id", ondelete="CASCADE"), nullable=False, index=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    access_token: Mapped[str] = mapped_column(Text, nullable=False, default="")
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_valid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    correlation_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    batch: Mapped["Batch"] = relationship("Batch", back_populates="enrolled_tokens")
