from datetime import datetime
from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from batchkeeper.core.time import utcnow
from batchkeeper.db.base import Base


class ReconcileRun(Base):
    __tablename__ = "reconcile_runs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="running", index=True)  # running, done, timed_out, failed
    trigger: Mapped[str] = mapped_column(String(20), nullable=False, default="manual")  # manual, schedule, cli
    batches_scanned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    credentials_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refreshed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pruned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
