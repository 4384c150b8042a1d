from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class ScheduledDeletion(Base):
    """A guest-owned storage object waiting for its grace window to elapse."""

    __tablename__ = "scheduled_deletions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    public_id: Mapped[str] = mapped_column(String(1024), nullable=False)
    # Naive UTC, like every timestamp in this schema
    delete_after: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_scheduled_deletions_delete_after", "delete_after"),
    )
