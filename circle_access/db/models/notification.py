"""Outbound email queue."""

from datetime import datetime, timezone

from sqlalchemy import String, DateTime, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, new_id


class EmailQueue(Base):
    """Append-only email job. Delivery is handled by the mail worker."""

    __tablename__ = "email_queue"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email_type: Mapped[str] = mapped_column(String, nullable=False)
    recipient_email: Mapped[str] = mapped_column(String, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    scheduled_for: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_email_queue_status_scheduled", "status", "scheduled_for"),
    )
