"""Recurring billing record model."""

from datetime import datetime, timezone

from sqlalchemy import (
    Integer, String, Boolean, ForeignKey, DateTime, JSON, Index
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, new_id


class Subscription(Base):
    """Billing record for recurring support of a creator."""

    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    supporter_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    creator_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    tier_id: Mapped[str | None] = mapped_column(String, nullable=True)
    tier_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String, nullable=False, default="NPR")

    payment_gateway: Mapped[str] = mapped_column(String, nullable=False)  # esewa / khalti / dodo

    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    # status: "pending" | "active" | "cancelled" | "expired" | "failed"

    current_period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # {"2_days": "<iso timestamp>", "1_day": "<iso timestamp>"}
    reminder_sent_at: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    renewal_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_sub_status_gateway_end", "status", "payment_gateway", "current_period_end"),
        Index("ix_sub_supporter_creator", "supporter_id", "creator_id"),
    )
