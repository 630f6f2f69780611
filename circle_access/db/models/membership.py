"""Supporter membership and one-off transaction models."""

from datetime import datetime, timezone

from sqlalchemy import (
    Integer, String, Boolean, ForeignKey, DateTime, Index, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, new_id


class Supporter(Base):
    """Membership grant: one row per (supporter, creator) pair. Never deleted."""

    __tablename__ = "supporters"

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

    tier_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Absent for direct/one-time support.
    subscription_id: Mapped[str | None] = mapped_column(
        ForeignKey("subscriptions.id", ondelete="SET NULL"),
        nullable=True,
    )

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
        UniqueConstraint("supporter_id", "creator_id", name="uq_supporter_creator"),
        Index("ix_supporters_creator_active", "creator_id", "is_active"),
    )


class SupporterTransaction(Base):
    """Completed payment from a supporter; drives notification opt-in."""

    __tablename__ = "supporter_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    supporter_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    creator_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)

    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payment_gateway: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    # status: "pending" | "completed" | "failed"

    email_notifications_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_supporter_tx_pair_status", "supporter_id", "creator_id", "status"),
    )
