"""supporter_access_baseline

Revision ID: 7c1e2a9d4b10
Revises:
Create Date: 2026-02-02 10:14:31.208114

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '7c1e2a9d4b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None



def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(), unique=True),
        sa.Column("display_name", sa.String()),
        sa.Column("username", sa.String(), unique=True),
        sa.Column("photo_url", sa.String()),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )

    op.create_table(
        "creator_profiles",
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("supporters_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("supporter_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("creator_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tier_id", sa.String()),
        sa.Column("tier_level", sa.Integer(), nullable=False, server_default="1"),

        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(), nullable=False, server_default="NPR"),
        sa.Column("payment_gateway", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),

        sa.Column("current_period_start", sa.DateTime(timezone=True)),
        sa.Column("current_period_end", sa.DateTime(timezone=True)),
        sa.Column("reminder_sent_at", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("renewal_count", sa.Integer(), nullable=False, server_default="0"),

        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("cancel_reason", sa.String()),

        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_subscriptions_supporter_id", "subscriptions", ["supporter_id"])
    op.create_index("ix_subscriptions_creator_id", "subscriptions", ["creator_id"])
    op.create_index(
        "ix_sub_status_gateway_end",
        "subscriptions",
        ["status", "payment_gateway", "current_period_end"],
    )
    op.create_index("ix_sub_supporter_creator", "subscriptions", ["supporter_id", "creator_id"])

    op.create_table(
        "supporters",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("supporter_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("creator_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tier_level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("subscription_id", sa.String(36), sa.ForeignKey("subscriptions.id", ondelete="SET NULL")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),

        sa.UniqueConstraint("supporter_id", "creator_id", name="uq_supporter_creator"),
    )
    op.create_index("ix_supporters_supporter_id", "supporters", ["supporter_id"])
    op.create_index("ix_supporters_creator_id", "supporters", ["creator_id"])
    op.create_index("ix_supporters_creator_active", "supporters", ["creator_id", "is_active"])

    op.create_table(
        "supporter_transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("supporter_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE")),
        sa.Column("creator_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE")),
        sa.Column("amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_gateway", sa.String()),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("email_notifications_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_supporter_transactions_supporter_id", "supporter_transactions", ["supporter_id"])
    op.create_index("ix_supporter_transactions_creator_id", "supporter_transactions", ["creator_id"])
    op.create_index(
        "ix_supporter_tx_pair_status",
        "supporter_transactions",
        ["supporter_id", "creator_id", "status"],
    )

    op.create_table(
        "channels",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("creator_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=False, server_default="custom"),
        sa.Column("min_tier_required", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("stream_channel_id", sa.String(64), unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_channels_creator_id", "channels", ["creator_id"])
    op.create_index("ix_channels_creator_tier", "channels", ["creator_id", "min_tier_required"])

    op.create_table(
        "channel_members",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("channel_id", sa.String(36), sa.ForeignKey("channels.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),

        sa.UniqueConstraint("channel_id", "user_id", name="uq_channel_member"),
    )
    op.create_index("ix_channel_members_channel_id", "channel_members", ["channel_id"])
    op.create_index("ix_channel_members_user_id", "channel_members", ["user_id"])

    op.create_table(
        "email_queue",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email_type", sa.String(), nullable=False),
        sa.Column("recipient_email", sa.String(), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_email_queue_status_scheduled", "email_queue", ["status", "scheduled_for"])


def downgrade():
    op.drop_table("email_queue")
    op.drop_table("channel_members")
    op.drop_table("channels")
    op.drop_table("supporter_transactions")
    op.drop_table("supporters")
    op.drop_table("subscriptions")
    op.drop_table("creator_profiles")
    op.drop_table("users")
