"""Initial ledger schema

Revision ID: 0a1c5e7b9d21
Revises:
Create Date: 2026-10-18 09:12:41.518203

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '0a1c5e7b9d21'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    """Create users, ledger, catalog, redemption, badge, promotion and outbox tables."""

    # --- users ---
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("credit_balance", sa.Integer, nullable=False, server_default="0"),
        sa.Column("reputation", sa.Integer, nullable=False, server_default="0"),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("points >= 0", name="ck_users_points_non_negative"),
        sa.CheckConstraint("credit_balance >= 0", name="ck_users_credits_non_negative"),
    )

    # --- ledger_entries ---
    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("currency", sa.String(10), nullable=False),
        sa.Column("entry_type", sa.String(30), nullable=False),
        sa.Column("event_type", sa.String(30), nullable=True),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("balance_before", sa.Integer, nullable=False),
        sa.Column("balance_after", sa.Integer, nullable=False),
        sa.Column("ref_type", sa.String(20), nullable=True),
        sa.Column("ref_id", sa.String(100), nullable=True),
        sa.Column("idempotency_key", sa.String(200), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        _created_at(),
        sa.CheckConstraint(
            "balance_after = balance_before + amount",
            name="ck_ledger_entries_snapshot",
        ),
    )
    op.create_index(
        "ix_ledger_entries_idempotency_key", "ledger_entries", ["idempotency_key"],
        unique=True,
        postgresql_where=sa.text("idempotency_key IS NOT NULL"),
    )
    op.create_index("ix_ledger_entries_user_time", "ledger_entries", ["user_id", "created_at"])
    op.create_index("ix_ledger_entries_user_currency", "ledger_entries", ["user_id", "currency"])
    op.create_index("ix_ledger_entries_ref", "ledger_entries", ["ref_type", "ref_id"])

    # --- reward_items ---
    op.create_table(
        "reward_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("points_cost", sa.Integer, nullable=False),
        sa.Column("reward_type", sa.String(30), nullable=False, server_default="PLATFORM"),
        sa.Column(
            "contributor_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("copies_available", sa.Integer, nullable=True),
        sa.Column("copies_redeemed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("badge_code", sa.String(50), nullable=True),
        sa.Column("image_url", sa.String(500), nullable=True),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        sa.Column("sort_order", sa.Integer, server_default="0"),
        _created_at(),
        sa.CheckConstraint("points_cost > 0", name="ck_reward_items_cost_positive"),
        sa.CheckConstraint(
            "copies_redeemed >= 0", name="ck_reward_items_redeemed_non_negative",
        ),
        sa.CheckConstraint(
            "copies_available IS NULL OR copies_redeemed <= copies_available",
            name="ck_reward_items_inventory",
        ),
    )
    op.create_index("ix_reward_items_active_sort", "reward_items", ["is_active", "sort_order"])

    # --- redemption_requests ---
    op.create_table(
        "redemption_requests",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column(
            "reward_item_id", sa.String(36),
            sa.ForeignKey("reward_items.id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("points_spent", sa.Integer, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("inventory_reserved", sa.Boolean, server_default=sa.false()),
        sa.Column("reviewed_by", sa.String(36), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("fulfilled_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_redemption_requests_user_time", "redemption_requests", ["user_id", "created_at"],
    )
    op.create_index("ix_redemption_requests_status", "redemption_requests", ["status"])

    # --- redemption_audit_log ---
    op.create_table(
        "redemption_audit_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "redemption_id", sa.String(36),
            sa.ForeignKey("redemption_requests.id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("action_type", sa.String(30), nullable=False),
        sa.Column("old_status", sa.String(20), nullable=True),
        sa.Column("new_status", sa.String(20), nullable=True),
        sa.Column("changed_by", sa.String(36), nullable=True),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("metadata", postgresql.JSONB, nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_redemption_audit_redemption", "redemption_audit_log",
        ["redemption_id", "created_at"],
    )

    # --- user_badges ---
    op.create_table(
        "user_badges",
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("code", sa.String(50), primary_key=True),
        sa.Column("awarded_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- pitches / sponsored_pitches ---
    op.create_table(
        "pitches",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "author_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("is_boosted", sa.Boolean, server_default=sa.false()),
        sa.Column("boost_ends_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "sponsored_pitches",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "pitch_id", sa.String(36),
            sa.ForeignKey("pitches.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("target_genres", postgresql.JSONB, nullable=True),
        sa.Column("min_member_count", sa.Integer, nullable=True),
        sa.Column("max_member_count", sa.Integer, nullable=True),
        sa.Column("target_frequency", sa.String(20), nullable=True),
        sa.Column("budget", sa.Integer, nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        sa.Column("impressions", sa.Integer, server_default="0"),
        _created_at(),
    )
    op.create_index(
        "ix_sponsored_pitches_active_window", "sponsored_pitches",
        ["is_active", "start_date", "end_date"],
    )

    # --- notification_outbox / notifications ---
    op.create_table(
        "notification_outbox",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("kind", sa.String(50), nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("status", sa.String(10), nullable=False, server_default="PENDING"),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text, nullable=True),
        _created_at(),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_notification_outbox_status_id", "notification_outbox", ["status", "id"],
    )
    op.create_table(
        "notifications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("kind", sa.String(50), nullable=False),
        sa.Column("data", postgresql.JSONB, nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_notifications_user_time", "notifications", ["user_id", "created_at"])

    # --- admin_log ---
    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.String(36), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB, nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB, nullable=True),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index(
        "ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"],
    )


def downgrade() -> None:
    """Drop every ledger table."""
    op.drop_table("admin_log")
    op.drop_table("notifications")
    op.drop_table("notification_outbox")
    op.drop_table("sponsored_pitches")
    op.drop_table("pitches")
    op.drop_table("user_badges")
    op.drop_table("redemption_audit_log")
    op.drop_table("redemption_requests")
    op.drop_table("reward_items")
    op.drop_table("ledger_entries")
    op.drop_table("users")
