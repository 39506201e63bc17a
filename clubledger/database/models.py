"""
clubledger.database.models — SQLAlchemy 2.0 Data Models
========================================================

Schema for the points/credits economy.

Tables:
- users                 — Account owners with materialised point/credit balances
- ledger_entries        — Append-only signed balance journal (one row per change)
- reward_items          — Points-for-reward catalog with optional finite inventory
- redemption_requests   — A user's claim on a catalog item
- redemption_audit_log  — Append-only trail of every redemption transition
- user_badges           — Earned badges, unique per (user, code)
- pitches               — Promotion targets for credit boosts
- sponsored_pitches     — Credit-funded club sponsorships
- notification_outbox   — Events emitted inside financial transactions
- notifications         — In-app notifications delivered from the outbox
- admin_log             — Append-only before/after audit of admin mutations
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from clubledger.engine.refs import LedgerRef, RefKind


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all clubledger ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class Currency(enum.StrEnum):
    """The two independent balances every account carries."""
    POINTS = "POINTS"
    CREDITS = "CREDITS"


class EntryType(enum.StrEnum):
    """Cause recorded on every ledger entry."""
    EARNED = "EARNED"
    SPENT = "SPENT"
    PURCHASE = "PURCHASE"
    REWARD_REDEEMED = "REWARD_REDEEMED"
    REWARD_REFUNDED = "REWARD_REFUNDED"
    BOOST_PITCH = "BOOST_PITCH"
    SPONSOR_CLUB = "SPONSOR_CLUB"
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"


class PointEvent(enum.StrEnum):
    """Platform events that earn points."""
    SWAP_VERIFIED = "SWAP_VERIFIED"
    ON_TIME_DELIVERY = "ON_TIME_DELIVERY"
    PITCH_SELECTED = "PITCH_SELECTED"
    VOTE_PARTICIPATION = "VOTE_PARTICIPATION"
    REVIEW_VERIFIED = "REVIEW_VERIFIED"
    SOCIAL_SHARE = "SOCIAL_SHARE"
    HOST_ACTION = "HOST_ACTION"
    MESSAGE_POSTED = "MESSAGE_POSTED"
    PITCH_CREATED = "PITCH_CREATED"
    JOIN_CLUB = "JOIN_CLUB"
    SWAP_COMPLETED = "SWAP_COMPLETED"


class RewardType(enum.StrEnum):
    PLATFORM = "PLATFORM"
    AUTHOR_CONTRIBUTED = "AUTHOR_CONTRIBUTED"
    FEATURE = "FEATURE"
    DIGITAL = "DIGITAL"


class RedemptionStatus(enum.StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    FULFILLED = "FULFILLED"
    CANCELLED = "CANCELLED"


class AuditAction(enum.StrEnum):
    """Categories of rows written to redemption_audit_log."""
    CREATED = "CREATED"
    STATUS_CHANGE = "STATUS_CHANGE"
    BADGE_GRANTED = "BADGE_GRANTED"
    MANUAL_GRANT = "MANUAL_GRANT"


class AdminActionType(enum.StrEnum):
    """Categories of admin mutations recorded in admin_log."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DEACTIVATE = "DEACTIVATE"
    BALANCE_ADJUSTMENT = "BALANCE_ADJUSTMENT"


class OutboxStatus(enum.StrEnum):
    PENDING = "PENDING"
    SENT = "SENT"
    DEAD = "DEAD"


# ---------------------------------------------------------------------------
# Users — account owners and materialised balances
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), default=None)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    credit_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reputation: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    badges: Mapped[list[UserBadge]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_users_points_non_negative"),
        CheckConstraint("credit_balance >= 0", name="ck_users_credits_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<User id={self.id} name={self.name!r} "
            f"points={self.points} credits={self.credit_balance}>"
        )


# ---------------------------------------------------------------------------
# LedgerEntry — append-only balance journal
# ---------------------------------------------------------------------------
class LedgerEntry(Base):
    """One signed change to one balance.

    Rows are written once and never updated; corrections are new entries.
    ``balance_before``/``balance_after`` snapshot the materialised balance
    at the moment of the change so every row can be audited on its own.
    """
    __tablename__ = "ledger_entries"
    # Server-side created_at is read back on INSERT so detached entries serialise
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    entry_type: Mapped[str] = mapped_column(String(30), nullable=False)
    event_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_before: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    ref_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    ref_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(200), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        # A replayed payment or keyed award collides here instead of crediting twice
        Index(
            "ix_ledger_entries_idempotency_key",
            "idempotency_key",
            unique=True,
            postgresql_where=idempotency_key.isnot(None),
        ),
        Index("ix_ledger_entries_user_time", "user_id", "created_at"),
        Index("ix_ledger_entries_user_currency", "user_id", "currency"),
        Index("ix_ledger_entries_ref", "ref_type", "ref_id"),
        CheckConstraint(
            "balance_after = balance_before + amount",
            name="ck_ledger_entries_snapshot",
        ),
    )

    @property
    def ref(self) -> LedgerRef | None:
        """The tagged reference to the entity that caused this entry."""
        if self.ref_type is None or self.ref_id is None:
            return None
        return LedgerRef(RefKind(self.ref_type), self.ref_id)

    @ref.setter
    def ref(self, value: LedgerRef | None) -> None:
        if value is None:
            self.ref_type = None
            self.ref_id = None
        else:
            self.ref_type = value.kind.value
            self.ref_id = value.id

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry id={self.id} user={self.user_id} "
            f"{self.currency} {self.entry_type} {self.amount:+d}>"
        )


# ---------------------------------------------------------------------------
# RewardItem — points-for-reward catalog
# ---------------------------------------------------------------------------
class RewardItem(Base):
    """A catalog reward redeemable with points.

    ``copies_available`` of ``None`` means unlimited.  ``copies_redeemed``
    counts copies currently reserved or fulfilled and only moves through
    redemption transitions.
    """
    __tablename__ = "reward_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    points_cost: Mapped[int] = mapped_column(Integer, nullable=False)
    reward_type: Mapped[str] = mapped_column(
        String(30), nullable=False, default=RewardType.PLATFORM.value
    )
    contributor_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    copies_available: Mapped[int | None] = mapped_column(Integer, nullable=True)
    copies_redeemed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    badge_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    redemptions: Mapped[list[RedemptionRequest]] = relationship(
        back_populates="reward_item"
    )

    __table_args__ = (
        CheckConstraint("points_cost > 0", name="ck_reward_items_cost_positive"),
        CheckConstraint("copies_redeemed >= 0", name="ck_reward_items_redeemed_non_negative"),
        CheckConstraint(
            "copies_available IS NULL OR copies_redeemed <= copies_available",
            name="ck_reward_items_inventory",
        ),
        Index("ix_reward_items_active_sort", "is_active", "sort_order"),
    )

    @property
    def is_available(self) -> bool:
        if not self.is_active:
            return False
        if self.copies_available is None:
            return True
        return self.copies_redeemed < self.copies_available

    @property
    def remaining_copies(self) -> int | None:
        if self.copies_available is None:
            return None
        return self.copies_available - self.copies_redeemed

    def __repr__(self) -> str:
        return f"<RewardItem id={self.id} name={self.name!r} cost={self.points_cost}>"


# ---------------------------------------------------------------------------
# RedemptionRequest — one user's claim on one reward
# ---------------------------------------------------------------------------
class RedemptionRequest(Base):
    __tablename__ = "redemption_requests"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    reward_item_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("reward_items.id", ondelete="RESTRICT"), nullable=False
    )
    points_spent: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RedemptionStatus.PENDING.value
    )
    # True when creation took a copy from finite inventory
    inventory_reserved: Mapped[bool] = mapped_column(Boolean, default=False)
    reviewed_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    fulfilled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    reward_item: Mapped[RewardItem] = relationship(back_populates="redemptions")

    __table_args__ = (
        Index("ix_redemption_requests_user_time", "user_id", "created_at"),
        Index("ix_redemption_requests_status", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<RedemptionRequest id={self.id} user={self.user_id} "
            f"status={self.status}>"
        )


# ---------------------------------------------------------------------------
# RedemptionAuditLog — append-only transition trail
# ---------------------------------------------------------------------------
class RedemptionAuditLog(Base):
    __tablename__ = "redemption_audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    redemption_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("redemption_requests.id", ondelete="RESTRICT"),
        nullable=False,
    )
    action_type: Mapped[str] = mapped_column(String(30), nullable=False)
    old_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    changed_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_redemption_audit_redemption", "redemption_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<RedemptionAuditLog id={self.id} redemption={self.redemption_id} "
            f"action={self.action_type}>"
        )


# ---------------------------------------------------------------------------
# UserBadge — earned badges
# ---------------------------------------------------------------------------
class UserBadge(Base):
    __tablename__ = "user_badges"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    code: Mapped[str] = mapped_column(String(50), primary_key=True)
    awarded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    user: Mapped[User] = relationship(back_populates="badges")

    def __repr__(self) -> str:
        return f"<UserBadge user={self.user_id} code={self.code}>"


# ---------------------------------------------------------------------------
# Pitch — minimal promotion target
# ---------------------------------------------------------------------------
class Pitch(Base):
    """The slice of a pitch the credit economy touches.

    Everything else about pitches lives outside this package.
    """
    __tablename__ = "pitches"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    author_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    is_boosted: Mapped[bool] = mapped_column(Boolean, default=False)
    boost_ends_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Pitch id={self.id} title={self.title!r} boosted={self.is_boosted}>"


# ---------------------------------------------------------------------------
# SponsoredPitch — credit-funded club sponsorship
# ---------------------------------------------------------------------------
class SponsoredPitch(Base):
    __tablename__ = "sponsored_pitches"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    pitch_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("pitches.id", ondelete="CASCADE"), nullable=False
    )
    target_genres: Mapped[list | None] = mapped_column(JSONB, default=list)
    min_member_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_member_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    target_frequency: Mapped[str | None] = mapped_column(String(20), nullable=True)
    budget: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    impressions: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_sponsored_pitches_active_window", "is_active", "start_date", "end_date"),
    )

    def __repr__(self) -> str:
        return f"<SponsoredPitch id={self.id} pitch={self.pitch_id} budget={self.budget}>"


# ---------------------------------------------------------------------------
# NotificationOutbox — events emitted inside financial transactions
# ---------------------------------------------------------------------------
class NotificationOutbox(Base):
    """Pending notification written in the same transaction as the change.

    A row exists iff the financial mutation committed; delivery happens
    afterwards in :class:`~clubledger.services.notification_outbox.NotificationDispatcher`.
    """
    __tablename__ = "notification_outbox"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String(10), nullable=False, default=OutboxStatus.PENDING.value
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_notification_outbox_status_id", "status", "id"),
    )

    def __repr__(self) -> str:
        return f"<NotificationOutbox id={self.id} kind={self.kind!r} status={self.status}>"


# ---------------------------------------------------------------------------
# Notification — in-app notification
# ---------------------------------------------------------------------------
class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    data: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_notifications_user_time", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Notification id={self.id} user={self.user_id} kind={self.kind!r}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(36), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"
