"""
clubledger.services.redemption_service — Redemption State Machine
==================================================================

Points are deducted and a copy of finite inventory is reserved when the
redemption is *created*.  Transitions afterwards only finalize or release:

* APPROVED / FULFILLED — status change only (FULFILLED adds the badge side
  effect, if the reward carries one).
* DECLINED / CANCELLED — status change, release the reserved copy, refund
  ``points_spent``.

Every status change is a compare-and-set::

    UPDATE redemption_requests SET status = :target, …
    WHERE id = :id AND status = :expected
    RETURNING id

so two admins declining the same request concurrently cannot both refund
it; the loser sees zero rows and gets :class:`AlreadyProcessed`.  A row
that moved to another open status (approved while a decline was in
flight) is retried against the new status instead.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import Engine, select, update
from sqlalchemy.orm import Session

from clubledger.database.models import (
    AuditAction,
    Currency,
    EntryType,
    RedemptionAuditLog,
    RedemptionRequest,
    RedemptionStatus,
    RewardItem,
)
from clubledger.engine.outcomes import (
    AlreadyProcessed,
    InsufficientBalance,
    InvalidTransition,
    NotFound,
    OutOfStock,
    RedemptionOutcome,
    StaleConflict,
    is_failure,
)
from clubledger.engine.refs import LedgerRef
from clubledger.engine.transitions import RELEASING_STATUSES, TERMINAL_STATUSES, is_legal
from clubledger.services import badge_service
from clubledger.services.balance_service import adjust_balance
from clubledger.services.ledger_service import append_entry, apply_spend, refund
from clubledger.services.notification_outbox import NotificationKind, emit

logger = logging.getLogger(__name__)


def _audit(
    session: Session,
    redemption_id: str,
    action: AuditAction,
    *,
    old_status: str | None = None,
    new_status: str | None = None,
    changed_by: str | None = None,
    reason: str | None = None,
    metadata: dict | None = None,
) -> None:
    session.add(RedemptionAuditLog(
        redemption_id=redemption_id,
        action_type=action.value,
        old_status=old_status,
        new_status=new_status,
        changed_by=changed_by,
        reason=reason,
        metadata_=metadata,
    ))


def _grant_reward_badge(
    session: Session,
    redemption: RedemptionRequest,
    changed_by: str | None,
) -> bool:
    """Apply the reward's badge side effect; audit only a new grant."""
    badge_code = session.scalar(
        select(RewardItem.badge_code).where(RewardItem.id == redemption.reward_item_id)
    )
    if not badge_code:
        return False
    if not badge_service.grant_badge(session, redemption.user_id, badge_code):
        return False
    _audit(
        session,
        redemption.id,
        AuditAction.BADGE_GRANTED,
        changed_by=changed_by,
        metadata={"badge_code": badge_code},
    )
    return True


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------
def create_redemption(
    engine: Engine,
    user_id: str,
    reward_item_id: str,
) -> RedemptionOutcome | NotFound | OutOfStock | InsufficientBalance:
    """Reserve inventory, spend points and open a PENDING redemption.

    All of it commits together; any failure leaves nothing behind.
    """
    with Session(engine, expire_on_commit=False) as session:
        item = session.get(RewardItem, reward_item_id)
        if item is None:
            return NotFound("reward_item", reward_item_id)
        if not item.is_active:
            return OutOfStock(reward_item_id)

        reserved = False
        if item.copies_available is not None:
            claimed = session.execute(
                update(RewardItem)
                .where(
                    RewardItem.id == reward_item_id,
                    RewardItem.is_active.is_(True),
                    RewardItem.copies_available.isnot(None),
                    RewardItem.copies_redeemed < RewardItem.copies_available,
                )
                .values(copies_redeemed=RewardItem.copies_redeemed + 1)
                .returning(RewardItem.id)
                .execution_options(synchronize_session=False)
            ).scalar_one_or_none()
            if claimed is None:
                session.rollback()
                logger.info("Reward %s out of stock for %s", reward_item_id, user_id)
                return OutOfStock(reward_item_id)
            reserved = True

        redemption_id = str(uuid.uuid4())
        cost = item.points_cost
        spent = apply_spend(
            session,
            user_id,
            cost,
            EntryType.REWARD_REDEEMED,
            LedgerRef.redemption(redemption_id),
            currency=Currency.POINTS,
            description=f"Redeemed: {item.name}",
        )
        if is_failure(spent):
            session.rollback()
            return spent

        redemption = RedemptionRequest(
            id=redemption_id,
            user_id=user_id,
            reward_item_id=reward_item_id,
            points_spent=cost,
            status=RedemptionStatus.PENDING.value,
            inventory_reserved=reserved,
        )
        session.add(redemption)
        session.flush()
        _audit(
            session,
            redemption_id,
            AuditAction.CREATED,
            new_status=RedemptionStatus.PENDING.value,
            changed_by=user_id,
            metadata={"points_spent": cost, "inventory_reserved": reserved},
        )
        emit(session, user_id, NotificationKind.REDEMPTION_CREATED, {
            "redemption_id": redemption_id,
            "reward_item_id": reward_item_id,
            "reward_name": item.name,
            "points_spent": cost,
            "balance": spent.balance,
        })
        session.commit()

    logger.info(
        "Redemption %s created: user %s, reward %s, %d points",
        redemption_id, user_id, reward_item_id, cost,
    )
    return RedemptionOutcome(redemption, balance=spent.balance, entry=spent.entry)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------
_MAX_STATUS_ATTEMPTS = 3


def _read_status(session: Session, redemption_id: str) -> str | None:
    return session.scalar(
        select(RedemptionRequest.status).where(RedemptionRequest.id == redemption_id)
    )


def _compare_and_set(
    session: Session, redemption_id: str, expected: str, values: dict
) -> bool:
    """Apply *values* only if the row is still in *expected*; True on a hit."""
    updated = session.execute(
        update(RedemptionRequest)
        .where(
            RedemptionRequest.id == redemption_id,
            RedemptionRequest.status == expected,
        )
        .values(values)
        .returning(RedemptionRequest.id)
        .execution_options(synchronize_session=False)
    ).scalar_one_or_none()
    return updated is not None


def transition_redemption(
    engine: Engine,
    redemption_id: str,
    target: str,
    *,
    actor_id: str,
    reason: str | None = None,
    notes: str | None = None,
) -> (
    RedemptionOutcome | NotFound | InvalidTransition | AlreadyProcessed | StaleConflict
):
    """Move a redemption to *target*, applying release/refund or fulfilment.

    ``current == target`` is reported as :class:`AlreadyProcessed` (the
    second of two identical admin clicks); any other move the table does not
    allow is :class:`InvalidTransition` and writes nothing.

    If another admin moves the row between the read and the guarded update
    (PENDING approved while this call declines, say) and the move to
    *target* is still legal from the new status, the update is retried
    against that status.
    """
    target = RedemptionStatus(target)

    with Session(engine, expire_on_commit=False) as session:
        current = _read_status(session, redemption_id)
        if current is None:
            return NotFound("redemption", redemption_id)
        if current == target:
            return AlreadyProcessed(redemption_id, current)
        if not is_legal(current, target):
            return InvalidTransition(current, target.value)

        now = datetime.now(UTC)
        values: dict = {"status": target.value}
        if target in (RedemptionStatus.APPROVED, RedemptionStatus.DECLINED,
                      RedemptionStatus.FULFILLED):
            values["reviewed_by"] = actor_id
            values["reviewed_at"] = now
        if target == RedemptionStatus.DECLINED:
            values["rejection_reason"] = reason
        if target == RedemptionStatus.FULFILLED:
            values["fulfilled_at"] = now
        if notes is not None:
            values["notes"] = notes

        for _ in range(_MAX_STATUS_ATTEMPTS):
            if _compare_and_set(session, redemption_id, current, values):
                break
            latest = _read_status(session, redemption_id)
            if latest is None:
                session.rollback()
                return NotFound("redemption", redemption_id)
            if latest == target or RedemptionStatus(latest) in TERMINAL_STATUSES:
                session.rollback()
                logger.info(
                    "Redemption %s already %s; %s by %s ignored",
                    redemption_id, latest, target, actor_id,
                )
                return AlreadyProcessed(redemption_id, latest)
            if not is_legal(latest, target):
                session.rollback()
                return StaleConflict("redemption", redemption_id)
            # Still open (e.g. approved meanwhile): retry from the new status
            logger.info(
                "Redemption %s moved %s → %s before %s's %s; retrying",
                redemption_id, current, latest, actor_id, target,
            )
            current = latest
        else:
            session.rollback()
            logger.warning(
                "Redemption %s kept changing underneath %s; giving up on %s",
                redemption_id, actor_id, target,
            )
            return StaleConflict("redemption", redemption_id)

        redemption = session.get(RedemptionRequest, redemption_id, populate_existing=True)
        metadata: dict = {}
        balance = None
        entry = None
        badge_granted = False

        if target in RELEASING_STATUSES:
            if redemption.inventory_reserved:
                released = session.execute(
                    update(RewardItem)
                    .where(
                        RewardItem.id == redemption.reward_item_id,
                        RewardItem.copies_redeemed > 0,
                    )
                    .values(copies_redeemed=RewardItem.copies_redeemed - 1)
                    .returning(RewardItem.id)
                    .execution_options(synchronize_session=False)
                ).scalar_one_or_none()
                if released is None:
                    session.rollback()
                    logger.error(
                        "Reward %s has no reserved copy to release for redemption %s",
                        redemption.reward_item_id, redemption_id,
                    )
                    return StaleConflict("reward_item", redemption.reward_item_id)
                metadata["inventory_released"] = True

            if redemption.points_spent > 0:
                refunded = refund(
                    session,
                    redemption.user_id,
                    redemption.points_spent,
                    EntryType.REWARD_REFUNDED,
                    LedgerRef.redemption(redemption_id),
                    currency=Currency.POINTS,
                    description=f"Refund: redemption {target.value.lower()}",
                )
                if is_failure(refunded):
                    session.rollback()
                    return refunded
                balance = refunded.balance
                entry = refunded.entry
                metadata["points_refunded"] = redemption.points_spent

        if target == RedemptionStatus.FULFILLED:
            badge_granted = _grant_reward_badge(session, redemption, actor_id)

        _audit(
            session,
            redemption_id,
            AuditAction.STATUS_CHANGE,
            old_status=current,
            new_status=target.value,
            changed_by=actor_id,
            reason=reason,
            metadata=metadata or None,
        )
        emit(session, redemption.user_id, NotificationKind.REDEMPTION_STATUS, {
            "redemption_id": redemption_id,
            "old_status": current,
            "new_status": target.value,
            "points_refunded": metadata.get("points_refunded", 0),
            "reason": reason,
        })
        session.commit()

    logger.info(
        "Redemption %s: %s → %s by %s", redemption_id, current, target, actor_id,
    )
    return RedemptionOutcome(redemption, balance=balance, entry=entry, badge_granted=badge_granted)


def cancel_redemption(
    engine: Engine,
    redemption_id: str,
    user_id: str,
) -> (
    RedemptionOutcome | NotFound | InvalidTransition | AlreadyProcessed | StaleConflict
):
    """Owner-initiated cancel.  Other users' redemptions look missing."""
    with Session(engine) as session:
        owner = session.scalar(
            select(RedemptionRequest.user_id).where(RedemptionRequest.id == redemption_id)
        )
    if owner is None or owner != user_id:
        return NotFound("redemption", redemption_id)

    return transition_redemption(
        engine,
        redemption_id,
        RedemptionStatus.CANCELLED,
        actor_id=user_id,
        reason="Cancelled by user",
    )


def admin_grant(
    engine: Engine,
    user_id: str,
    reward_item_id: str,
    *,
    admin_id: str,
    reason: str,
) -> RedemptionOutcome | NotFound:
    """Grant a reward for free: FULFILLED immediately, no points, no inventory.

    A zero-amount REWARD_REDEEMED entry keeps the grant visible in the
    user's ledger history.
    """
    with Session(engine, expire_on_commit=False) as session:
        item = session.get(RewardItem, reward_item_id)
        if item is None:
            return NotFound("reward_item", reward_item_id)

        # Zero delta still locks and snapshots the user's balance row
        snapshot = adjust_balance(session, user_id, Currency.POINTS, 0)
        if is_failure(snapshot):
            session.rollback()
            return snapshot

        now = datetime.now(UTC)
        redemption = RedemptionRequest(
            user_id=user_id,
            reward_item_id=reward_item_id,
            points_spent=0,
            status=RedemptionStatus.FULFILLED.value,
            inventory_reserved=False,
            reviewed_by=admin_id,
            reviewed_at=now,
            fulfilled_at=now,
            notes=reason,
        )
        session.add(redemption)
        session.flush()

        entry = append_entry(
            session,
            user_id=user_id,
            currency=Currency.POINTS,
            entry_type=EntryType.REWARD_REDEEMED,
            amount=0,
            adjustment=snapshot,
            ref=LedgerRef.redemption(redemption.id),
            description=f"Granted: {item.name}",
        )
        _audit(
            session,
            redemption.id,
            AuditAction.MANUAL_GRANT,
            new_status=RedemptionStatus.FULFILLED.value,
            changed_by=admin_id,
            reason=reason,
            metadata={"reward_name": item.name},
        )
        badge_granted = _grant_reward_badge(session, redemption, admin_id)
        emit(session, user_id, NotificationKind.REDEMPTION_STATUS, {
            "redemption_id": redemption.id,
            "old_status": None,
            "new_status": RedemptionStatus.FULFILLED.value,
            "points_refunded": 0,
            "reason": reason,
        })
        session.commit()

    logger.info(
        "Admin %s granted reward %s to %s (%s)", admin_id, reward_item_id, user_id, reason,
    )
    return RedemptionOutcome(
        redemption, balance=snapshot.after, entry=entry, badge_granted=badge_granted,
    )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def redemption_to_dict(redemption: RedemptionRequest, reward_name: str | None = None) -> dict:
    def _iso(value):
        return value.isoformat() if value else None

    return {
        "id": redemption.id,
        "user_id": redemption.user_id,
        "reward_item_id": redemption.reward_item_id,
        "reward_name": reward_name,
        "points_spent": redemption.points_spent,
        "status": redemption.status,
        "reviewed_by": redemption.reviewed_by,
        "reviewed_at": _iso(redemption.reviewed_at),
        "rejection_reason": redemption.rejection_reason,
        "notes": redemption.notes,
        "fulfilled_at": _iso(redemption.fulfilled_at),
        "created_at": _iso(redemption.created_at),
    }


def get_redemption(engine: Engine, redemption_id: str) -> RedemptionRequest | None:
    """Re-query a redemption by id (e.g. after a timed-out create)."""
    with Session(engine, expire_on_commit=False) as session:
        redemption = session.get(RedemptionRequest, redemption_id)
        if redemption is not None:
            session.expunge(redemption)
        return redemption


def list_redemptions(
    engine: Engine,
    status: str | None = None,
    limit: int = 100,
) -> list[dict]:
    """Newest-first redemptions across all users, optionally by status."""
    stmt = (
        select(RedemptionRequest, RewardItem.name)
        .join(RewardItem, RewardItem.id == RedemptionRequest.reward_item_id)
    )
    if status is not None:
        stmt = stmt.where(RedemptionRequest.status == RedemptionStatus(status).value)
    stmt = stmt.order_by(RedemptionRequest.created_at.desc()).limit(limit)

    with Session(engine) as session:
        return [redemption_to_dict(r, name) for r, name in session.execute(stmt).all()]


def list_user_redemptions(engine: Engine, user_id: str) -> list[dict]:
    with Session(engine) as session:
        rows = session.execute(
            select(RedemptionRequest, RewardItem.name)
            .join(RewardItem, RewardItem.id == RedemptionRequest.reward_item_id)
            .where(RedemptionRequest.user_id == user_id)
            .order_by(RedemptionRequest.created_at.desc())
        ).all()
        return [redemption_to_dict(r, name) for r, name in rows]


def get_audit_trail(engine: Engine, redemption_id: str) -> list[dict]:
    """Oldest-first audit rows for one redemption."""
    with Session(engine) as session:
        rows = session.scalars(
            select(RedemptionAuditLog)
            .where(RedemptionAuditLog.redemption_id == redemption_id)
            .order_by(RedemptionAuditLog.id)
        ).all()
        return [
            {
                "id": row.id,
                "action_type": row.action_type,
                "old_status": row.old_status,
                "new_status": row.new_status,
                "changed_by": row.changed_by,
                "reason": row.reason,
                "metadata": row.metadata_,
                "created_at": row.created_at.isoformat() if row.created_at else None,
            }
            for row in rows
        ]
