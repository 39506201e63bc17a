"""
clubledger.services.catalog_service — Reward Catalog Admin
===========================================================

Every catalog write follows the same pattern:
  1. Begin transaction
  2. Read "before" snapshot
  3. Apply change
  4. Write admin_log with before/after JSON
  5. Commit

``copies_redeemed`` is never writable from here; it only moves through
redemption transitions.  Rewards are deactivated, never deleted, because
redemptions keep pointing at them.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import Engine, select, update
from sqlalchemy.orm import Session

from clubledger.database.models import AdminActionType, AdminLog, RewardItem, RewardType
from clubledger.engine.badges import BADGE_CATALOG

logger = logging.getLogger(__name__)

_TABLE = "reward_items"
_FROZEN_KEYS = ("id", "copies_redeemed", "created_at")


# ---------------------------------------------------------------------------
# Audit helpers
# ---------------------------------------------------------------------------
def _row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime):
            val = val.isoformat()
        result[col.name] = val
    return result


def _log_admin_action(
    session: Session,
    *,
    actor_id: str,
    action_type: AdminActionType,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    reason: str | None = None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        actor_id=actor_id,
        action_type=action_type.value,
        target_table=_TABLE,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        reason=reason,
    ))


def _validate(fields: dict[str, Any]) -> None:
    if "points_cost" in fields and (fields["points_cost"] is None or fields["points_cost"] <= 0):
        raise ValueError("points_cost must be positive")
    if "reward_type" in fields:
        RewardType(fields["reward_type"])
    copies = fields.get("copies_available")
    if copies is not None and copies < 0:
        raise ValueError("copies_available must be non-negative")
    badge_code = fields.get("badge_code")
    if badge_code and badge_code not in BADGE_CATALOG:
        raise ValueError(f"Unknown badge code: {badge_code!r}")


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def reward_to_dict(item: RewardItem) -> dict:
    return {
        "id": item.id,
        "name": item.name,
        "description": item.description,
        "points_cost": item.points_cost,
        "reward_type": item.reward_type,
        "contributor_id": item.contributor_id,
        "copies_available": item.copies_available,
        "copies_redeemed": item.copies_redeemed,
        "remaining_copies": item.remaining_copies,
        "is_available": item.is_available,
        "badge_code": item.badge_code,
        "image_url": item.image_url,
        "is_active": item.is_active,
        "sort_order": item.sort_order,
    }


def list_rewards(engine: Engine, include_inactive: bool = False) -> list[dict]:
    """Catalog ordered by ``sort_order`` then cost."""
    stmt = select(RewardItem)
    if not include_inactive:
        stmt = stmt.where(RewardItem.is_active.is_(True))
    stmt = stmt.order_by(RewardItem.sort_order, RewardItem.points_cost)
    with Session(engine) as session:
        return [reward_to_dict(item) for item in session.scalars(stmt).all()]


def get_reward(engine: Engine, reward_item_id: str) -> RewardItem | None:
    with Session(engine, expire_on_commit=False) as session:
        item = session.get(RewardItem, reward_item_id)
        if item is not None:
            session.expunge(item)
        return item


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------
def create_reward(engine: Engine, *, actor_id: str, **fields: Any) -> RewardItem:
    """Audited CREATE: add -> flush -> log -> commit -> return.

    Raises
    ------
    ValueError
        On a non-positive cost, unknown reward type or unknown badge code.
    """
    _validate({"points_cost": fields.get("points_cost"), **fields})
    fields.pop("copies_redeemed", None)

    with Session(engine, expire_on_commit=False) as session:
        item = RewardItem(copies_redeemed=0, **fields)
        session.add(item)
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.CREATE,
            target_id=item.id,
            before=None,
            after=_row_to_dict(item),
        )
        session.commit()
        session.refresh(item)
        session.expunge(item)

    logger.info("Reward %s created by %s", item.id, actor_id)
    return item


def update_reward(
    engine: Engine,
    reward_item_id: str,
    *,
    actor_id: str,
    **fields: Any,
) -> RewardItem | None:
    """Audited UPDATE: get -> before -> apply fields -> log -> commit.

    Returns the updated (expunged) item, or ``None`` if not found.

    Raises
    ------
    ValueError
        If the change would put ``copies_available`` below the copies
        already redeemed, or fails the same checks as :func:`create_reward`.
    """
    _validate(fields)
    changes = dict(fields)
    copies = changes.pop("copies_available", None)
    if copies is None and "copies_available" in fields:
        changes["copies_available"] = None   # unlimited

    with Session(engine, expire_on_commit=False) as session:
        item = session.get(RewardItem, reward_item_id)
        if item is None:
            return None

        before = _row_to_dict(item)
        if copies is not None:
            # Bound checked in the WHERE so a concurrent redemption can't slip under it
            capped = session.execute(
                update(RewardItem)
                .where(
                    RewardItem.id == reward_item_id,
                    RewardItem.copies_redeemed <= copies,
                )
                .values(copies_available=copies)
                .returning(RewardItem.id)
                .execution_options(synchronize_session=False)
            ).scalar_one_or_none()
            if capped is None:
                redeemed = session.scalar(
                    select(RewardItem.copies_redeemed).where(RewardItem.id == reward_item_id)
                )
                session.rollback()
                raise ValueError(
                    f"copies_available ({copies}) cannot be below "
                    f"copies_redeemed ({redeemed})"
                )

        for key, value in changes.items():
            if hasattr(item, key) and key not in _FROZEN_KEYS:
                setattr(item, key, value)
        session.flush()
        session.refresh(item)
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.UPDATE,
            target_id=item.id,
            before=before,
            after=_row_to_dict(item),
        )
        session.commit()
        session.refresh(item)
        session.expunge(item)
        return item


def deactivate_reward(engine: Engine, reward_item_id: str, *, actor_id: str) -> bool:
    """Soft delete.  Returns ``True`` if the reward existed."""
    with Session(engine) as session:
        item = session.get(RewardItem, reward_item_id)
        if item is None:
            return False
        before = _row_to_dict(item)
        item.is_active = False
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.DEACTIVATE,
            target_id=item.id,
            before=before,
            after=_row_to_dict(item),
        )
        session.commit()

    logger.info("Reward %s deactivated by %s", reward_item_id, actor_id)
    return True
