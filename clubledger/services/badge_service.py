"""
clubledger.services.badge_service — Badge grants and queries
=============================================================

Grants are idempotent: ``user_badges`` is keyed by ``(user_id, code)`` so a
second grant of the same badge (a duplicate fulfilment, a concurrent award)
collides on the primary key inside a SAVEPOINT and becomes a no-op.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clubledger.database.models import EntryType, LedgerEntry, UserBadge
from clubledger.engine import badges
from clubledger.services.notification_outbox import NotificationKind, emit

logger = logging.getLogger(__name__)


def grant_badge(session: Session, user_id: str, code: str) -> bool:
    """Grant *code* to *user_id* inside the caller's transaction.

    Returns ``True`` when newly granted, ``False`` when already held.

    Raises
    ------
    ValueError
        If *code* is not in :data:`~clubledger.engine.badges.BADGE_CATALOG`.
    """
    info = badges.BADGE_CATALOG.get(code)
    if info is None:
        raise ValueError(f"Unknown badge code: {code!r}")

    if session.get(UserBadge, (user_id, code)) is not None:
        return False

    try:
        with session.begin_nested():   # SAVEPOINT
            session.add(UserBadge(user_id=user_id, code=code))
            session.flush()
    except IntegrityError:
        logger.debug("Badge %s already held by %s", code, user_id)
        return False

    emit(session, user_id, NotificationKind.BADGE_EARNED, {
        "code": code,
        "name": info.name,
        "icon": info.icon,
    })
    logger.info("Granted badge %s to %s", code, user_id)
    return True


def list_badges(engine: Engine, user_id: str) -> list[dict]:
    """Badges held by *user_id*, oldest first, with catalog metadata."""
    with Session(engine) as session:
        rows = session.scalars(
            select(UserBadge)
            .where(UserBadge.user_id == user_id)
            .order_by(UserBadge.awarded_at, UserBadge.code)
        ).all()
        result = []
        for row in rows:
            info = badges.BADGE_CATALOG.get(row.code)
            item = info.to_dict() if info else {"code": row.code}
            item["awarded_at"] = row.awarded_at.isoformat() if row.awarded_at else None
            result.append(item)
        return result


def badge_progress(engine: Engine, user_id: str) -> dict[str, dict]:
    """Progress toward every rule-based badge for *user_id*."""
    with Session(engine) as session:
        rows = session.execute(
            select(LedgerEntry.event_type, func.count().label("cnt"))
            .where(
                LedgerEntry.user_id == user_id,
                LedgerEntry.entry_type == EntryType.EARNED.value,
                LedgerEntry.event_type.isnot(None),
            )
            .group_by(LedgerEntry.event_type)
        ).all()
        held = set(session.scalars(
            select(UserBadge.code).where(UserBadge.user_id == user_id)
        ).all())

    counts = {row.event_type: row.cnt for row in rows}
    return badges.badge_progress(counts, held)
