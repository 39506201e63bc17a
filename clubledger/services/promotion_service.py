"""
clubledger.services.promotion_service — Credit sinks
=====================================================

Authors spend credits to promote their own pitches:

* **Boost** — flags the pitch as boosted and pushes ``boost_ends_at`` out by
  ``duration_days`` from whichever is later, now or the current end.
* **Sponsorship** — funds a targeted club sponsorship window.

The credit spend and the pitch/sponsorship write share one transaction.
The spend runs first, so a competing boost of the same pitch is already
queued behind the balance row lock when the boost end is read.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from clubledger.config import LedgerConfig
from clubledger.database.models import Currency, EntryType, Pitch, SponsoredPitch
from clubledger.engine.outcomes import (
    InsufficientBalance,
    NotFound,
    NotPermitted,
    PromotionOutcome,
    is_failure,
)
from clubledger.engine.refs import LedgerRef
from clubledger.services.ledger_service import apply_spend
from clubledger.services.notification_outbox import NotificationKind, emit

logger = logging.getLogger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _own_pitch(session: Session, pitch_id: str, user_id: str) -> Pitch | NotFound | NotPermitted:
    pitch = session.get(Pitch, pitch_id)
    if pitch is None:
        return NotFound("pitch", pitch_id)
    if pitch.author_id != user_id:
        return NotPermitted("You can only promote your own pitches")
    return pitch


def boost_pitch(
    engine: Engine,
    user_id: str,
    pitch_id: str,
    amount: int,
    duration_days: int = 7,
    *,
    config: LedgerConfig | None = None,
) -> PromotionOutcome | NotFound | NotPermitted | InsufficientBalance:
    """Spend *amount* credits to boost *pitch_id* for *duration_days*.

    Raises
    ------
    ValueError
        If *amount* or *duration_days* fall outside the configured limits.
    """
    cfg = config or LedgerConfig()
    if amount < cfg.boost_min_credits:
        raise ValueError(f"boost amount must be at least {cfg.boost_min_credits} credits")
    if not 1 <= duration_days <= cfg.boost_max_days:
        raise ValueError(f"boost duration must be 1-{cfg.boost_max_days} days")

    with Session(engine, expire_on_commit=False) as session:
        pitch = _own_pitch(session, pitch_id, user_id)
        if is_failure(pitch):
            return pitch

        spent = apply_spend(
            session,
            user_id,
            amount,
            EntryType.BOOST_PITCH,
            LedgerRef.pitch(pitch_id),
            currency=Currency.CREDITS,
            description=f'Boosted "{pitch.title}" for {duration_days} days',
        )
        if is_failure(spent):
            session.rollback()
            return spent

        session.refresh(pitch)
        now = datetime.now(UTC)
        current_end = _aware(pitch.boost_ends_at)
        start = current_end if current_end and current_end > now else now
        pitch.is_boosted = True
        pitch.boost_ends_at = start + timedelta(days=duration_days)
        session.flush()

        emit(session, user_id, NotificationKind.CREDITS_SPENT, {
            "cause": EntryType.BOOST_PITCH.value,
            "amount": amount,
            "currency": Currency.CREDITS.value,
            "ref": LedgerRef.pitch(pitch_id).to_dict(),
            "balance": spent.balance,
            "boost_ends_at": pitch.boost_ends_at.isoformat(),
        })
        session.commit()

    logger.info(
        "Pitch %s boosted by %s: %d credits, until %s",
        pitch_id, user_id, amount, pitch.boost_ends_at,
    )
    return PromotionOutcome(balance=spent.balance, entry=spent.entry, pitch=pitch)


def sponsor_pitch(
    engine: Engine,
    user_id: str,
    pitch_id: str,
    budget: int,
    duration_days: int = 30,
    *,
    target_genres: list[str] | None = None,
    min_member_count: int | None = None,
    max_member_count: int | None = None,
    target_frequency: str | None = None,
    config: LedgerConfig | None = None,
) -> PromotionOutcome | NotFound | NotPermitted | InsufficientBalance:
    """Fund a club sponsorship of *pitch_id* with *budget* credits.

    Raises
    ------
    ValueError
        If *budget* or *duration_days* fall outside the configured limits.
    """
    cfg = config or LedgerConfig()
    if budget < cfg.sponsorship_min_credits:
        raise ValueError(
            f"sponsorship budget must be at least {cfg.sponsorship_min_credits} credits"
        )
    if not 1 <= duration_days <= cfg.sponsorship_max_days:
        raise ValueError(f"sponsorship duration must be 1-{cfg.sponsorship_max_days} days")

    if (
        min_member_count is not None
        and max_member_count is not None
        and min_member_count > max_member_count
    ):
        return NotPermitted("min_member_count cannot be greater than max_member_count")

    with Session(engine, expire_on_commit=False) as session:
        pitch = _own_pitch(session, pitch_id, user_id)
        if is_failure(pitch):
            return pitch

        start = datetime.now(UTC)
        sponsorship = SponsoredPitch(
            user_id=user_id,
            pitch_id=pitch_id,
            target_genres=list(target_genres or []),
            min_member_count=min_member_count,
            max_member_count=max_member_count,
            target_frequency=target_frequency,
            budget=budget,
            start_date=start,
            end_date=start + timedelta(days=duration_days),
            is_active=True,
        )
        session.add(sponsorship)
        session.flush()

        spent = apply_spend(
            session,
            user_id,
            budget,
            EntryType.SPONSOR_CLUB,
            LedgerRef.sponsorship(sponsorship.id),
            currency=Currency.CREDITS,
            description=(
                f'Sponsored "{pitch.title}" to targeted clubs for {duration_days} days'
            ),
        )
        if is_failure(spent):
            session.rollback()
            return spent

        emit(session, user_id, NotificationKind.CREDITS_SPENT, {
            "cause": EntryType.SPONSOR_CLUB.value,
            "amount": budget,
            "currency": Currency.CREDITS.value,
            "ref": LedgerRef.sponsorship(sponsorship.id).to_dict(),
            "balance": spent.balance,
        })
        session.commit()

    logger.info(
        "Pitch %s sponsored by %s: %d credits for %d days",
        pitch_id, user_id, budget, duration_days,
    )
    return PromotionOutcome(
        balance=spent.balance, entry=spent.entry, pitch=pitch, sponsorship=sponsorship,
    )
