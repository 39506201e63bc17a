"""
clubledger.services.ledger_service — Award / Spend / Purchase / Refund
=======================================================================

Shared service module callable by HTTP handlers, webhook handlers and
internal triggers.  Every operation is one transaction: the balance update,
the ledger append and the outbox notification commit together or not at
all.

Two layers:

* ``apply_*`` / :func:`refund` take a live :class:`Session` and never
  commit, so the redemption state machine can compose them with its own
  writes in one transaction.
* :func:`award`, :func:`spend`, :func:`purchase`, :func:`admin_adjust`
  take the :class:`Engine`, open a session, and commit.

Idempotent writes (payments, keyed awards) follow the SAVEPOINT +
``IntegrityError`` pattern on the unique ``idempotency_key`` index: the
store, not a prior SELECT, decides which of two concurrent replays wins.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import Engine, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clubledger.database.models import (
    AdminActionType,
    AdminLog,
    Currency,
    EntryType,
    LedgerEntry,
    User,
    UserBadge,
)
from clubledger.engine.badges import check_badges
from clubledger.engine.outcomes import (
    BalanceAdjustment,
    BalanceChange,
    InsufficientBalance,
    NotFound,
    NotPermitted,
    is_failure,
)
from clubledger.engine.refs import LedgerRef
from clubledger.engine.reputation import calculate_reputation, points_for
from clubledger.services import badge_service
from clubledger.services.balance_service import adjust_balance, get_balance
from clubledger.services.notification_outbox import NotificationKind, emit

logger = logging.getLogger(__name__)

SPEND_CAUSES: frozenset[EntryType] = frozenset({
    EntryType.SPENT,
    EntryType.REWARD_REDEEMED,
    EntryType.BOOST_PITCH,
    EntryType.SPONSOR_CLUB,
})


def purchase_key(external_payment_id: str) -> str:
    """Idempotency key under which a provider payment is recorded."""
    return f"purchase:{external_payment_id}"


# ---------------------------------------------------------------------------
# Session-level primitives
# ---------------------------------------------------------------------------
def append_entry(
    session: Session,
    *,
    user_id: str,
    currency: str,
    entry_type: str,
    amount: int,
    adjustment: BalanceAdjustment,
    event_type: str | None = None,
    ref: LedgerRef | None = None,
    idempotency_key: str | None = None,
    description: str | None = None,
) -> LedgerEntry:
    """Insert one ledger row mirroring *adjustment* and flush it."""
    entry = LedgerEntry(
        user_id=user_id,
        currency=Currency(currency).value,
        entry_type=EntryType(entry_type).value,
        event_type=event_type,
        amount=amount,
        balance_before=adjustment.before,
        balance_after=adjustment.after,
        idempotency_key=idempotency_key,
        description=description,
    )
    entry.ref = ref
    session.add(entry)
    session.flush()
    return entry


def find_by_key(session: Session, idempotency_key: str) -> LedgerEntry | None:
    return session.scalar(
        select(LedgerEntry).where(LedgerEntry.idempotency_key == idempotency_key)
    )


def apply_credit(
    session: Session,
    user_id: str,
    currency: str,
    amount: int,
    entry_type: str,
    *,
    event_type: str | None = None,
    ref: LedgerRef | None = None,
    idempotency_key: str | None = None,
    description: str | None = None,
) -> BalanceChange | NotFound:
    """Increase a balance by *amount* (≥ 0) and append the matching entry."""
    if amount < 0:
        raise ValueError(f"credit amount must be non-negative, got {amount}")

    adjustment = adjust_balance(session, user_id, currency, amount)
    if isinstance(adjustment, NotFound):
        return adjustment

    entry = append_entry(
        session,
        user_id=user_id,
        currency=currency,
        entry_type=entry_type,
        amount=amount,
        adjustment=adjustment,
        event_type=event_type,
        ref=ref,
        idempotency_key=idempotency_key,
        description=description,
    )
    return BalanceChange(user_id, str(currency), adjustment.after, entry)


def apply_spend(
    session: Session,
    user_id: str,
    amount: int,
    cause: str,
    ref: LedgerRef | None,
    *,
    currency: str = Currency.CREDITS,
    description: str | None = None,
) -> BalanceChange | InsufficientBalance | NotFound:
    """Conditionally decrease a balance and append a negative entry.

    Nothing is written when the balance does not cover *amount*.
    """
    if amount <= 0:
        raise ValueError(f"spend amount must be positive, got {amount}")
    if EntryType(cause) not in SPEND_CAUSES:
        raise ValueError(f"{cause} is not a spend cause")

    adjustment = adjust_balance(session, user_id, currency, -amount)
    if is_failure(adjustment):
        return adjustment

    entry = append_entry(
        session,
        user_id=user_id,
        currency=currency,
        entry_type=cause,
        amount=-amount,
        adjustment=adjustment,
        ref=ref,
        description=description,
    )
    return BalanceChange(user_id, str(currency), adjustment.after, entry)


def refund(
    session: Session,
    user_id: str,
    amount: int,
    cause: str,
    ref: LedgerRef,
    *,
    currency: str = Currency.POINTS,
    description: str | None = None,
) -> BalanceChange | NotFound:
    """Give back a previous spend inside the caller's transaction.

    Used by the redemption state machine on decline/cancel; *ref* points at
    the redemption being unwound.
    """
    return apply_credit(
        session,
        user_id,
        currency,
        amount,
        cause,
        ref=ref,
        description=description,
    )


def _replay(session: Session, entry: LedgerEntry) -> BalanceChange:
    balance = get_balance(session, entry.user_id, entry.currency)
    if isinstance(balance, NotFound):
        balance = entry.balance_after
    return BalanceChange(entry.user_id, entry.currency, balance, entry, replayed=True)


def _update_reputation(session: Session, user_id: str, points: int) -> None:
    session.execute(
        update(User)
        .where(User.id == user_id)
        .values(reputation=calculate_reputation(points))
        .execution_options(synchronize_session=False)
    )


def _keyed_credit(
    session: Session,
    user_id: str,
    currency: str,
    amount: int,
    entry_type: str,
    idempotency_key: str,
    **kwargs,
) -> BalanceChange | NotFound | NotPermitted:
    """Apply a credit at most once per *idempotency_key*."""
    existing = find_by_key(session, idempotency_key)
    if existing is None:
        try:
            with session.begin_nested():   # SAVEPOINT
                return apply_credit(
                    session, user_id, currency, amount, entry_type,
                    idempotency_key=idempotency_key, **kwargs,
                )
        except IntegrityError:
            # A concurrent replay committed first; its savepoint won the key.
            existing = find_by_key(session, idempotency_key)
            if existing is None:
                raise

    if existing.user_id != user_id:
        logger.warning(
            "Idempotency key %s belongs to user %s, not %s",
            idempotency_key, existing.user_id, user_id,
        )
        return NotPermitted("idempotency key already used by another account")

    logger.info("Replay of %s ignored (entry %s)", idempotency_key, existing.id)
    return _replay(session, existing)


# ---------------------------------------------------------------------------
# Engine-level operations
# ---------------------------------------------------------------------------
def award(
    engine: Engine,
    user_id: str,
    event_type: str,
    amount: int | None = None,
    ref: LedgerRef | None = None,
    *,
    currency: str = Currency.POINTS,
    idempotency_key: str | None = None,
    point_values: dict[str, int] | None = None,
) -> BalanceChange | NotFound | NotPermitted:
    """Award points (or credits) for a platform event.

    *amount* defaults to the configured value for *event_type*.  No
    deduplication happens unless *idempotency_key* is given.
    """
    change, _ = award_points_and_badges(
        engine,
        user_id,
        event_type,
        amount,
        ref,
        currency=currency,
        idempotency_key=idempotency_key,
        point_values=point_values,
        check_badges_after=False,
    )
    return change


def award_points_and_badges(
    engine: Engine,
    user_id: str,
    event_type: str,
    amount: int | None = None,
    ref: LedgerRef | None = None,
    *,
    currency: str = Currency.POINTS,
    idempotency_key: str | None = None,
    point_values: dict[str, int] | None = None,
    check_badges_after: bool = True,
) -> tuple[BalanceChange | NotFound | NotPermitted, list[str]]:
    """Award for *event_type*, then grant any badges it unlocks.

    Returns (outcome, newly_granted_badge_codes).  Replays grant nothing.
    """
    if amount is None:
        amount = points_for(event_type, point_values)

    with Session(engine, expire_on_commit=False) as session:
        kwargs = {
            "event_type": str(event_type),
            "ref": ref,
            "description": f"{event_type} +{amount}",
        }
        if idempotency_key is not None:
            outcome = _keyed_credit(
                session, user_id, currency, amount, EntryType.EARNED,
                idempotency_key, **kwargs,
            )
        else:
            outcome = apply_credit(session, user_id, currency, amount, EntryType.EARNED, **kwargs)

        if is_failure(outcome):
            session.rollback()
            return outcome, []
        if outcome.replayed:
            session.commit()
            return outcome, []

        if Currency(currency) == Currency.POINTS:
            _update_reputation(session, user_id, outcome.balance)

        emit(session, user_id, NotificationKind.POINTS_EARNED, {
            "event_type": str(event_type),
            "amount": amount,
            "currency": str(currency),
            "balance": outcome.balance,
        })

        granted: list[str] = []
        if check_badges_after:
            counts = _earned_event_counts(session, user_id)
            held = set(session.scalars(
                select(UserBadge.code).where(UserBadge.user_id == user_id)
            ).all())
            for code in check_badges(counts, held, event_type=str(event_type)):
                if badge_service.grant_badge(session, user_id, code):
                    granted.append(code)

        session.commit()

    logger.info(
        "Awarded %d %s to %s for %s (balance %d)",
        amount, currency, user_id, event_type, outcome.balance,
    )
    return outcome, granted


def _earned_event_counts(session: Session, user_id: str) -> dict[str, int]:
    """Build a mapping of event_type → number of EARNED entries."""
    rows = session.execute(
        select(LedgerEntry.event_type, func.count().label("cnt"))
        .where(
            LedgerEntry.user_id == user_id,
            LedgerEntry.entry_type == EntryType.EARNED.value,
            LedgerEntry.event_type.isnot(None),
        )
        .group_by(LedgerEntry.event_type)
    ).all()
    return {row.event_type: row.cnt for row in rows}


def spend(
    engine: Engine,
    user_id: str,
    amount: int,
    cause: str,
    ref: LedgerRef | None,
    *,
    currency: str = Currency.CREDITS,
    description: str | None = None,
) -> BalanceChange | InsufficientBalance | NotFound:
    """Spend *amount* against *ref* (e.g. the pitch being boosted)."""
    with Session(engine, expire_on_commit=False) as session:
        outcome = apply_spend(
            session, user_id, amount, cause, ref,
            currency=currency, description=description,
        )
        if is_failure(outcome):
            session.rollback()
            return outcome

        emit(session, user_id, NotificationKind.CREDITS_SPENT, {
            "cause": str(cause),
            "amount": amount,
            "currency": str(currency),
            "ref": ref.to_dict() if ref else None,
            "balance": outcome.balance,
        })
        session.commit()
        return outcome


def purchase(
    engine: Engine,
    user_id: str,
    amount: int,
    external_payment_id: str,
    description: str | None = None,
    *,
    currency: str = Currency.CREDITS,
) -> BalanceChange | NotFound | NotPermitted:
    """Credit a confirmed provider payment exactly once.

    A second call with the same *external_payment_id* (webhook redelivery,
    duplicate confirmation) returns the first call's entry with
    ``replayed=True`` and credits nothing.
    """
    if amount <= 0:
        raise ValueError(f"purchase amount must be positive, got {amount}")

    with Session(engine, expire_on_commit=False) as session:
        outcome = _keyed_credit(
            session,
            user_id,
            currency,
            amount,
            EntryType.PURCHASE,
            purchase_key(external_payment_id),
            ref=LedgerRef.payment(external_payment_id),
            description=description or f"Purchased {amount} credits",
        )
        if is_failure(outcome):
            session.rollback()
            return outcome

        if not outcome.replayed:
            emit(session, user_id, NotificationKind.CREDITS_PURCHASED, {
                "amount": amount,
                "currency": str(currency),
                "payment_id": external_payment_id,
                "balance": outcome.balance,
            })
            logger.info(
                "Purchase %s credited %d %s to %s",
                external_payment_id, amount, currency, user_id,
            )
        session.commit()
        return outcome


def find_purchase(engine: Engine, external_payment_id: str) -> LedgerEntry | None:
    """Look up the entry recorded for a payment (timed-out callers re-query here)."""
    with Session(engine, expire_on_commit=False) as session:
        entry = find_by_key(session, purchase_key(external_payment_id))
        if entry is not None:
            session.expunge(entry)
        return entry


def admin_adjust(
    engine: Engine,
    user_id: str,
    currency: str,
    delta: int,
    *,
    admin_id: str,
    reason: str,
) -> BalanceChange | InsufficientBalance | NotFound:
    """Manual correction.  Negative deltas are conditional like any spend."""
    if delta == 0:
        raise ValueError("adjustment delta must be non-zero")

    with Session(engine, expire_on_commit=False) as session:
        adjustment = adjust_balance(session, user_id, currency, delta)
        if is_failure(adjustment):
            session.rollback()
            return adjustment

        entry = append_entry(
            session,
            user_id=user_id,
            currency=currency,
            entry_type=EntryType.ADMIN_ADJUSTMENT,
            amount=delta,
            adjustment=adjustment,
            ref=LedgerRef.admin_action(admin_id),
            description=reason,
        )
        session.add(AdminLog(
            actor_id=admin_id,
            action_type=AdminActionType.BALANCE_ADJUSTMENT.value,
            target_table="users",
            target_id=user_id,
            before_snapshot={"currency": str(currency), "balance": adjustment.before},
            after_snapshot={"currency": str(currency), "balance": adjustment.after},
            reason=reason,
        ))
        emit(session, user_id, NotificationKind.BALANCE_ADJUSTED, {
            "currency": str(currency),
            "delta": delta,
            "balance": adjustment.after,
            "reason": reason,
        })
        session.commit()

    logger.info(
        "Admin %s adjusted %s %s by %+d (%s)",
        admin_id, user_id, currency, delta, reason,
    )
    return BalanceChange(user_id, str(currency), adjustment.after, entry)


def history(
    engine: Engine,
    user_id: str,
    currency: str | None = None,
    limit: int = 50,
) -> list[LedgerEntry]:
    """Newest-first ledger entries for *user_id*."""
    with Session(engine, expire_on_commit=False) as session:
        stmt = select(LedgerEntry).where(LedgerEntry.user_id == user_id)
        if currency is not None:
            stmt = stmt.where(LedgerEntry.currency == Currency(currency).value)
        rows = session.scalars(
            stmt.order_by(LedgerEntry.created_at.desc(), LedgerEntry.id).limit(limit)
        ).all()
        session.expunge_all()
        return list(rows)


def get_account(engine: Engine, user_id: str) -> User | None:
    """Fetch the user row with both balances (detached)."""
    with Session(engine, expire_on_commit=False) as session:
        user = session.get(User, user_id)
        if user is not None:
            session.expunge(user)
        return user


def entry_to_dict(entry: LedgerEntry) -> dict:
    """JSON-serializable view of a ledger entry."""
    ref = entry.ref
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "currency": entry.currency,
        "type": entry.entry_type,
        "event_type": entry.event_type,
        "amount": entry.amount,
        "balance_before": entry.balance_before,
        "balance_after": entry.balance_after,
        "ref": ref.to_dict() if ref else None,
        "description": entry.description,
        "created_at": _iso(entry.created_at),
    }


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat()
