"""
clubledger.services.balance_service — Balance Accessor
========================================================

Reads and atomically mutates the materialised ``points`` / ``credit_balance``
counters on ``users``.

A debit is one statement::

    UPDATE users SET points = points - :n
    WHERE id = :id AND points >= :n
    RETURNING points

Sufficiency is part of the WHERE clause, so two concurrent debits can never
both pass a check that only one of them can afford.  When zero rows come
back the row is re-read only to *report* why (missing user vs. short
balance), never to decide whether to write.

All functions take a live :class:`Session`; the caller owns the transaction.
"""

from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.orm import InstrumentedAttribute, Session

from clubledger.database.models import Currency, User
from clubledger.engine.outcomes import BalanceAdjustment, InsufficientBalance, NotFound

logger = logging.getLogger(__name__)

_BALANCE_COLUMNS: dict[Currency, InstrumentedAttribute[int]] = {
    Currency.POINTS: User.points,
    Currency.CREDITS: User.credit_balance,
}


def balance_column(currency: str) -> InstrumentedAttribute[int]:
    """The ``users`` column holding *currency*."""
    return _BALANCE_COLUMNS[Currency(currency)]


def get_balance(session: Session, user_id: str, currency: str) -> int | NotFound:
    """Current materialised balance, or :class:`NotFound` for unknown users."""
    value = session.scalar(select(balance_column(currency)).where(User.id == user_id))
    if value is None:
        return NotFound("user", user_id)
    return value


def adjust_balance(
    session: Session,
    user_id: str,
    currency: str,
    delta: int,
) -> BalanceAdjustment | InsufficientBalance | NotFound:
    """Atomically add *delta* to the balance and return the before/after pair.

    Negative deltas only apply when the current balance covers them; the
    condition is evaluated by the store in the same statement.
    """
    column = balance_column(currency)
    stmt = (
        update(User)
        .where(User.id == user_id)
        .values({column: column + delta})
        .returning(column)
        .execution_options(synchronize_session=False)
    )
    if delta < 0:
        stmt = stmt.where(column >= -delta)

    new_balance = session.execute(stmt).scalar_one_or_none()
    if new_balance is not None:
        return BalanceAdjustment(before=new_balance - delta, after=new_balance)

    current = get_balance(session, user_id, currency)
    if isinstance(current, NotFound):
        return current

    logger.info(
        "Insufficient %s for user %s: have %d, need %d",
        currency, user_id, current, -delta,
    )
    return InsufficientBalance(current=current, required=-delta, currency=str(currency))
