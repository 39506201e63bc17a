"""
clubledger.services.reconciliation_service — Balance Reconciliation
====================================================================

Validates the materialised ``users.points`` / ``users.credit_balance``
counters against the ledger they summarise.

How it works:
    1. ``SUM(amount)`` from ``ledger_entries`` grouped by (user_id, currency).
    2. Compare against the stored balance column for every user.
    3. Report every mismatch and log a warning.

Nothing is rewritten.  Drift means a write bypassed the ledger, so the fix
is a deliberate ``admin_adjust`` entry, not a silent overwrite.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session

from clubledger.database.models import Currency, LedgerEntry, User

logger = logging.getLogger(__name__)


def reconcile_balances(engine: Engine) -> dict:
    """Compare every balance with its ledger sum.

    Returns ``{"checked": N, "mismatched": M, "mismatches": [...], "timestamp": ...}``.
    """
    mismatches: list[dict] = []

    with Session(engine) as session:
        # Ground truth: SUM(amount) per (user_id, currency)
        truth_rows = session.execute(
            select(
                LedgerEntry.user_id,
                LedgerEntry.currency,
                func.coalesce(func.sum(LedgerEntry.amount), 0).label("actual"),
            )
            .group_by(LedgerEntry.user_id, LedgerEntry.currency)
        ).all()
        truth_map: dict[tuple[str, str], int] = {
            (row.user_id, row.currency): int(row.actual) for row in truth_rows
        }

        users = session.execute(
            select(User.id, User.points, User.credit_balance)
        ).all()

    checked = 0
    for user in users:
        for currency, stored in (
            (Currency.POINTS.value, user.points),
            (Currency.CREDITS.value, user.credit_balance),
        ):
            checked += 1
            actual = truth_map.get((user.id, currency), 0)
            if stored != actual:
                mismatches.append({
                    "user_id": user.id,
                    "currency": currency,
                    "stored": stored,
                    "ledger_sum": actual,
                    "diff": stored - actual,
                })

    if mismatches:
        logger.warning(
            "Balance reconciliation: %d/%d balances drifted from the ledger: %s",
            len(mismatches), checked, mismatches,
        )
    else:
        logger.info("Balance reconciliation: all %d balances match", checked)

    return {
        "checked": checked,
        "mismatched": len(mismatches),
        "mismatches": mismatches,
        "timestamp": datetime.now(UTC).isoformat(),
    }
