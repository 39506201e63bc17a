"""
clubledger.engine.transitions — Redemption lifecycle table
============================================================

Points are deducted and inventory reserved when a redemption is created,
so later transitions only ever finalize (APPROVED/FULFILLED) or release
(DECLINED/CANCELLED).

This module is pure calculation — no database I/O.
"""

from __future__ import annotations

from clubledger.database.models import RedemptionStatus

__all__ = [
    "LEGAL_TRANSITIONS",
    "TERMINAL_STATUSES",
    "RELEASING_STATUSES",
    "is_legal",
]

LEGAL_TRANSITIONS: dict[RedemptionStatus, frozenset[RedemptionStatus]] = {
    RedemptionStatus.PENDING: frozenset({
        RedemptionStatus.APPROVED,
        RedemptionStatus.DECLINED,
        RedemptionStatus.FULFILLED,
        RedemptionStatus.CANCELLED,
    }),
    RedemptionStatus.APPROVED: frozenset({
        RedemptionStatus.DECLINED,
        RedemptionStatus.FULFILLED,
        RedemptionStatus.CANCELLED,
    }),
    RedemptionStatus.DECLINED: frozenset(),
    RedemptionStatus.FULFILLED: frozenset(),
    RedemptionStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES: frozenset[RedemptionStatus] = frozenset(
    status for status, targets in LEGAL_TRANSITIONS.items() if not targets
)

# Targets that hand reserved inventory and spent points back
RELEASING_STATUSES: frozenset[RedemptionStatus] = frozenset({
    RedemptionStatus.DECLINED,
    RedemptionStatus.CANCELLED,
})


def is_legal(current: str, target: str) -> bool:
    """Return True if *current* → *target* is in the transition table."""
    return RedemptionStatus(target) in LEGAL_TRANSITIONS[RedemptionStatus(current)]

