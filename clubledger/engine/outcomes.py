"""
clubledger.engine.outcomes — Typed results of core operations
================================================================

Business-rule violations are expected outcomes, so core operations return
them as values rather than raising.  Callers branch with ``isinstance`` (or
:func:`is_failure`) and the HTTP layer turns failures into structured
error bodies via :meth:`Failure.to_dict`.

Success values carry the resulting balance and the ledger entry that was
written (or, for an idempotent replay, the entry that already existed).
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from clubledger.database.models import (
        LedgerEntry,
        Pitch,
        RedemptionRequest,
        SponsoredPitch,
    )

__all__ = [
    "BalanceAdjustment",
    "BalanceChange",
    "RedemptionOutcome",
    "PromotionOutcome",
    "Failure",
    "InsufficientBalance",
    "OutOfStock",
    "InvalidTransition",
    "AlreadyProcessed",
    "NotFound",
    "NotPermitted",
    "StaleConflict",
    "is_failure",
]


# ---------------------------------------------------------------------------
# Success values
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class BalanceAdjustment:
    """Before/after snapshot of one atomic balance update."""

    before: int
    after: int


@dataclass(frozen=True, slots=True)
class BalanceChange:
    """Result of award/spend/purchase/refund/adjust.

    ``replayed`` is True when an idempotency key matched an existing entry
    and nothing new was written.
    """

    user_id: str
    currency: str
    balance: int
    entry: LedgerEntry
    replayed: bool = False


@dataclass(frozen=True, slots=True)
class RedemptionOutcome:
    """Result of a redemption creation or transition."""

    redemption: RedemptionRequest
    balance: int | None = None
    entry: LedgerEntry | None = None
    badge_granted: bool = False


@dataclass(frozen=True, slots=True)
class PromotionOutcome:
    """Result of spending credits on a boost or sponsorship."""

    balance: int
    entry: LedgerEntry
    pitch: Pitch | None = None
    sponsorship: SponsoredPitch | None = None


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------
class Failure:
    """Mixin for every non-success outcome."""

    __slots__ = ()
    code: ClassVar[str] = "FAILURE"

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code}
        for f in fields(self):  # type: ignore[arg-type]
            body[f.name] = getattr(self, f.name)
        return body


@dataclass(frozen=True, slots=True)
class InsufficientBalance(Failure):
    current: int
    required: int
    currency: str
    code: ClassVar[str] = "INSUFFICIENT_BALANCE"


@dataclass(frozen=True, slots=True)
class OutOfStock(Failure):
    reward_item_id: str
    code: ClassVar[str] = "OUT_OF_STOCK"


@dataclass(frozen=True, slots=True)
class InvalidTransition(Failure):
    from_status: str
    to_status: str
    code: ClassVar[str] = "INVALID_TRANSITION"


@dataclass(frozen=True, slots=True)
class AlreadyProcessed(Failure):
    redemption_id: str
    status: str
    code: ClassVar[str] = "ALREADY_PROCESSED"


@dataclass(frozen=True, slots=True)
class NotFound(Failure):
    kind: str
    id: str
    code: ClassVar[str] = "NOT_FOUND"


@dataclass(frozen=True, slots=True)
class NotPermitted(Failure):
    reason: str
    code: ClassVar[str] = "NOT_PERMITTED"


@dataclass(frozen=True, slots=True)
class StaleConflict(Failure):
    """A guarded write matched zero rows for an unexpected reason.

    The whole request may be retried from scratch.
    """

    kind: str
    id: str
    code: ClassVar[str] = "STALE_CONFLICT"


def is_failure(outcome: object) -> bool:
    return isinstance(outcome, Failure)
