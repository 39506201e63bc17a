"""
clubledger.engine.refs — Tagged references to originating entities
====================================================================

Ledger entries point back at whatever caused them (a redemption, a boosted
pitch, a provider payment).  The reference is a ``(kind, id)`` pair where
``kind`` is a closed enum, so consumers branch over known kinds instead of
trusting a free-form string tag.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

__all__ = ["RefKind", "LedgerRef"]


class RefKind(enum.StrEnum):
    """Every entity kind a ledger entry may reference."""
    REDEMPTION = "REDEMPTION"
    REWARD = "REWARD"
    PITCH = "PITCH"
    SPONSORSHIP = "SPONSORSHIP"
    PAYMENT = "PAYMENT"
    ADMIN_ACTION = "ADMIN_ACTION"
    SWAP = "SWAP"
    POLL = "POLL"
    CLUB = "CLUB"
    REVIEW = "REVIEW"


@dataclass(frozen=True, slots=True)
class LedgerRef:
    """Polymorphic pointer stored as ``ref_type``/``ref_id`` columns."""

    kind: RefKind
    id: str

    def __post_init__(self) -> None:
        # Accept raw strings from callers and the database alike
        if not isinstance(self.kind, RefKind):
            object.__setattr__(self, "kind", RefKind(self.kind))
        if not self.id:
            raise ValueError("LedgerRef id must be non-empty")

    @classmethod
    def redemption(cls, redemption_id: str) -> LedgerRef:
        return cls(RefKind.REDEMPTION, redemption_id)

    @classmethod
    def reward(cls, reward_item_id: str) -> LedgerRef:
        return cls(RefKind.REWARD, reward_item_id)

    @classmethod
    def pitch(cls, pitch_id: str) -> LedgerRef:
        return cls(RefKind.PITCH, pitch_id)

    @classmethod
    def sponsorship(cls, sponsorship_id: str) -> LedgerRef:
        return cls(RefKind.SPONSORSHIP, sponsorship_id)

    @classmethod
    def payment(cls, external_payment_id: str) -> LedgerRef:
        return cls(RefKind.PAYMENT, external_payment_id)

    @classmethod
    def admin_action(cls, admin_id: str) -> LedgerRef:
        return cls(RefKind.ADMIN_ACTION, admin_id)

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind.value, "id": self.id}

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"
