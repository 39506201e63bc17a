"""
clubledger.engine.reputation — Point values and reputation tiers
==================================================================

Single source of truth for how many points each platform event is worth
and how a point total maps to a reputation tier.
"""

from __future__ import annotations

from clubledger.database.models import PointEvent

__all__ = [
    "POINT_VALUES",
    "REPUTATION_LABELS",
    "calculate_reputation",
    "reputation_label",
    "points_for",
]

POINT_VALUES: dict[PointEvent, int] = {
    PointEvent.SWAP_VERIFIED: 50,
    PointEvent.ON_TIME_DELIVERY: 25,
    PointEvent.PITCH_SELECTED: 100,
    PointEvent.VOTE_PARTICIPATION: 3,
    PointEvent.REVIEW_VERIFIED: 10,
    PointEvent.SOCIAL_SHARE: 5,
    PointEvent.HOST_ACTION: 15,
    PointEvent.MESSAGE_POSTED: 1,
    PointEvent.PITCH_CREATED: 10,
    PointEvent.JOIN_CLUB: 5,
    PointEvent.SWAP_COMPLETED: 50,
}

# (minimum points, tier) — checked highest first
_REPUTATION_THRESHOLDS: tuple[tuple[int, int], ...] = (
    (1000, 5),
    (500, 4),
    (250, 3),
    (100, 2),
    (25, 1),
)

REPUTATION_LABELS: tuple[str, ...] = (
    "NEWCOMER",
    "BEGINNER",
    "INTERMEDIATE",
    "ADVANCED",
    "EXPERT",
    "LEGENDARY",
)


def points_for(event_type: str, overrides: dict[str, int] | None = None) -> int:
    """Points earned for *event_type*, honouring configured overrides."""
    event = PointEvent(event_type)
    if overrides and event.value in overrides:
        return int(overrides[event.value])
    return POINT_VALUES[event]


def calculate_reputation(points: int) -> int:
    """Map a point total to a 0–5 reputation tier."""
    for minimum, tier in _REPUTATION_THRESHOLDS:
        if points >= minimum:
            return tier
    return 0


def reputation_label(reputation: int) -> str:
    return REPUTATION_LABELS[max(0, min(reputation, len(REPUTATION_LABELS) - 1))]
