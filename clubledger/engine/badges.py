"""
clubledger.engine.badges — Badge catalog and earn rules
=========================================================

Badges are either earned from ledger activity (``BADGE_RULES``: N earned
entries of a given point event) or handed out as the fulfilment side effect
of a reward redemption (``RewardItem.badge_code``).

This module is pure calculation — the service layer supplies the event
counts and the set of badges already held.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from clubledger.database.models import PointEvent

__all__ = [
    "BadgeInfo",
    "BadgeRule",
    "BADGE_CATALOG",
    "BADGE_RULES",
    "check_badges",
    "badge_progress",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BadgeInfo:
    code: str
    name: str
    description: str
    category: str
    icon: str

    def to_dict(self) -> dict[str, str]:
        return {
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "icon": self.icon,
        }


@dataclass(frozen=True, slots=True)
class BadgeRule:
    """Earn *code* once the user has *threshold* EARNED entries of *event_type*."""

    code: str
    event_type: PointEvent
    threshold: int


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------
BADGE_CATALOG: dict[str, BadgeInfo] = {
    info.code: info
    for info in (
        # Reader
        BadgeInfo("FIRST_VOTE", "First Vote", "Cast your first vote in a poll", "READER", "Target"),
        BadgeInfo("BOOKWORM", "Bookworm", "Cast votes on 10 different polls", "READER", "BookOpen"),
        BadgeInfo("SOCIABLE", "Sociable", "Posted 20 messages in club rooms", "READER", "Users"),
        BadgeInfo("LOYAL_MEMBER", "Loyal Member", "Member of 3 clubs", "READER", "Sparkles"),
        # Host
        BadgeInfo("HOST_STARTER", "Host Starter", "Created a club", "HOST", "Users"),
        BadgeInfo("DECISIVE", "Decisive", "Completed 3 polls", "HOST", "Trophy"),
        # Author
        BadgeInfo("AUTHOR_LAUNCH", "Author Launch", "Created your first pitch", "AUTHOR", "Feather"),
        BadgeInfo("FAN_FAVORITE", "Fan Favorite", "Pitch selected by 3 different clubs", "AUTHOR", "Trophy"),
        BadgeInfo("SWAP_MASTER", "Swap Master", "Completed 5 swaps", "AUTHOR", "Repeat"),
        # Reward fulfilment
        BadgeInfo(
            "CLUB_COVER_PACK", "Club & Cover", "Unlocked the Club & Cover badge pack",
            "REWARD", "Award",
        ),
    )
}

BADGE_RULES: tuple[BadgeRule, ...] = (
    BadgeRule("FIRST_VOTE", PointEvent.VOTE_PARTICIPATION, 1),
    BadgeRule("BOOKWORM", PointEvent.VOTE_PARTICIPATION, 10),
    BadgeRule("SOCIABLE", PointEvent.MESSAGE_POSTED, 20),
    BadgeRule("LOYAL_MEMBER", PointEvent.JOIN_CLUB, 3),
    BadgeRule("HOST_STARTER", PointEvent.HOST_ACTION, 1),
    BadgeRule("AUTHOR_LAUNCH", PointEvent.PITCH_CREATED, 1),
    BadgeRule("FAN_FAVORITE", PointEvent.PITCH_SELECTED, 3),
    BadgeRule("SWAP_MASTER", PointEvent.SWAP_COMPLETED, 5),
)


def check_badges(
    event_counts: dict[str, int],
    earned_codes: set[str],
    event_type: str | None = None,
) -> list[str]:
    """Return badge codes newly earned given the current event counts.

    When *event_type* is given only rules for that event are evaluated,
    mirroring how awards only ever move one counter at a time.
    """
    newly_earned: list[str] = []
    for rule in BADGE_RULES:
        if rule.code in earned_codes:
            continue
        if event_type is not None and rule.event_type.value != event_type:
            continue
        if event_counts.get(rule.event_type.value, 0) >= rule.threshold:
            newly_earned.append(rule.code)

    if newly_earned:
        logger.debug("Badges earned: %s", newly_earned)
    return newly_earned


def badge_progress(event_counts: dict[str, int], earned_codes: set[str]) -> dict[str, dict]:
    """Per-badge progress toward each ledger-driven rule."""
    progress: dict[str, dict] = {}
    for rule in BADGE_RULES:
        current = event_counts.get(rule.event_type.value, 0)
        progress[rule.code] = {
            "current": min(current, rule.threshold),
            "required": rule.threshold,
            "complete": rule.code in earned_codes or current >= rule.threshold,
        }
    return progress
