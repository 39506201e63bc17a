"""
clubledger.database.seed — Default Reward Catalog Seeder
=========================================================

Baseline rewards inserted on first startup so the catalog is immediately
usable.  Idempotent — does nothing once any reward item exists, so admin
edits are never overwritten.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session

from clubledger.database.models import RewardItem, RewardType

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default reward catalog
# ---------------------------------------------------------------------------
DEFAULT_REWARDS: list[dict] = [
    {
        "name": "$5 Amazon / Kindle Gift Card",
        "description": "Redeem for a $5 Amazon or Kindle gift card to buy your next great read!",
        "points_cost": 500,
        "reward_type": RewardType.PLATFORM,
        "sort_order": 1,
    },
    {
        "name": "Free Ebook from Partner Author",
        "description": "Get a free ebook from one of our partnering authors.",
        "points_cost": 250,
        "reward_type": RewardType.AUTHOR_CONTRIBUTED,
        "copies_available": 100,
        "sort_order": 2,
    },
    {
        "name": "Club & Cover Badge Pack",
        "description": "Unlock exclusive profile badges to show off your reader achievements!",
        "points_cost": 100,
        "reward_type": RewardType.FEATURE,
        "badge_code": "CLUB_COVER_PACK",
        "sort_order": 3,
    },
    {
        "name": "Feature Your Book to Clubs (48 Hours)",
        "description": "Authors: get your book featured to all clubs for 48 hours.",
        "points_cost": 750,
        "reward_type": RewardType.FEATURE,
        "sort_order": 4,
    },
    {
        "name": "Bonus Points Multiplier (24 Hours)",
        "description": "Earn 2x points for all activities for the next 24 hours.",
        "points_cost": 300,
        "reward_type": RewardType.FEATURE,
        "sort_order": 5,
    },
]


def seed_reward_catalog(engine: Engine) -> int:
    """Insert :data:`DEFAULT_REWARDS` if the catalog is empty.

    Returns the number of reward items created.
    """
    with Session(engine) as session:
        existing = session.scalar(select(func.count()).select_from(RewardItem))
        if existing:
            logger.debug("Reward catalog already has %d items, skipping seed", existing)
            return 0

        for spec in DEFAULT_REWARDS:
            session.add(RewardItem(is_active=True, **spec))
        session.commit()

    logger.info("Seeded %d default reward items", len(DEFAULT_REWARDS))
    return len(DEFAULT_REWARDS)
