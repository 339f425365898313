"""Badge seed data."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.db.models import Badge

logger = logging.getLogger(__name__)

BADGE_SEED_DATA: list[dict[str, str]] = [
    {
        "slug": "quick_starter",
        "name": "Quick Starter",
        "description": "Completed your first learning session",
        "image_url": "/badges/quick-starter.svg",
    },
    {
        "slug": "team_player",
        "name": "Team Player",
        "description": "Joined your first team",
        "image_url": "/badges/team-player.svg",
    },
    {
        "slug": "challenge_champion",
        "name": "Challenge Champion",
        "description": "Completed a challenge",
        "image_url": "/badges/challenge-champion.svg",
    },
]


async def seed_badges(db: AsyncSession) -> int:
    """Upsert all badge definitions by slug. Returns number of badges seeded."""
    seeded = 0
    for badge_data in BADGE_SEED_DATA:
        result = await db.execute(select(Badge).where(Badge.slug == badge_data["slug"]))
        badge = result.scalar_one_or_none()
        if badge is None:
            db.add(Badge(**badge_data))
        else:
            badge.name = badge_data["name"]
            badge.description = badge_data["description"]
            badge.image_url = badge_data["image_url"]
        seeded += 1

    await db.commit()
    logger.info("Seeded %d badge definitions", seeded)
    return seeded
