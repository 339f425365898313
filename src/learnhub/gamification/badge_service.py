"""Badge award service with duplicate prevention and notification."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.db.models import Badge, UserBadge
from learnhub.notifications.service import NotificationType, create_notification

logger = logging.getLogger(__name__)

QUICK_STARTER = "quick_starter"
TEAM_PLAYER = "team_player"
CHALLENGE_CHAMPION = "challenge_champion"


async def get_badge_by_slug(db: AsyncSession, slug: str) -> Badge | None:
    """Fetch a badge definition by slug."""
    result = await db.execute(select(Badge).where(Badge.slug == slug))
    return result.scalar_one_or_none()


async def has_badge(db: AsyncSession, user_id: int, badge_id: int) -> bool:
    """Check if user already has a specific badge."""
    result = await db.execute(
        select(UserBadge.id).where(
            UserBadge.user_id == user_id,
            UserBadge.badge_id == badge_id,
        )
    )
    return result.first() is not None


async def award_badge(db: AsyncSession, user_id: int, badge_slug: str) -> bool:
    """Award a badge to a user.

    Returns True if awarded, False if already earned or badge not found.
    The insert runs in a savepoint so a concurrent duplicate leaves the
    caller's transaction intact.
    """
    badge = await get_badge_by_slug(db, badge_slug)
    if badge is None:
        logger.warning("Badge not found: %s", badge_slug)
        return False

    if await has_badge(db, user_id, badge.id):
        return False

    try:
        async with db.begin_nested():
            db.add(UserBadge(user_id=user_id, badge_id=badge.id, earned_at=datetime.now(UTC)))
    except IntegrityError:
        logger.info("Badge %s already awarded to user %s", badge_slug, user_id)
        return False

    await create_notification(
        db,
        user_id,
        NotificationType.BADGE_EARNED,
        title=f'Badge Earned: "{badge.name}"',
        message=badge.description,
        related_entity_type="badge",
        related_entity_id=badge.id,
    )
    logger.info("Awarded badge %s to user %s", badge_slug, user_id)
    return True


async def get_user_badges(db: AsyncSession, user_id: int, limit: int | None = None) -> list[tuple[Badge, datetime]]:
    """Badges earned by a user, newest first."""
    stmt = (
        select(Badge, UserBadge.earned_at)
        .join(UserBadge, UserBadge.badge_id == Badge.id)
        .where(UserBadge.user_id == user_id)
        .order_by(UserBadge.earned_at.desc(), UserBadge.id.desc())
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return [(row[0], row[1]) for row in result.all()]
