"""Profile read/update."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.db.models import Badge, ParticipantStatus, SessionParticipant, User, UserBadge
from learnhub.errors import ValidationFailedError
from learnhub.gamification.badge_service import get_user_badges

logger = logging.getLogger(__name__)

RECENT_BADGES_LIMIT = 6


@dataclass
class ProfileData:
    user: User
    completed_sessions: int
    earned_badges: int
    recent_badges: list[tuple[Badge, datetime]] = field(default_factory=list)


async def get_profile(db: AsyncSession, user: User) -> ProfileData:
    completed = await db.execute(
        select(func.count())
        .select_from(SessionParticipant)
        .where(
            SessionParticipant.user_id == user.id,
            SessionParticipant.status == ParticipantStatus.COMPLETED.value,
        )
    )
    earned = await db.execute(select(func.count()).select_from(UserBadge).where(UserBadge.user_id == user.id))
    return ProfileData(
        user=user,
        completed_sessions=completed.scalar_one(),
        earned_badges=earned.scalar_one(),
        recent_badges=await get_user_badges(db, user.id, limit=RECENT_BADGES_LIMIT),
    )


async def update_profile(db: AsyncSession, user: User, name: str | None, bio: str | None) -> User:
    """Set name and bio. A blank bio clears it."""
    name = (name or "").strip()
    if not name:
        msg = "Name is required"
        raise ValidationFailedError(msg)
    user.name = name
    user.bio = (bio or "").strip() or None
    await db.flush()
    logger.info("Profile updated for user %d", user.id)
    return user
