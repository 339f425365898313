"""Challenges: listing with per-user progress, creation, joining and progress updates."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.db.models import Challenge, Team, UserChallenge
from learnhub.errors import NotFoundError, ValidationFailedError
from learnhub.gamification.badge_service import CHALLENGE_CHAMPION, award_badge
from learnhub.notifications.service import NotificationType, create_notification

logger = logging.getLogger(__name__)


@dataclass
class ProgressResult:
    user_challenge: UserChallenge
    challenge: Challenge
    newly_completed: bool
    badge_awarded: bool


async def get_challenge(db: AsyncSession, challenge_id: int) -> Challenge:
    result = await db.execute(select(Challenge).where(Challenge.id == challenge_id))
    challenge = result.scalar_one_or_none()
    if challenge is None:
        msg = "Challenge not found"
        raise NotFoundError(msg)
    return challenge


async def get_user_challenge(db: AsyncSession, user_id: int, challenge_id: int) -> UserChallenge | None:
    result = await db.execute(
        select(UserChallenge).where(
            UserChallenge.user_id == user_id,
            UserChallenge.challenge_id == challenge_id,
        )
    )
    return result.scalar_one_or_none()


async def list_challenges(db: AsyncSession, user_id: int) -> list[tuple[Challenge, UserChallenge | None]]:
    """Active challenges ordered by reward (lowest first) with the caller's progress row."""
    result = await db.execute(
        select(Challenge, UserChallenge)
        .outerjoin(
            UserChallenge,
            (UserChallenge.challenge_id == Challenge.id) & (UserChallenge.user_id == user_id),
        )
        .where(Challenge.is_active.is_(True))
        .order_by(Challenge.reward_points.asc(), Challenge.id.asc())
    )
    return [(row[0], row[1]) for row in result.all()]


async def create_challenge(
    db: AsyncSession,
    title: str,
    description: str,
    goal_target: int = 1,
    reward_points: int = 100,
    team_id: int | None = None,
) -> Challenge:
    """Create an active challenge.

    Raises:
        ValidationFailedError: blank title/description or bad numbers.
        NotFoundError: unknown team.
    """
    title = title.strip()
    description = description.strip()
    if not title or not description:
        msg = "Title and description are required"
        raise ValidationFailedError(msg)
    if goal_target < 1:
        msg = "Goal target must be at least 1"
        raise ValidationFailedError(msg)
    if reward_points < 0:
        msg = "Reward points cannot be negative"
        raise ValidationFailedError(msg)
    if team_id is not None:
        team = await db.get(Team, team_id)
        if team is None:
            msg = "Team not found"
            raise NotFoundError(msg)

    challenge = Challenge(
        title=title,
        description=description,
        goal_target=goal_target,
        reward_points=reward_points,
        team_id=team_id,
        is_active=True,
        created_at=datetime.now(UTC),
    )
    db.add(challenge)
    await db.flush()
    logger.info("Challenge %s created", challenge.id)
    return challenge


async def join_challenge(db: AsyncSession, user_id: int, challenge_id: int) -> UserChallenge:
    """Start tracking a challenge for the user at progress 0."""
    challenge = await get_challenge(db, challenge_id)
    if not challenge.is_active:
        msg = "Challenge is not active"
        raise ValidationFailedError(msg)
    if await get_user_challenge(db, user_id, challenge_id) is not None:
        msg = "Already joined this challenge"
        raise ValidationFailedError(msg)

    user_challenge = UserChallenge(user_id=user_id, challenge_id=challenge_id, progress=0, completed=False)
    db.add(user_challenge)
    await db.flush()
    return user_challenge


async def update_progress(db: AsyncSession, user_id: int, challenge_id: int, progress: int) -> ProgressResult:
    """Upsert the user's progress on a challenge.

    Reaching the goal marks the row completed; the first completion awards the
    Challenge Champion badge and sends a CHALLENGE_COMPLETE notification.
    """
    if progress < 0:
        msg = "Progress cannot be negative"
        raise ValidationFailedError(msg)

    challenge = await get_challenge(db, challenge_id)
    user_challenge = await get_user_challenge(db, user_id, challenge_id)
    was_completed = bool(user_challenge and user_challenge.completed)

    if user_challenge is None:
        user_challenge = UserChallenge(user_id=user_id, challenge_id=challenge_id)
        db.add(user_challenge)

    completed = progress >= challenge.goal_target
    user_challenge.progress = progress
    user_challenge.completed = completed
    if completed:
        if user_challenge.completed_at is None:
            user_challenge.completed_at = datetime.now(UTC)
    else:
        user_challenge.completed_at = None
    await db.flush()

    newly_completed = completed and not was_completed
    badge_awarded = False
    if newly_completed:
        badge_awarded = await award_badge(db, user_id, CHALLENGE_CHAMPION)
        await create_notification(
            db,
            user_id,
            NotificationType.CHALLENGE_COMPLETE,
            title="Challenge completed",
            message=f'You completed "{challenge.title}" and earned {challenge.reward_points} points',
            related_entity_type="challenge",
            related_entity_id=challenge.id,
        )

    return ProgressResult(
        user_challenge=user_challenge,
        challenge=challenge,
        newly_completed=newly_completed,
        badge_awarded=badge_awarded,
    )
