"""Challenge and badge API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.auth.dependencies import get_current_user
from learnhub.database import get_session
from learnhub.db.models import Badge, Challenge, User, UserChallenge
from learnhub.errors import ServiceError, raise_http
from learnhub.gamification.badge_service import get_user_badges
from learnhub.gamification.challenge_service import (
    create_challenge,
    join_challenge,
    list_challenges,
    update_progress,
)
from learnhub.gamification.schemas import (
    BadgeResponse,
    ChallengeCreateRequest,
    ChallengeResponse,
    EarnedBadgeResponse,
    ProgressResponse,
    ProgressUpdateRequest,
)

router = APIRouter(prefix="/api/v1", tags=["Challenges"])


def _challenge_response(challenge: Challenge, user_challenge: UserChallenge | None) -> ChallengeResponse:
    return ChallengeResponse(
        id=challenge.id,
        title=challenge.title,
        description=challenge.description,
        goal_target=challenge.goal_target,
        reward_points=challenge.reward_points,
        is_active=challenge.is_active,
        team_id=challenge.team_id,
        created_at=challenge.created_at,
        progress=user_challenge.progress if user_challenge else 0,
        completed=user_challenge.completed if user_challenge else False,
        completed_at=user_challenge.completed_at if user_challenge else None,
        joined=user_challenge is not None,
    )


# ── Challenges ──


@router.get("/challenges", response_model=list[ChallengeResponse])
async def get_challenges(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> list[ChallengeResponse]:
    """Active challenges with the caller's progress."""
    rows = await list_challenges(db, user.id)
    return [_challenge_response(c, uc) for c, uc in rows]


@router.post("/challenges", response_model=ChallengeResponse, status_code=201)
async def post_challenge(
    body: ChallengeCreateRequest,
    user: User = Depends(get_current_user),  # noqa: ARG001
    db: AsyncSession = Depends(get_session),
) -> ChallengeResponse:
    """Create a challenge."""
    try:
        challenge = await create_challenge(
            db,
            title=body.title,
            description=body.description,
            goal_target=body.goal_target,
            reward_points=body.reward_points,
            team_id=body.team_id,
        )
    except ServiceError as e:
        raise_http(e)
    await db.commit()
    return _challenge_response(challenge, None)


@router.post("/challenges/{challenge_id}/join", response_model=ChallengeResponse, status_code=201)
async def post_join_challenge(
    challenge_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ChallengeResponse:
    """Start tracking a challenge."""
    try:
        user_challenge = await join_challenge(db, user.id, challenge_id)
    except ServiceError as e:
        raise_http(e)
    challenge = await db.get(Challenge, challenge_id)
    await db.commit()
    return _challenge_response(challenge, user_challenge)  # type: ignore[arg-type]


@router.post("/challenges/{challenge_id}/progress", response_model=ProgressResponse)
async def post_progress(
    challenge_id: int,
    body: ProgressUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ProgressResponse:
    """Record progress toward a challenge goal."""
    try:
        result = await update_progress(db, user.id, challenge_id, body.progress)
    except ServiceError as e:
        raise_http(e)
    await db.commit()
    return ProgressResponse(
        challenge_id=challenge_id,
        progress=result.user_challenge.progress,
        goal_target=result.challenge.goal_target,
        completed=result.user_challenge.completed,
        completed_at=result.user_challenge.completed_at,
        badge_awarded=result.badge_awarded,
    )


# ── Badges ──


@router.get("/badges", response_model=list[BadgeResponse])
async def list_badges(db: AsyncSession = Depends(get_session)) -> list[BadgeResponse]:
    """All badge definitions."""
    result = await db.execute(select(Badge).order_by(Badge.id))
    return [BadgeResponse.model_validate(b) for b in result.scalars().all()]


@router.get("/badges/me", response_model=list[EarnedBadgeResponse])
async def my_badges(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> list[EarnedBadgeResponse]:
    """Badges the caller has earned, newest first."""
    rows = await get_user_badges(db, user.id)
    return [
        EarnedBadgeResponse(
            id=badge.id,
            slug=badge.slug,
            name=badge.name,
            description=badge.description,
            image_url=badge.image_url,
            earned_at=earned_at,
        )
        for badge, earned_at in rows
    ]
