"""Profile API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.auth.dependencies import get_current_user
from learnhub.auth.service import change_password
from learnhub.database import get_session
from learnhub.db.models import User
from learnhub.errors import ServiceError, raise_http
from learnhub.gamification.schemas import EarnedBadgeResponse
from learnhub.profile.schemas import PasswordChangeRequest, ProfileResponse, ProfileUpdateRequest
from learnhub.profile.service import get_profile, update_profile

router = APIRouter(prefix="/api/v1/profile", tags=["Profile"])


async def _profile_response(db: AsyncSession, user: User) -> ProfileResponse:
    data = await get_profile(db, user)
    return ProfileResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        bio=user.bio,
        completed_sessions=data.completed_sessions,
        earned_badges=data.earned_badges,
        joined_date=user.created_at,
        recent_badges=[
            EarnedBadgeResponse(
                id=badge.id,
                slug=badge.slug,
                name=badge.name,
                description=badge.description,
                image_url=badge.image_url,
                earned_at=earned_at,
            )
            for badge, earned_at in data.recent_badges
        ],
    )


@router.get("", response_model=ProfileResponse)
async def get_my_profile(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ProfileResponse:
    return await _profile_response(db, user)


@router.put("", response_model=ProfileResponse)
async def put_profile(
    body: ProfileUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ProfileResponse:
    try:
        await update_profile(db, user, body.name, body.bio)
    except ServiceError as e:
        raise_http(e)
    await db.commit()
    return await _profile_response(db, user)


@router.put("/password")
async def put_password(
    body: PasswordChangeRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    """Change password. Every refresh token is revoked."""
    try:
        await change_password(db, user, body.current_password, body.new_password)
    except ServiceError as e:
        raise_http(e)
    await db.commit()
    return {"detail": "Password updated successfully"}
