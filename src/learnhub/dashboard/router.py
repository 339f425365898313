"""Dashboard and progress endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.auth.dependencies import get_current_user
from learnhub.dashboard.schemas import DashboardResponse, ProgressResponse
from learnhub.dashboard.service import get_dashboard, get_progress
from learnhub.database import get_session
from learnhub.db.models import User

router = APIRouter(prefix="/api/v1", tags=["Dashboard"])


@router.get("/dashboard", response_model=DashboardResponse)
async def dashboard(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> DashboardResponse:
    """Session counts, upcoming sessions and recent achievements."""
    return DashboardResponse(**await get_dashboard(db, user.id))


@router.get("/progress", response_model=ProgressResponse)
async def progress(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ProgressResponse:
    return ProgressResponse(**await get_progress(db, user.id))
