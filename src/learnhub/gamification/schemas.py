"""Pydantic models for challenge and badge endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

# --- Badges ---


class BadgeResponse(BaseModel):
    id: int
    slug: str
    name: str
    description: str
    image_url: str | None = None

    model_config = {"from_attributes": True}


class EarnedBadgeResponse(BadgeResponse):
    earned_at: datetime


# --- Challenges ---


class ChallengeCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    goal_target: int = Field(1, ge=1)
    reward_points: int = Field(100, ge=0)
    team_id: int | None = None


class ChallengeResponse(BaseModel):
    id: int
    title: str
    description: str | None = None
    goal_target: int
    reward_points: int
    is_active: bool
    team_id: int | None = None
    created_at: datetime
    progress: int = 0
    completed: bool = False
    completed_at: datetime | None = None
    joined: bool = False


class ProgressUpdateRequest(BaseModel):
    progress: int = Field(..., ge=0)


class ProgressResponse(BaseModel):
    challenge_id: int
    progress: int
    goal_target: int
    completed: bool
    completed_at: datetime | None = None
    badge_awarded: bool = False
