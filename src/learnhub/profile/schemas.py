"""Profile request/response schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from learnhub.gamification.schemas import EarnedBadgeResponse


class ProfileResponse(BaseModel):
    id: int
    name: str
    email: str
    bio: str | None = None
    completed_sessions: int
    earned_badges: int
    joined_date: datetime
    recent_badges: list[EarnedBadgeResponse]


class ProfileUpdateRequest(BaseModel):
    name: str | None = Field(None, max_length=128)
    bio: str | None = Field(None, max_length=2000)


class PasswordChangeRequest(BaseModel):
    current_password: str = ""
    new_password: str = ""
