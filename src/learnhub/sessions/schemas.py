"""Session request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class SessionCreateRequest(BaseModel):
    title: str = Field(..., max_length=200)
    description: str
    start_time: datetime
    duration: int = Field(..., description="Minutes")
    max_participants: int = Field(10, le=500)
    difficulty: Literal["BEGINNER", "INTERMEDIATE", "ADVANCED"] = "INTERMEDIATE"


class ParticipantResponse(BaseModel):
    user_id: int
    name: str
    role: str
    status: str
    joined_at: datetime


class SessionResponse(BaseModel):
    id: int
    title: str
    description: str | None = None
    start_time: datetime
    end_time: datetime
    duration: int
    max_participants: int
    difficulty: str
    status: str
    meet_link: str | None = None
    created_by_id: int
    created_at: datetime
    current_participants: int = 0
    is_creator: bool = False
    has_joined: bool = False


class SessionDetailResponse(SessionResponse):
    participants: list[ParticipantResponse] = []


class SessionActionResponse(BaseModel):
    message: str
    status: str
    meet_link: str | None = None
    badge_awarded: bool = False


class MeetingRequestResponse(BaseModel):
    id: int
    session_id: int
    user_id: int
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}
