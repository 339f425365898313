"""Dashboard and progress response schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class UpcomingSession(BaseModel):
    id: int
    title: str
    start_time: datetime


class Achievement(BaseModel):
    id: int
    title: str
    date: datetime | None = None


class DashboardResponse(BaseModel):
    total_sessions: int
    completed_sessions: int
    active_sessions: int
    earned_badges: int
    progress: int
    upcoming_sessions: list[UpcomingSession]
    recent_achievements: list[Achievement]


class Activity(BaseModel):
    id: str
    type: str
    title: str
    date: datetime
    progress: int | None = None


class SkillProgress(BaseModel):
    name: str
    level: int
    progress: int


class ProgressResponse(BaseModel):
    total_hours: float
    completed_sessions: int
    earned_badges: int
    overall_progress: int
    recent_activities: list[Activity]
    skill_progress: list[SkillProgress]
