"""Dashboard and progress aggregation.

Both views are computed per request from sessions, participations,
badges, challenges and skills.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy import distinct, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.db.models import (
    Badge,
    Challenge,
    LearningSession,
    ParticipantStatus,
    SessionParticipant,
    SessionStatus,
    Skill,
    UserBadge,
    UserChallenge,
    UserSkill,
)

logger = structlog.get_logger()

UPCOMING_LIMIT = 5
ACHIEVEMENTS_LIMIT = 5
ACHIEVEMENTS_WINDOW_DAYS = 30
ACTIVITIES_LIMIT = 5
SKILLS_LIMIT = 5


def _involved(user_id: int):  # noqa: ANN202
    """Sessions the user created or has a participant row in."""
    return (
        select(LearningSession.id)
        .outerjoin(SessionParticipant, SessionParticipant.session_id == LearningSession.id)
        .where(or_(LearningSession.created_by_id == user_id, SessionParticipant.user_id == user_id))
    )


async def _count_badges(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(select(func.count()).select_from(UserBadge).where(UserBadge.user_id == user_id))
    return result.scalar_one()


async def get_dashboard(db: AsyncSession, user_id: int) -> dict:
    now = datetime.now(UTC)
    involved = _involved(user_id).subquery()

    total = await db.execute(select(func.count(distinct(involved.c.id))))
    total_sessions = total.scalar_one()

    completed = await db.execute(
        select(func.count(distinct(LearningSession.id))).where(
            LearningSession.id.in_(select(involved.c.id)),
            LearningSession.status == SessionStatus.COMPLETED.value,
        )
    )
    completed_sessions = completed.scalar_one()

    active = await db.execute(
        select(func.count(distinct(LearningSession.id)))
        .join(SessionParticipant, SessionParticipant.session_id == LearningSession.id)
        .where(
            SessionParticipant.user_id == user_id,
            SessionParticipant.status.in_((ParticipantStatus.JOINED.value, ParticipantStatus.IN_PROGRESS.value)),
            LearningSession.status == SessionStatus.IN_PROGRESS.value,
        )
    )

    upcoming = await db.execute(
        select(LearningSession)
        .where(
            LearningSession.id.in_(select(involved.c.id)),
            LearningSession.status == SessionStatus.SCHEDULED.value,
            LearningSession.start_time >= now,
        )
        .order_by(LearningSession.start_time.asc())
        .limit(UPCOMING_LIMIT)
    )

    achievements = await db.execute(
        select(UserChallenge.id, Challenge.title, UserChallenge.completed_at)
        .join(Challenge, Challenge.id == UserChallenge.challenge_id)
        .where(
            UserChallenge.user_id == user_id,
            UserChallenge.completed == True,  # noqa: E712
            UserChallenge.completed_at >= now - timedelta(days=ACHIEVEMENTS_WINDOW_DAYS),
        )
        .order_by(UserChallenge.completed_at.desc())
        .limit(ACHIEVEMENTS_LIMIT)
    )

    progress = round(completed_sessions / total_sessions * 100) if total_sessions else 0
    return {
        "total_sessions": total_sessions,
        "completed_sessions": completed_sessions,
        "active_sessions": active.scalar_one(),
        "earned_badges": await _count_badges(db, user_id),
        "progress": progress,
        "upcoming_sessions": [
            {"id": s.id, "title": s.title, "start_time": s.start_time} for s in upcoming.scalars().all()
        ],
        "recent_achievements": [
            {"id": row.id, "title": row.title, "date": row.completed_at} for row in achievements.all()
        ],
    }


async def get_progress(db: AsyncSession, user_id: int) -> dict:
    """Learning progress: hours, skills and recent activity."""
    completed = await db.execute(
        select(
            SessionParticipant.session_id,
            SessionParticipant.updated_at,
            LearningSession.title,
            LearningSession.duration,
        )
        .join(LearningSession, LearningSession.id == SessionParticipant.session_id)
        .where(
            SessionParticipant.user_id == user_id,
            SessionParticipant.status == ParticipantStatus.COMPLETED.value,
        )
        .order_by(SessionParticipant.updated_at.desc())
    )
    completed_rows = completed.all()
    total_minutes = sum(row.duration for row in completed_rows)

    badges = await db.execute(
        select(Badge.id, Badge.name, UserBadge.earned_at)
        .join(UserBadge, UserBadge.badge_id == Badge.id)
        .where(UserBadge.user_id == user_id)
        .order_by(UserBadge.earned_at.desc())
        .limit(ACTIVITIES_LIMIT)
    )

    activities = [
        {"id": str(row.session_id), "type": "SESSION", "title": row.title, "date": row.updated_at, "progress": 100}
        for row in completed_rows[:ACTIVITIES_LIMIT]
    ]
    activities += [
        {"id": str(row.id), "type": "BADGE", "title": row.name, "date": row.earned_at, "progress": None}
        for row in badges.all()
    ]
    activities.sort(key=lambda a: a["date"], reverse=True)

    skills = await db.execute(
        select(Skill.name, UserSkill.level, UserSkill.progress)
        .join(UserSkill, UserSkill.skill_id == Skill.id)
        .where(UserSkill.user_id == user_id)
        .order_by(UserSkill.level.desc(), Skill.name.asc())
        .limit(SKILLS_LIMIT)
    )
    skill_progress = [{"name": row.name, "level": row.level, "progress": row.progress or 0} for row in skills.all()]
    overall = round(sum(s["progress"] for s in skill_progress) / len(skill_progress)) if skill_progress else 0

    logger.debug("progress_computed", user_id=user_id, completed_sessions=len(completed_rows))
    return {
        "total_hours": round(total_minutes / 60, 1),
        "completed_sessions": len(completed_rows),
        "earned_badges": await _count_badges(db, user_id),
        "overall_progress": overall,
        "recent_activities": activities[:ACTIVITIES_LIMIT],
        "skill_progress": skill_progress,
    }
