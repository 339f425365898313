"""Learning session lifecycle.

Status flow: SCHEDULED -> IN_PROGRESS -> COMPLETED, and SCHEDULED or
IN_PROGRESS -> CANCELLED. A user has at most one JOINED/IN_PROGRESS
participant row per session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.config import get_settings
from learnhub.db.models import (
    ACTIVE_PARTICIPANT_STATUSES,
    LearningSession,
    MeetingRequest,
    MeetingRequestStatus,
    ParticipantRole,
    ParticipantStatus,
    SessionParticipant,
    SessionStatus,
    User,
)
from learnhub.errors import IntegrationError, NotFoundError, PermissionDeniedError, ValidationFailedError
from learnhub.gamification.badge_service import QUICK_STARTER, award_badge
from learnhub.meet.google_calendar import GoogleCalendarClient
from learnhub.notifications.service import NotificationType, create_notification, notify_users

logger = logging.getLogger(__name__)


@dataclass
class SessionSummary:
    session: LearningSession
    current_participants: int
    is_creator: bool
    has_joined: bool


@dataclass
class ParticipantInfo:
    user_id: int
    name: str
    role: str
    status: str
    joined_at: datetime


@dataclass
class CompleteResult:
    session: LearningSession
    badge_awarded: bool


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def get_learning_session(db: AsyncSession, session_id: int) -> LearningSession:
    result = await db.execute(select(LearningSession).where(LearningSession.id == session_id))
    learning_session = result.scalar_one_or_none()
    if learning_session is None:
        msg = "Session not found"
        raise NotFoundError(msg)
    return learning_session


async def get_active_participation(db: AsyncSession, session_id: int, user_id: int) -> SessionParticipant | None:
    result = await db.execute(
        select(SessionParticipant).where(
            SessionParticipant.session_id == session_id,
            SessionParticipant.user_id == user_id,
            SessionParticipant.status.in_(ACTIVE_PARTICIPANT_STATUSES),
        )
    )
    return result.scalars().first()


async def count_active_participants(db: AsyncSession, session_id: int) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(SessionParticipant)
        .where(
            SessionParticipant.session_id == session_id,
            SessionParticipant.status.in_(ACTIVE_PARTICIPANT_STATUSES),
        )
    )
    return result.scalar_one()


async def participant_user_ids(db: AsyncSession, session_id: int, active_only: bool = False) -> list[int]:
    stmt = select(SessionParticipant.user_id).where(SessionParticipant.session_id == session_id)
    if active_only:
        stmt = stmt.where(SessionParticipant.status.in_(ACTIVE_PARTICIPANT_STATUSES))
    else:
        stmt = stmt.where(SessionParticipant.status != ParticipantStatus.CANCELLED.value)
    result = await db.execute(stmt)
    return list(dict.fromkeys(row[0] for row in result.all()))


async def list_sessions(db: AsyncSession, user_id: int) -> list[SessionSummary]:
    """All sessions, latest start first, annotated for the caller."""
    sessions_result = await db.execute(
        select(LearningSession).order_by(LearningSession.start_time.desc(), LearningSession.id.desc())
    )
    sessions = list(sessions_result.scalars().all())

    counts_result = await db.execute(
        select(SessionParticipant.session_id, func.count())
        .where(SessionParticipant.status != ParticipantStatus.CANCELLED.value)
        .group_by(SessionParticipant.session_id)
    )
    counts = {row[0]: row[1] for row in counts_result.all()}

    joined_result = await db.execute(
        select(SessionParticipant.session_id).where(
            SessionParticipant.user_id == user_id,
            SessionParticipant.status != ParticipantStatus.CANCELLED.value,
        )
    )
    joined = {row[0] for row in joined_result.all()}

    return [
        SessionSummary(
            session=s,
            current_participants=counts.get(s.id, 0),
            is_creator=s.created_by_id == user_id,
            has_joined=s.id in joined,
        )
        for s in sessions
    ]


async def get_session_detail(
    db: AsyncSession, session_id: int, user_id: int
) -> tuple[SessionSummary, list[ParticipantInfo]]:
    learning_session = await get_learning_session(db, session_id)
    result = await db.execute(
        select(SessionParticipant, User.name)
        .join(User, User.id == SessionParticipant.user_id)
        .where(SessionParticipant.session_id == session_id)
        .order_by(SessionParticipant.joined_at.asc(), SessionParticipant.id.asc())
    )
    participants = [
        ParticipantInfo(user_id=p.user_id, name=name, role=p.role, status=p.status, joined_at=p.joined_at)
        for p, name in result.all()
    ]
    visible = [p for p in participants if p.status != ParticipantStatus.CANCELLED.value]
    summary = SessionSummary(
        session=learning_session,
        current_participants=len(visible),
        is_creator=learning_session.created_by_id == user_id,
        has_joined=any(p.user_id == user_id for p in visible),
    )
    return summary, participants


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


async def _attach_meet(calendar: GoogleCalendarClient, learning_session: LearningSession) -> bool:
    """Try to create a Meet for the session. Returns True when a link was stored."""
    result = await calendar.create_meet(learning_session.title, learning_session.start_time, learning_session.end_time)
    if result is None:
        return False
    learning_session.meet_link = result.meet_link
    learning_session.google_event_id = result.event_id
    return True


async def create_session(
    db: AsyncSession,
    calendar: GoogleCalendarClient,
    creator: User,
    title: str,
    description: str,
    start_time: datetime,
    duration: int,
    max_participants: int | None = None,
    difficulty: str = "INTERMEDIATE",
) -> LearningSession:
    """Schedule a session hosted by ``creator``; a Meet link is attached when possible."""
    title = title.strip()
    description = description.strip()
    if not title or not description:
        msg = "Missing required fields"
        raise ValidationFailedError(msg)
    if duration <= 0:
        msg = "Duration must be a positive number of minutes"
        raise ValidationFailedError(msg)
    if max_participants is None:
        max_participants = get_settings().session_default_max_participants
    if max_participants < 1:
        msg = "Maximum participants must be at least 1"
        raise ValidationFailedError(msg)

    if start_time.tzinfo is None:
        start_time = start_time.replace(tzinfo=UTC)

    learning_session = LearningSession(
        title=title,
        description=description,
        start_time=start_time,
        end_time=start_time + timedelta(minutes=duration),
        duration=duration,
        max_participants=max_participants,
        difficulty=difficulty,
        status=SessionStatus.SCHEDULED.value,
        created_by_id=creator.id,
        created_at=datetime.now(UTC),
    )
    db.add(learning_session)
    await db.flush()

    db.add(
        SessionParticipant(
            session_id=learning_session.id,
            user_id=creator.id,
            role=ParticipantRole.HOST.value,
            status=ParticipantStatus.JOINED.value,
        )
    )

    if not await _attach_meet(calendar, learning_session):
        logger.info("Session %d created without a Meet link", learning_session.id)
    await db.flush()

    await create_notification(
        db,
        creator.id,
        NotificationType.SESSION_CREATED,
        title="Session Created",
        message=f'Your session "{learning_session.title}" has been created successfully.',
        related_entity_type="session",
        related_entity_id=learning_session.id,
    )
    logger.info("Session %d created by user %d", learning_session.id, creator.id)
    return learning_session


# ---------------------------------------------------------------------------
# Participation
# ---------------------------------------------------------------------------


async def join_session(db: AsyncSession, user: User, session_id: int) -> SessionParticipant:
    learning_session = await get_learning_session(db, session_id)
    if learning_session.status != SessionStatus.SCHEDULED.value:
        msg = "Session is not open for joining"
        raise ValidationFailedError(msg, current_status=learning_session.status)
    if await get_active_participation(db, session_id, user.id) is not None:
        msg = "You have already joined this session"
        raise ValidationFailedError(msg)
    if await count_active_participants(db, session_id) >= learning_session.max_participants:
        msg = "Session is full"
        raise ValidationFailedError(msg)

    # Drop finished rows so the pair has a single live participation
    await db.execute(
        delete(SessionParticipant).where(
            SessionParticipant.session_id == session_id,
            SessionParticipant.user_id == user.id,
            SessionParticipant.status.in_((ParticipantStatus.COMPLETED.value, ParticipantStatus.CANCELLED.value)),
        )
    )
    participant = SessionParticipant(
        session_id=session_id,
        user_id=user.id,
        role=ParticipantRole.PARTICIPANT.value,
        status=ParticipantStatus.JOINED.value,
    )
    db.add(participant)
    await db.flush()

    if learning_session.created_by_id != user.id:
        await create_notification(
            db,
            learning_session.created_by_id,
            NotificationType.SESSION_JOIN,
            title="New Participant",
            message=f'{user.name} has joined your session "{learning_session.title}"',
            related_entity_type="session",
            related_entity_id=session_id,
        )
    return participant


async def leave_session(db: AsyncSession, user: User, session_id: int) -> None:
    learning_session = await get_learning_session(db, session_id)
    participant = await get_active_participation(db, session_id, user.id)
    if participant is None:
        msg = "You are not a participant of this session"
        raise ValidationFailedError(msg)
    if participant.role == ParticipantRole.HOST.value or learning_session.created_by_id == user.id:
        msg = "The host cannot leave the session. Cancel it instead."
        raise ValidationFailedError(msg)
    participant.status = ParticipantStatus.CANCELLED.value
    participant.updated_at = datetime.now(UTC)
    await db.flush()


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


async def start_session(
    db: AsyncSession, calendar: GoogleCalendarClient, user: User, session_id: int
) -> LearningSession:
    """Start a SCHEDULED session, at most the early-start window before its start time."""
    learning_session = await get_learning_session(db, session_id)
    if learning_session.created_by_id != user.id:
        msg = "Only the session creator can start the session"
        raise PermissionDeniedError(msg)
    if learning_session.status != SessionStatus.SCHEDULED.value:
        msg = (
            f"Session cannot be started - current status is {learning_session.status}. "
            f"Only sessions with status {SessionStatus.SCHEDULED.value} can be started."
        )
        raise ValidationFailedError(
            msg, current_status=learning_session.status, required_status=SessionStatus.SCHEDULED.value
        )

    now = datetime.now(UTC)
    window = timedelta(minutes=get_settings().session_early_start_minutes)
    earliest = learning_session.start_time - window
    if now < earliest:
        msg = "Session cannot be started yet - too early."
        raise ValidationFailedError(
            msg,
            start_time=learning_session.start_time.isoformat(),
            earliest_start_time=earliest.isoformat(),
            current_time=now.isoformat(),
        )

    if not learning_session.meet_link:
        await _attach_meet(calendar, learning_session)

    learning_session.status = SessionStatus.IN_PROGRESS.value
    await db.execute(
        update(SessionParticipant)
        .where(
            SessionParticipant.session_id == session_id,
            SessionParticipant.status.in_(ACTIVE_PARTICIPANT_STATUSES),
        )
        .values(status=ParticipantStatus.IN_PROGRESS.value, updated_at=now)
    )
    await db.flush()

    suffix = " Click to join the meeting." if learning_session.meet_link else ""
    await notify_users(
        db,
        await participant_user_ids(db, session_id, active_only=True),
        NotificationType.SESSION_STARTED,
        title="Session Started",
        message=f'The session "{learning_session.title}" has started.{suffix}',
        related_entity_type="session",
        related_entity_id=session_id,
    )
    logger.info("Session %d started", session_id)
    return learning_session


async def complete_session(db: AsyncSession, user: User, session_id: int) -> CompleteResult:
    """Mark the session and the caller's participation COMPLETED.

    The caller's first completed participation earns the Quick Starter badge.
    """
    learning_session = await get_learning_session(db, session_id)
    is_creator = learning_session.created_by_id == user.id
    participation = await db.execute(
        select(SessionParticipant.id).where(
            SessionParticipant.session_id == session_id,
            SessionParticipant.user_id == user.id,
            SessionParticipant.status != ParticipantStatus.CANCELLED.value,
        )
    )
    if participation.first() is None and not is_creator:
        msg = "Not a participant of this session"
        raise PermissionDeniedError(msg)
    if learning_session.status == SessionStatus.CANCELLED.value:
        msg = "Cancelled sessions cannot be completed"
        raise ValidationFailedError(msg, current_status=learning_session.status)

    now = datetime.now(UTC)
    learning_session.status = SessionStatus.COMPLETED.value
    marked = await db.execute(
        update(SessionParticipant)
        .where(
            SessionParticipant.session_id == session_id,
            SessionParticipant.user_id == user.id,
            SessionParticipant.status.in_(ACTIVE_PARTICIPANT_STATUSES),
        )
        .values(status=ParticipantStatus.COMPLETED.value, updated_at=now)
    )
    await db.flush()

    # Repeat completions change nothing and announce nothing
    if not marked.rowcount:
        logger.info("Session %d already completed for user %d", session_id, user.id)
        return CompleteResult(session=learning_session, badge_awarded=False)

    completed_count = await db.execute(
        select(func.count())
        .select_from(SessionParticipant)
        .where(
            SessionParticipant.user_id == user.id,
            SessionParticipant.status == ParticipantStatus.COMPLETED.value,
        )
    )
    badge_awarded = False
    if completed_count.scalar_one() == 1:
        badge_awarded = await award_badge(db, user.id, QUICK_STARTER)

    if not is_creator:
        await create_notification(
            db,
            learning_session.created_by_id,
            NotificationType.SESSION_COMPLETED,
            title="Session Completed",
            message=f'{user.name} has completed the session "{learning_session.title}"',
            related_entity_type="session",
            related_entity_id=session_id,
        )
    logger.info("Session %d completed by user %d", session_id, user.id)
    return CompleteResult(session=learning_session, badge_awarded=badge_awarded)


async def cancel_session(
    db: AsyncSession, calendar: GoogleCalendarClient, user: User, session_id: int
) -> LearningSession:
    learning_session = await get_learning_session(db, session_id)
    if learning_session.created_by_id != user.id:
        msg = "Only the session creator can cancel the session"
        raise PermissionDeniedError(msg)
    if learning_session.status not in (SessionStatus.SCHEDULED.value, SessionStatus.IN_PROGRESS.value):
        msg = f"Session cannot be cancelled - current status is {learning_session.status}"
        raise ValidationFailedError(msg, current_status=learning_session.status)

    recipients = await participant_user_ids(db, session_id, active_only=True)
    now = datetime.now(UTC)
    learning_session.status = SessionStatus.CANCELLED.value
    await db.execute(
        update(SessionParticipant)
        .where(
            SessionParticipant.session_id == session_id,
            SessionParticipant.status.in_(ACTIVE_PARTICIPANT_STATUSES),
        )
        .values(status=ParticipantStatus.CANCELLED.value, updated_at=now)
    )
    if learning_session.google_event_id:
        await calendar.delete_meet(learning_session.google_event_id)
    await db.flush()

    await notify_users(
        db,
        recipients,
        NotificationType.SESSION_CANCELLED,
        title="Session Cancelled",
        message=f'The session "{learning_session.title}" has been cancelled.',
        related_entity_type="session",
        related_entity_id=session_id,
        exclude_user_id=user.id,
    )
    logger.info("Session %d cancelled", session_id)
    return learning_session


# ---------------------------------------------------------------------------
# Video meeting
# ---------------------------------------------------------------------------


async def create_session_meet(
    db: AsyncSession, calendar: GoogleCalendarClient, user: User, session_id: int
) -> LearningSession:
    """Create the Meet for an IN_PROGRESS session that has none yet."""
    learning_session = await get_learning_session(db, session_id)
    if learning_session.created_by_id != user.id:
        msg = "Only the session creator can create the meeting"
        raise PermissionDeniedError(msg)
    if learning_session.status != SessionStatus.IN_PROGRESS.value:
        msg = "Session must be in progress to create a meeting"
        raise ValidationFailedError(msg, current_status=learning_session.status)
    if learning_session.meet_link:
        msg = "Meeting link already exists"
        raise ValidationFailedError(msg)

    if not await _attach_meet(calendar, learning_session):
        msg = "Failed to create Google Meet"
        raise IntegrationError(msg)
    await db.flush()

    await notify_users(
        db,
        await participant_user_ids(db, session_id),
        NotificationType.MEETING_CREATED,
        title="Meeting Link Available",
        message=f'The meeting for "{learning_session.title}" is ready. Click to join.',
        related_entity_type="session",
        related_entity_id=session_id,
    )
    return learning_session


async def request_meet_join(db: AsyncSession, user: User, session_id: int) -> MeetingRequest:
    learning_session = await get_learning_session(db, session_id)
    participation = await db.execute(
        select(SessionParticipant.id).where(
            SessionParticipant.session_id == session_id,
            SessionParticipant.user_id == user.id,
            SessionParticipant.status != ParticipantStatus.CANCELLED.value,
        )
    )
    if participation.first() is None:
        msg = "Not a participant of this session"
        raise PermissionDeniedError(msg)
    if learning_session.status != SessionStatus.IN_PROGRESS.value:
        msg = "Session is not in progress"
        raise ValidationFailedError(msg, current_status=learning_session.status)

    request = MeetingRequest(
        session_id=session_id,
        user_id=user.id,
        status=MeetingRequestStatus.PENDING.value,
        created_at=datetime.now(UTC),
    )
    db.add(request)
    await db.flush()

    await create_notification(
        db,
        learning_session.created_by_id,
        NotificationType.MEET_JOIN_REQUEST,
        title="Meeting Join Request",
        message=f'{user.name} requested to join the meeting for "{learning_session.title}"',
        related_entity_type="session",
        related_entity_id=session_id,
    )
    return request
