"""Learning session API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.auth.dependencies import get_current_user
from learnhub.database import get_session
from learnhub.db.models import User
from learnhub.errors import ServiceError, raise_http
from learnhub.meet.google_calendar import GoogleCalendarClient, get_calendar_client
from learnhub.sessions.schemas import (
    MeetingRequestResponse,
    ParticipantResponse,
    SessionActionResponse,
    SessionCreateRequest,
    SessionDetailResponse,
    SessionResponse,
)
from learnhub.sessions.service import (
    SessionSummary,
    cancel_session,
    complete_session,
    create_session,
    create_session_meet,
    get_session_detail,
    join_session,
    leave_session,
    list_sessions,
    request_meet_join,
    start_session,
)

router = APIRouter(prefix="/api/v1/sessions", tags=["Sessions"])


def _session_fields(summary: SessionSummary) -> dict:
    s = summary.session
    return {
        "id": s.id,
        "title": s.title,
        "description": s.description,
        "start_time": s.start_time,
        "end_time": s.end_time,
        "duration": s.duration,
        "max_participants": s.max_participants,
        "difficulty": s.difficulty,
        "status": s.status,
        "meet_link": s.meet_link,
        "created_by_id": s.created_by_id,
        "created_at": s.created_at,
        "current_participants": summary.current_participants,
        "is_creator": summary.is_creator,
        "has_joined": summary.has_joined,
    }


async def _detail(db: AsyncSession, session_id: int, user_id: int) -> SessionDetailResponse:
    summary, participants = await get_session_detail(db, session_id, user_id)
    return SessionDetailResponse(
        **_session_fields(summary),
        participants=[
            ParticipantResponse(user_id=p.user_id, name=p.name, role=p.role, status=p.status, joined_at=p.joined_at)
            for p in participants
        ],
    )


@router.get("", response_model=list[SessionResponse])
async def get_sessions(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> list[SessionResponse]:
    """All sessions, latest start first."""
    return [SessionResponse(**_session_fields(s)) for s in await list_sessions(db, user.id)]


@router.post("", response_model=SessionDetailResponse, status_code=201)
async def post_session(
    body: SessionCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    calendar: GoogleCalendarClient = Depends(get_calendar_client),
) -> SessionDetailResponse:
    try:
        learning_session = await create_session(
            db,
            calendar,
            user,
            title=body.title,
            description=body.description,
            start_time=body.start_time,
            duration=body.duration,
            max_participants=body.max_participants,
            difficulty=body.difficulty,
        )
    except ServiceError as e:
        raise_http(e)
    await db.commit()
    return await _detail(db, learning_session.id, user.id)


@router.get("/{session_id}", response_model=SessionDetailResponse)
async def get_session_by_id(
    session_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> SessionDetailResponse:
    try:
        return await _detail(db, session_id, user.id)
    except ServiceError as e:
        raise_http(e)


@router.post("/{session_id}/join", response_model=SessionActionResponse)
async def post_join(
    session_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> SessionActionResponse:
    try:
        participant = await join_session(db, user, session_id)
    except ServiceError as e:
        raise_http(e)
    await db.commit()
    return SessionActionResponse(message="Successfully joined session", status=participant.status)


@router.post("/{session_id}/leave", response_model=SessionActionResponse)
async def post_leave(
    session_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> SessionActionResponse:
    try:
        await leave_session(db, user, session_id)
    except ServiceError as e:
        raise_http(e)
    await db.commit()
    return SessionActionResponse(message="You have left the session", status="CANCELLED")


@router.post("/{session_id}/start", response_model=SessionActionResponse)
async def post_start(
    session_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    calendar: GoogleCalendarClient = Depends(get_calendar_client),
) -> SessionActionResponse:
    try:
        learning_session = await start_session(db, calendar, user, session_id)
    except ServiceError as e:
        raise_http(e)
    await db.commit()
    return SessionActionResponse(
        message="Session started successfully",
        status=learning_session.status,
        meet_link=learning_session.meet_link,
    )


@router.post("/{session_id}/complete", response_model=SessionActionResponse)
async def post_complete(
    session_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> SessionActionResponse:
    try:
        result = await complete_session(db, user, session_id)
    except ServiceError as e:
        raise_http(e)
    await db.commit()
    return SessionActionResponse(
        message="Session marked as completed",
        status=result.session.status,
        badge_awarded=result.badge_awarded,
    )


@router.post("/{session_id}/cancel", response_model=SessionActionResponse)
async def post_cancel(
    session_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    calendar: GoogleCalendarClient = Depends(get_calendar_client),
) -> SessionActionResponse:
    try:
        learning_session = await cancel_session(db, calendar, user, session_id)
    except ServiceError as e:
        raise_http(e)
    await db.commit()
    return SessionActionResponse(message="Session cancelled", status=learning_session.status)


@router.post("/{session_id}/meet", response_model=SessionActionResponse)
async def post_meet(
    session_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    calendar: GoogleCalendarClient = Depends(get_calendar_client),
) -> SessionActionResponse:
    """Create the video meeting for a running session."""
    try:
        learning_session = await create_session_meet(db, calendar, user, session_id)
    except ServiceError as e:
        raise_http(e)
    await db.commit()
    return SessionActionResponse(
        message="Meeting created",
        status=learning_session.status,
        meet_link=learning_session.meet_link,
    )


@router.post("/{session_id}/meet/join-request", response_model=MeetingRequestResponse, status_code=201)
async def post_meet_join_request(
    session_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> MeetingRequestResponse:
    try:
        request = await request_meet_join(db, user, session_id)
    except ServiceError as e:
        raise_http(e)
    await db.commit()
    return MeetingRequestResponse.model_validate(request)
