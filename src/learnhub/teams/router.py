"""Team API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.auth.dependencies import get_current_user
from learnhub.database import get_session
from learnhub.db.models import Message, User
from learnhub.errors import IntegrationError, ServiceError, raise_http
from learnhub.payments.mpesa import MpesaClient, get_mpesa_client
from learnhub.payments.schemas import payment_response
from learnhub.teams.schemas import (
    JoinTeamRequest,
    JoinTeamResponse,
    LeaveTeamResponse,
    MessageCreateRequest,
    MessageResponse,
    TeamCreateRequest,
    TeamMemberResponse,
    TeamResponse,
    TransferLeadershipRequest,
)
from learnhub.teams.service import (
    TeamDetail,
    create_team,
    get_team_detail,
    join_team,
    leave_team,
    list_messages,
    list_teams,
    post_message,
    transfer_leadership,
)

router = APIRouter(prefix="/api/v1/teams", tags=["Teams"])


def _team_response(detail: TeamDetail) -> TeamResponse:
    team = detail.team
    return TeamResponse(
        id=team.id,
        name=team.name,
        description=team.description,
        status=team.status,
        max_members=team.max_members,
        join_fee=float(team.join_fee),
        is_private=team.is_private,
        created_at=team.created_at,
        members=[TeamMemberResponse(id=m.user_id, name=m.name, email=m.email, role=m.role) for m in detail.members],
        active_challenges=detail.active_challenges,
        completed_challenges=detail.completed_challenges,
    )


def _message_response(message: Message, sender_name: str, sender_email: str) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        team_id=message.team_id,
        content=message.content,
        sent_at=message.sent_at,
        sender_id=message.sender_id,
        sender_name=sender_name,
        sender_email=sender_email,
    )


@router.get("", response_model=list[TeamResponse])
async def get_teams(
    user: User = Depends(get_current_user),  # noqa: ARG001
    db: AsyncSession = Depends(get_session),
) -> list[TeamResponse]:
    """All teams, newest first."""
    return [_team_response(d) for d in await list_teams(db)]


@router.post("", response_model=TeamResponse, status_code=201)
async def post_team(
    body: TeamCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> TeamResponse:
    """Create a team; the caller becomes its leader."""
    try:
        team = await create_team(
            db,
            user,
            name=body.name,
            description=body.description,
            max_members=body.max_members,
            join_fee=body.join_fee,
            is_private=body.is_private,
        )
    except ServiceError as e:
        raise_http(e)
    await db.commit()
    return _team_response(await get_team_detail(db, team.id))


@router.get("/{team_id}", response_model=TeamResponse)
async def get_team(
    team_id: int,
    user: User = Depends(get_current_user),  # noqa: ARG001
    db: AsyncSession = Depends(get_session),
) -> TeamResponse:
    try:
        detail = await get_team_detail(db, team_id)
    except ServiceError as e:
        raise_http(e)
    return _team_response(detail)


@router.post("/{team_id}/join", response_model=JoinTeamResponse)
async def post_join(
    team_id: int,
    body: JoinTeamRequest | None = Body(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    mpesa: MpesaClient = Depends(get_mpesa_client),
) -> JoinTeamResponse | JSONResponse:
    """Join a free team, or start payment for a paid one (202)."""
    try:
        result = await join_team(db, mpesa, user, team_id, phone_number=body.phone_number if body else None)
    except IntegrationError as e:
        # Keep the FAILED payment row
        await db.commit()
        raise_http(e)
    except ServiceError as e:
        raise_http(e)
    await db.commit()

    if result.payment is not None:
        response = JoinTeamResponse(
            requires_payment=True,
            message="Please complete the payment on your phone to join the team",
            payment=payment_response(result.payment),
        )
        return JSONResponse(status_code=202, content=response.model_dump(mode="json"))

    return JoinTeamResponse(
        requires_payment=False,
        message="Successfully joined the team",
        badge_awarded=result.badge_awarded,
    )


@router.post("/{team_id}/leave", response_model=LeaveTeamResponse)
async def post_leave(
    team_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> LeaveTeamResponse:
    try:
        deleted = await leave_team(db, user, team_id)
    except ServiceError as e:
        raise_http(e)
    await db.commit()
    if deleted:
        return LeaveTeamResponse(message="Team has been deleted as you were the last member", team_deleted=True)
    return LeaveTeamResponse(message="Successfully left the team", team_deleted=False)


@router.post("/{team_id}/transfer-leadership", response_model=TeamResponse)
async def post_transfer_leadership(
    team_id: int,
    body: TransferLeadershipRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> TeamResponse:
    try:
        await transfer_leadership(db, user, team_id, body.user_id)
    except ServiceError as e:
        raise_http(e)
    await db.commit()
    return _team_response(await get_team_detail(db, team_id))


@router.get("/{team_id}/messages", response_model=list[MessageResponse])
async def get_messages(
    team_id: int,
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> list[MessageResponse]:
    """Team chat, newest first. Members only."""
    try:
        rows = await list_messages(db, user, team_id, limit=limit)
    except ServiceError as e:
        raise_http(e)
    return [_message_response(*row) for row in rows]


@router.post("/{team_id}/messages", response_model=MessageResponse, status_code=201)
async def post_team_message(
    team_id: int,
    body: MessageCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> MessageResponse:
    try:
        message = await post_message(db, user, team_id, body.content)
    except ServiceError as e:
        raise_http(e)
    await db.commit()
    return _message_response(message, user.name, user.email)
