"""Team business logic.

Rules:
- Team size is 2..10 members; the creator becomes LEADER
- Private teams need a plan that allows them
- Paid teams (join_fee > 0) are joined through an M-Pesa STK push; the
  membership is created when the payment completes
- A leader can only leave once alone (the team is then deleted) or after
  transferring leadership
- A team is never deleted while a join payment is still pending
- Only members can read or post team messages
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.config import get_settings
from learnhub.db.models import (
    Challenge,
    Message,
    PaymentStatus,
    Team,
    TeamMember,
    TeamPayment,
    TeamRole,
    TeamStatus,
    User,
)
from learnhub.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError
from learnhub.gamification.badge_service import TEAM_PLAYER, award_badge
from learnhub.notifications.service import NotificationType, create_notification, notify_users
from learnhub.payments.checkout import clean_phone, start_checkout
from learnhub.payments.mpesa import MpesaClient
from learnhub.subscriptions.service import get_active_subscription

logger = logging.getLogger(__name__)

MIN_MEMBERS = 2
MAX_MEMBERS = 10


@dataclass
class TeamMemberInfo:
    user_id: int
    name: str
    email: str
    role: str


@dataclass
class TeamDetail:
    team: Team
    members: list[TeamMemberInfo]
    active_challenges: int
    completed_challenges: int


@dataclass
class JoinResult:
    requires_payment: bool
    member: TeamMember | None = None
    payment: TeamPayment | None = None
    badge_awarded: bool = False


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def get_team(db: AsyncSession, team_id: int) -> Team:
    result = await db.execute(select(Team).where(Team.id == team_id))
    team = result.scalar_one_or_none()
    if team is None:
        msg = "Team not found"
        raise NotFoundError(msg)
    return team


async def get_membership(db: AsyncSession, team_id: int, user_id: int) -> TeamMember | None:
    result = await db.execute(
        select(TeamMember).where(TeamMember.team_id == team_id, TeamMember.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def is_member(db: AsyncSession, team_id: int, user_id: int) -> bool:
    return await get_membership(db, team_id, user_id) is not None


async def member_ids(db: AsyncSession, team_id: int) -> list[int]:
    result = await db.execute(select(TeamMember.user_id).where(TeamMember.team_id == team_id))
    return [row[0] for row in result.all()]


async def count_members(db: AsyncSession, team_id: int) -> int:
    result = await db.execute(select(func.count()).select_from(TeamMember).where(TeamMember.team_id == team_id))
    return result.scalar_one()


async def get_leader_id(db: AsyncSession, team_id: int) -> int | None:
    result = await db.execute(
        select(TeamMember.user_id).where(TeamMember.team_id == team_id, TeamMember.role == TeamRole.LEADER.value)
    )
    row = result.first()
    return row[0] if row else None


async def _details(db: AsyncSession, teams: list[Team]) -> list[TeamDetail]:
    if not teams:
        return []
    team_ids = [t.id for t in teams]

    members_result = await db.execute(
        select(TeamMember.team_id, TeamMember.role, User.id, User.name, User.email)
        .join(User, User.id == TeamMember.user_id)
        .where(TeamMember.team_id.in_(team_ids))
        .order_by(TeamMember.joined_at.asc(), TeamMember.id.asc())
    )
    members: dict[int, list[TeamMemberInfo]] = {tid: [] for tid in team_ids}
    for team_id, role, user_id, name, email in members_result.all():
        members[team_id].append(TeamMemberInfo(user_id=user_id, name=name, email=email, role=role))

    challenge_result = await db.execute(
        select(Challenge.team_id, Challenge.is_active, func.count())
        .where(Challenge.team_id.in_(team_ids))
        .group_by(Challenge.team_id, Challenge.is_active)
    )
    active: dict[int, int] = {}
    completed: dict[int, int] = {}
    for team_id, is_active, count in challenge_result.all():
        target = active if is_active else completed
        target[team_id] = count

    return [
        TeamDetail(
            team=t,
            members=members[t.id],
            active_challenges=active.get(t.id, 0),
            completed_challenges=completed.get(t.id, 0),
        )
        for t in teams
    ]


async def list_teams(db: AsyncSession) -> list[TeamDetail]:
    """All teams, newest first, with members and challenge counts."""
    result = await db.execute(select(Team).order_by(Team.created_at.desc(), Team.id.desc()))
    return await _details(db, list(result.scalars().all()))


async def get_team_detail(db: AsyncSession, team_id: int) -> TeamDetail:
    team = await get_team(db, team_id)
    return (await _details(db, [team]))[0]


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


async def create_team(
    db: AsyncSession,
    creator: User,
    name: str,
    description: str,
    max_members: int,
    join_fee: Decimal = Decimal(0),
    is_private: bool = False,
) -> Team:
    """Create a team led by ``creator`` and announce it to every other user."""
    name = name.strip()
    description = description.strip()
    if not name or not description:
        msg = "Name and description are required"
        raise ValidationFailedError(msg)
    if not MIN_MEMBERS <= max_members <= MAX_MEMBERS:
        msg = f"Team size must be between {MIN_MEMBERS} and {MAX_MEMBERS} members"
        raise ValidationFailedError(msg)
    if join_fee < 0:
        msg = "Join fee cannot be negative"
        raise ValidationFailedError(msg)

    if is_private:
        active = await get_active_subscription(db, creator.id)
        if active is None or not active[1].can_create_private_teams:
            msg = "Your plan does not allow creating private teams"
            raise PermissionDeniedError(msg)

    now = datetime.now(UTC)
    team = Team(
        name=name,
        description=description,
        status=TeamStatus.ACTIVE.value,
        max_members=max_members,
        join_fee=join_fee,
        is_private=is_private,
        created_at=now,
    )
    db.add(team)
    await db.flush()

    db.add(TeamMember(team_id=team.id, user_id=creator.id, role=TeamRole.LEADER.value, joined_at=now))
    await db.flush()

    others = await db.execute(select(User.id).where(User.id != creator.id, User.is_active.is_(True)))
    await notify_users(
        db,
        [row[0] for row in others.all()],
        NotificationType.TEAM_CREATED,
        title="New Team Created",
        message=f'{creator.name} created a new team: "{team.name}"',
        related_entity_type="team",
        related_entity_id=team.id,
    )

    logger.info("Team created: %s (id=%d, leader=%d)", team.name, team.id, creator.id)
    return team


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------


async def add_member(db: AsyncSession, team: Team, user_id: int) -> tuple[TeamMember, bool]:
    """Insert a MEMBER row, award Team Player on the first team and tell the leader.

    Returns the membership and whether the badge was newly awarded.
    """
    member = TeamMember(team_id=team.id, user_id=user_id, role=TeamRole.MEMBER.value, joined_at=datetime.now(UTC))
    db.add(member)
    await db.flush()

    memberships = await db.execute(select(func.count()).select_from(TeamMember).where(TeamMember.user_id == user_id))
    badge_awarded = False
    if memberships.scalar_one() == 1:
        badge_awarded = await award_badge(db, user_id, TEAM_PLAYER)

    leader_id = await get_leader_id(db, team.id)
    if leader_id is not None and leader_id != user_id:
        user = await db.get(User, user_id)
        await create_notification(
            db,
            leader_id,
            NotificationType.TEAM_JOIN,
            title="New Team Member",
            message=f'{user.name if user else "A user"} joined your team "{team.name}"',
            related_entity_type="team",
            related_entity_id=team.id,
        )

    logger.info("User %d joined team %d", user_id, team.id)
    return member, badge_awarded


async def join_team(
    db: AsyncSession,
    mpesa: MpesaClient,
    user: User,
    team_id: int,
    phone_number: str | None = None,
) -> JoinResult:
    """Join a team directly, or start the M-Pesa payment for a paid team."""
    team = await get_team(db, team_id)
    if team.status != TeamStatus.ACTIVE.value:
        msg = "This team is not accepting new members"
        raise ValidationFailedError(msg)
    if await is_member(db, team.id, user.id):
        msg = "You are already a member of this team"
        raise ValidationFailedError(msg)
    if await count_members(db, team.id) >= team.max_members:
        msg = "Team is full"
        raise ValidationFailedError(msg)

    fee = Decimal(team.join_fee or 0)
    if fee <= 0:
        member, badge_awarded = await add_member(db, team, user.id)
        return JoinResult(requires_payment=False, member=member, badge_awarded=badge_awarded)

    phone = clean_phone(phone_number)
    pending = await db.execute(
        select(TeamPayment.id).where(
            TeamPayment.team_id == team.id,
            TeamPayment.user_id == user.id,
            TeamPayment.status == PaymentStatus.PENDING.value,
        )
    )
    if pending.first() is not None:
        msg = "A payment for this team is already pending"
        raise ConflictError(msg)

    payment = TeamPayment(
        team_id=team.id,
        user_id=user.id,
        amount=fee,
        currency=get_settings().mpesa_currency,
        phone_number=phone,
        status=PaymentStatus.PENDING.value,
        created_at=datetime.now(UTC),
    )
    db.add(payment)
    await start_checkout(db, mpesa, payment, account_reference=f"TEAM{team.id}", description="Team join fee")
    return JoinResult(requires_payment=True, payment=payment)


async def leave_team(db: AsyncSession, user: User, team_id: int) -> bool:
    """Leave a team. Returns True when the team was deleted (leader leaving alone)."""
    team = await get_team(db, team_id)
    membership = await get_membership(db, team.id, user.id)
    if membership is None:
        msg = "You are not a member of this team"
        raise ValidationFailedError(msg)

    if membership.role == TeamRole.LEADER.value:
        if await count_members(db, team.id) > 1:
            msg = "Team leaders cannot leave while other members are in the team. Transfer leadership first."
            raise ValidationFailedError(msg)
        pending = await db.execute(
            select(func.count())
            .select_from(TeamPayment)
            .where(TeamPayment.team_id == team.id, TeamPayment.status == PaymentStatus.PENDING.value)
        )
        if pending.scalar_one():
            msg = "The team cannot be deleted while join payments are pending"
            raise ValidationFailedError(msg)
        await db.execute(delete(Message).where(Message.team_id == team.id))
        await db.execute(delete(TeamMember).where(TeamMember.team_id == team.id))
        await db.delete(team)
        await db.flush()
        logger.info("Team %d deleted: leader %d left as last member", team_id, user.id)
        return True

    await db.delete(membership)
    await db.flush()

    await notify_users(
        db,
        await member_ids(db, team.id),
        NotificationType.TEAM_MEMBER_LEFT,
        title="Team Member Left",
        message=f'{user.name} has left the team "{team.name}"',
        related_entity_type="team",
        related_entity_id=team.id,
    )
    logger.info("User %d left team %d", user.id, team.id)
    return False


async def transfer_leadership(db: AsyncSession, leader: User, team_id: int, new_leader_id: int) -> TeamMember:
    """Hand the LEADER role to another member."""
    team = await get_team(db, team_id)
    current = await get_membership(db, team.id, leader.id)
    if current is None or current.role != TeamRole.LEADER.value:
        msg = "Only the team leader can transfer leadership"
        raise PermissionDeniedError(msg)
    if new_leader_id == leader.id:
        msg = "You are already the team leader"
        raise ValidationFailedError(msg)
    target = await get_membership(db, team.id, new_leader_id)
    if target is None:
        msg = "User is not a member of this team"
        raise ValidationFailedError(msg)

    current.role = TeamRole.MEMBER.value
    target.role = TeamRole.LEADER.value
    await db.flush()

    await create_notification(
        db,
        new_leader_id,
        NotificationType.TEAM_LEADERSHIP,
        title="You are now team leader",
        message=f'{leader.name} made you the leader of "{team.name}"',
        related_entity_type="team",
        related_entity_id=team.id,
    )
    logger.info("Team %d leadership: %d -> %d", team.id, leader.id, new_leader_id)
    return target


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


async def _require_member(db: AsyncSession, team_id: int, user_id: int) -> Team:
    team = await get_team(db, team_id)
    if not await is_member(db, team.id, user_id):
        msg = "Only team members can access team messages"
        raise PermissionDeniedError(msg)
    return team


async def list_messages(
    db: AsyncSession, user: User, team_id: int, limit: int = 50
) -> list[tuple[Message, str, str]]:
    """Newest messages first, with sender name and email."""
    await _require_member(db, team_id, user.id)
    result = await db.execute(
        select(Message, User.name, User.email)
        .join(User, User.id == Message.sender_id)
        .where(Message.team_id == team_id)
        .order_by(Message.sent_at.desc(), Message.id.desc())
        .limit(limit)
    )
    return [(row[0], row[1], row[2]) for row in result.all()]


async def post_message(db: AsyncSession, user: User, team_id: int, content: str) -> Message:
    content = content.strip()
    if not content:
        msg = "Message content is required"
        raise ValidationFailedError(msg)
    team = await _require_member(db, team_id, user.id)

    message = Message(team_id=team.id, sender_id=user.id, content=content, sent_at=datetime.now(UTC))
    db.add(message)
    await db.flush()

    preview = content if len(content) <= 80 else f"{content[:77]}..."
    await notify_users(
        db,
        await member_ids(db, team.id),
        NotificationType.TEAM_MESSAGE,
        title=f"New message in {team.name}",
        message=f"{user.name}: {preview}",
        related_entity_type="team",
        related_entity_id=team.id,
        exclude_user_id=user.id,
    )
    return message
