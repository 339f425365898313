"""Team request/response schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from learnhub.payments.schemas import PaymentResponse


class TeamCreateRequest(BaseModel):
    name: str = Field(..., max_length=128)
    description: str
    max_members: int
    join_fee: Decimal = Field(Decimal(0), max_digits=10, decimal_places=2)
    is_private: bool = False


class TeamMemberResponse(BaseModel):
    id: int
    name: str
    email: str
    role: str


class TeamResponse(BaseModel):
    id: int
    name: str
    description: str | None = None
    status: str
    max_members: int
    join_fee: float
    is_private: bool
    created_at: datetime
    members: list[TeamMemberResponse]
    active_challenges: int = 0
    completed_challenges: int = 0


class JoinTeamRequest(BaseModel):
    phone_number: str | None = None


class JoinTeamResponse(BaseModel):
    requires_payment: bool
    message: str
    badge_awarded: bool = False
    payment: PaymentResponse | None = None


class LeaveTeamResponse(BaseModel):
    message: str
    team_deleted: bool


class TransferLeadershipRequest(BaseModel):
    user_id: int


class MessageCreateRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=4000)


class MessageResponse(BaseModel):
    id: int
    team_id: int
    content: str
    sent_at: datetime
    sender_id: int
    sender_name: str
    sender_email: str
