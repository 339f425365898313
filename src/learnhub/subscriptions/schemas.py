"""Subscription request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from learnhub.payments.schemas import PaymentResponse


class PlanResponse(BaseModel):
    id: int
    name: str
    description: str | None = None
    price_monthly: float
    price_yearly: float
    max_sessions_per_week: int
    can_create_private_teams: bool
    has_priority_booking: bool
    has_advanced_analytics: bool

    model_config = {"from_attributes": True}


class SubscriptionResponse(BaseModel):
    id: int
    plan: PlanResponse
    billing_cycle: str
    payment_method: str
    start_date: datetime
    end_date: datetime | None = None
    is_active: bool


class SubscribeRequest(BaseModel):
    plan_id: int
    phone_number: str | None = None
    billing_cycle: Literal["MONTHLY", "YEARLY"] = "MONTHLY"
    payment_method: Literal["MPESA"] = "MPESA"


class SubscribeResponse(BaseModel):
    requires_payment: bool
    message: str
    subscription: SubscriptionResponse | None = None
    payment: PaymentResponse | None = None
