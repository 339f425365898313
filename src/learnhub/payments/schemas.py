"""Payment response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from learnhub.db.models import SubscriptionPayment, TeamPayment


class PaymentResponse(BaseModel):
    id: int
    kind: Literal["team", "subscription"]
    amount: float
    currency: str
    phone_number: str
    status: str
    checkout_request_id: str | None = None
    mpesa_ref: str | None = None
    result_desc: str | None = None
    team_id: int | None = None
    plan_id: int | None = None
    created_at: datetime
    completed_at: datetime | None = None


def payment_response(payment: TeamPayment | SubscriptionPayment) -> PaymentResponse:
    is_team = isinstance(payment, TeamPayment)
    return PaymentResponse(
        id=payment.id,
        kind="team" if is_team else "subscription",
        amount=float(payment.amount),
        currency=payment.currency,
        phone_number=payment.phone_number,
        status=payment.status,
        checkout_request_id=payment.checkout_request_id,
        mpesa_ref=payment.mpesa_ref,
        result_desc=payment.result_desc,
        team_id=payment.team_id if is_team else None,  # type: ignore[union-attr]
        plan_id=None if is_team else payment.plan_id,  # type: ignore[union-attr]
        created_at=payment.created_at,
        completed_at=payment.completed_at,
    )


class CallbackAck(BaseModel):
    ResultCode: int = 0
    ResultDesc: str = "Accepted"
