"""Subscription endpoints: plan catalogue, current plan, plan changes."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.auth.dependencies import get_current_user
from learnhub.database import get_session
from learnhub.db.models import SubscriptionPlan, User, UserSubscription
from learnhub.errors import IntegrationError, ServiceError, raise_http
from learnhub.payments.mpesa import MpesaClient, get_mpesa_client
from learnhub.payments.schemas import payment_response
from learnhub.subscriptions.schemas import (
    PlanResponse,
    SubscribeRequest,
    SubscribeResponse,
    SubscriptionResponse,
)
from learnhub.subscriptions.service import get_active_subscription, get_plan, list_plans, subscribe

router = APIRouter(prefix="/api/v1/subscriptions", tags=["Subscriptions"])


def _subscription_response(subscription: UserSubscription, plan: SubscriptionPlan) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=subscription.id,
        plan=PlanResponse.model_validate(plan),
        billing_cycle=subscription.billing_cycle,
        payment_method=subscription.payment_method,
        start_date=subscription.start_date,
        end_date=subscription.end_date,
        is_active=subscription.is_active,
    )


@router.get("/plans", response_model=list[PlanResponse])
async def get_plans(db: AsyncSession = Depends(get_session)) -> list[PlanResponse]:
    """All plans, cheapest first."""
    return [PlanResponse.model_validate(p) for p in await list_plans(db)]


@router.get("/me", response_model=SubscriptionResponse | None)
async def get_my_subscription(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> SubscriptionResponse | None:
    """The caller's active subscription, or null."""
    active = await get_active_subscription(db, user.id)
    if active is None:
        return None
    return _subscription_response(*active)


@router.post("/subscribe", response_model=SubscribeResponse)
async def post_subscribe(
    body: SubscribeRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    mpesa: MpesaClient = Depends(get_mpesa_client),
) -> SubscribeResponse | JSONResponse:
    """Change plan. Paid plans answer 202 and wait for the M-Pesa callback."""
    try:
        result = await subscribe(
            db,
            mpesa,
            user,
            plan_id=body.plan_id,
            phone_number=body.phone_number,
            billing_cycle=body.billing_cycle,
        )
    except IntegrationError as e:
        # Keep the FAILED payment row
        await db.commit()
        raise_http(e)
    except ServiceError as e:
        raise_http(e)
    await db.commit()

    if result.payment is not None:
        response = SubscribeResponse(
            requires_payment=True,
            message="Please complete the payment on your phone to activate your subscription",
            payment=payment_response(result.payment),
        )
        return JSONResponse(status_code=202, content=response.model_dump(mode="json"))

    subscription = result.subscription
    plan = await get_plan(db, subscription.plan_id)  # type: ignore[union-attr]
    return SubscribeResponse(
        requires_payment=False,
        message=f"You have successfully subscribed to the {plan.name} plan.",
        subscription=_subscription_response(subscription, plan),  # type: ignore[arg-type]
    )
