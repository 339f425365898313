"""Subscription plans, activation and plan changes."""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.config import get_settings
from learnhub.db.models import (
    BillingCycle,
    PaymentMethod,
    PaymentStatus,
    SubscriptionPayment,
    SubscriptionPlan,
    User,
    UserSubscription,
)
from learnhub.errors import ConflictError, NotFoundError
from learnhub.notifications.service import NotificationType, create_notification
from learnhub.payments.checkout import clean_phone, start_checkout
from learnhub.payments.mpesa import MpesaClient
from learnhub.subscriptions.seed import FREE_PLAN

logger = logging.getLogger(__name__)


@dataclass
class SubscribeResult:
    requires_payment: bool
    subscription: UserSubscription | None = None
    payment: SubscriptionPayment | None = None


def add_months(start: datetime, months: int) -> datetime:
    """Same day-of-month ``months`` later, clamped to the month's last day."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def plan_price(plan: SubscriptionPlan, billing_cycle: str) -> Decimal:
    if billing_cycle == BillingCycle.YEARLY.value:
        return Decimal(plan.price_yearly)
    return Decimal(plan.price_monthly)


async def get_plan(db: AsyncSession, plan_id: int) -> SubscriptionPlan:
    plan = await db.get(SubscriptionPlan, plan_id)
    if plan is None:
        msg = "Subscription plan not found"
        raise NotFoundError(msg)
    return plan


async def list_plans(db: AsyncSession) -> list[SubscriptionPlan]:
    result = await db.execute(select(SubscriptionPlan).order_by(SubscriptionPlan.price_monthly, SubscriptionPlan.id))
    return list(result.scalars().all())


async def ensure_free_plan(db: AsyncSession) -> SubscriptionPlan:
    """Return the free plan, creating it when the catalogue has none."""
    result = await db.execute(
        select(SubscriptionPlan)
        .where(SubscriptionPlan.name.in_(("Free", "Basic")))
        .order_by(SubscriptionPlan.id)
        .limit(1)
    )
    plan = result.scalar_one_or_none()
    if plan is None:
        plan = SubscriptionPlan(**FREE_PLAN)
        db.add(plan)
        await db.flush()
        logger.info("Created missing Free plan %s", plan.id)
    return plan


async def get_active_subscription(
    db: AsyncSession, user_id: int
) -> tuple[UserSubscription, SubscriptionPlan] | None:
    result = await db.execute(
        select(UserSubscription, SubscriptionPlan)
        .join(SubscriptionPlan, SubscriptionPlan.id == UserSubscription.plan_id)
        .where(UserSubscription.user_id == user_id, UserSubscription.is_active.is_(True))
        .order_by(UserSubscription.start_date.desc(), UserSubscription.id.desc())
        .limit(1)
    )
    row = result.first()
    return (row[0], row[1]) if row else None


async def activate_subscription(
    db: AsyncSession,
    user_id: int,
    plan: SubscriptionPlan,
    billing_cycle: str = BillingCycle.MONTHLY.value,
    payment_method: str = PaymentMethod.FREE.value,
) -> UserSubscription:
    """Deactivate the user's current subscription(s) and start a new one.

    Runs in the caller's transaction so at most one row stays active.
    """
    now = datetime.now(UTC)
    await db.execute(
        update(UserSubscription)
        .where(UserSubscription.user_id == user_id, UserSubscription.is_active.is_(True))
        .values(is_active=False, end_date=now)
    )
    months = 12 if billing_cycle == BillingCycle.YEARLY.value else 1
    subscription = UserSubscription(
        user_id=user_id,
        plan_id=plan.id,
        billing_cycle=billing_cycle,
        payment_method=payment_method,
        start_date=now,
        end_date=add_months(now, months),
        is_active=True,
    )
    db.add(subscription)
    await db.flush()
    logger.info("User %s subscribed to plan %s (%s)", user_id, plan.name, billing_cycle)
    return subscription


async def subscribe(
    db: AsyncSession,
    mpesa: MpesaClient,
    user: User,
    plan_id: int,
    phone_number: str | None = None,
    billing_cycle: str = BillingCycle.MONTHLY.value,
) -> SubscribeResult:
    """Switch the user to ``plan_id``.

    Free plans activate immediately. Paid plans create a PENDING payment and
    send an STK push; activation happens when the payment completes.
    """
    plan = await get_plan(db, plan_id)
    amount = plan_price(plan, billing_cycle)

    if amount <= 0:
        subscription = await activate_subscription(
            db, user.id, plan, billing_cycle=billing_cycle, payment_method=PaymentMethod.FREE.value
        )
        await create_notification(
            db,
            user.id,
            NotificationType.SUBSCRIPTION,
            title="Subscription Updated",
            message=f"You have successfully subscribed to the {plan.name} plan.",
            related_entity_type="subscription",
            related_entity_id=subscription.id,
        )
        return SubscribeResult(requires_payment=False, subscription=subscription)

    phone = clean_phone(phone_number)
    pending = await db.execute(
        select(SubscriptionPayment.id).where(
            SubscriptionPayment.user_id == user.id,
            SubscriptionPayment.plan_id == plan.id,
            SubscriptionPayment.status == PaymentStatus.PENDING.value,
        )
    )
    if pending.first() is not None:
        msg = "A payment for this plan is already pending"
        raise ConflictError(msg)

    payment = SubscriptionPayment(
        user_id=user.id,
        plan_id=plan.id,
        amount=amount,
        currency=get_settings().mpesa_currency,
        phone_number=phone,
        payment_method=PaymentMethod.MPESA.value,
        billing_cycle=billing_cycle,
        status=PaymentStatus.PENDING.value,
        created_at=datetime.now(UTC),
    )
    db.add(payment)
    await start_checkout(
        db, mpesa, payment, account_reference=f"SUB{plan.id}U{user.id}", description=f"{plan.name} plan"
    )
    return SubscribeResult(requires_payment=True, payment=payment)
