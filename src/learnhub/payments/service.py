"""M-Pesa payment settlement.

A payment is settled exactly once, either by the Daraja callback or by an
explicit STK query, and always looked up by its CheckoutRequestID.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.db.models import (
    PaymentMethod,
    PaymentStatus,
    SubscriptionPayment,
    SubscriptionPlan,
    Team,
    TeamPayment,
)
from learnhub.errors import NotFoundError
from learnhub.notifications.service import NotificationType, create_notification
from learnhub.payments.mpesa import MpesaClient, MpesaError
from learnhub.subscriptions.service import activate_subscription
from learnhub.teams.service import add_member, is_member

logger = logging.getLogger(__name__)

Payment = TeamPayment | SubscriptionPayment


def parse_callback_metadata(callback: dict[str, Any]) -> dict[str, Any]:
    """Flatten ``CallbackMetadata.Item`` into a name -> value dict."""
    items = (callback.get("CallbackMetadata") or {}).get("Item") or []
    return {item["Name"]: item.get("Value") for item in items if isinstance(item, dict) and "Name" in item}


async def find_payment(db: AsyncSession, checkout_request_id: str) -> Payment | None:
    """Find the team or subscription payment with this CheckoutRequestID."""
    result = await db.execute(select(TeamPayment).where(TeamPayment.checkout_request_id == checkout_request_id))
    team_payment = result.scalar_one_or_none()
    if team_payment is not None:
        return team_payment
    result = await db.execute(
        select(SubscriptionPayment).where(SubscriptionPayment.checkout_request_id == checkout_request_id)
    )
    return result.scalar_one_or_none()


async def get_user_payment(db: AsyncSession, user_id: int, checkout_request_id: str) -> Payment:
    payment = await find_payment(db, checkout_request_id)
    if payment is None or payment.user_id != user_id:
        msg = "Payment not found"
        raise NotFoundError(msg)
    return payment


async def fail_payment(db: AsyncSession, payment: Payment, result_desc: str) -> None:
    payment.status = PaymentStatus.FAILED.value
    payment.result_desc = result_desc[:512]
    payment.completed_at = datetime.now(UTC)
    await db.flush()

    if isinstance(payment, TeamPayment):
        team = await db.get(Team, payment.team_id)
        title = "Team Payment Failed"
        message = f"Your payment for joining {team.name if team else 'the team'} failed. Please try again."
        entity_type, entity_id = "team", payment.team_id
    else:
        title = "Subscription Payment Failed"
        message = "Your subscription payment failed. Please try again."
        entity_type, entity_id = "subscription_payment", payment.id

    await create_notification(
        db,
        payment.user_id,
        NotificationType.PAYMENT,
        title=title,
        message=message,
        related_entity_type=entity_type,
        related_entity_id=entity_id,
    )
    logger.info("Payment %s failed: %s", payment.checkout_request_id, result_desc)


async def complete_payment(
    db: AsyncSession,
    payment: Payment,
    mpesa_ref: str | None,
    paid_amount: Any = None,
    result_desc: str | None = None,
) -> None:
    """Mark a payment COMPLETED and grant what it paid for.

    A reported amount below the expected amount fails the payment instead.
    """
    if paid_amount is not None:
        try:
            paid = Decimal(str(paid_amount))
        except InvalidOperation:
            paid = None
        if paid is not None and paid < Decimal(payment.amount):
            logger.warning(
                "Payment %s underpaid: expected %s, got %s", payment.checkout_request_id, payment.amount, paid
            )
            await fail_payment(db, payment, f"Amount mismatch: expected {payment.amount}, received {paid}")
            return

    # The paid-for team or plan can disappear while the customer is still on the STK prompt
    team: Team | None = None
    plan: SubscriptionPlan | None = None
    if isinstance(payment, TeamPayment):
        team = await db.get(Team, payment.team_id)
        missing = None if team else f"Team {payment.team_id}"
    else:
        plan = await db.get(SubscriptionPlan, payment.plan_id)
        missing = None if plan else f"Plan {payment.plan_id}"
    if missing is not None:
        logger.error("%s for payment %s no longer exists (receipt %s)", missing, payment.checkout_request_id, mpesa_ref)
        payment.mpesa_ref = mpesa_ref
        await fail_payment(db, payment, f"{missing} no longer exists; receipt {mpesa_ref or 'n/a'} needs a refund")
        return

    payment.status = PaymentStatus.COMPLETED.value
    payment.mpesa_ref = mpesa_ref
    payment.result_desc = result_desc
    payment.completed_at = datetime.now(UTC)
    await db.flush()

    if team is not None:
        if not await is_member(db, team.id, payment.user_id):
            await add_member(db, team, payment.user_id)
        await create_notification(
            db,
            payment.user_id,
            NotificationType.PAYMENT,
            title="Team Payment Successful",
            message=f"Your payment for joining {team.name} was successful.",
            related_entity_type="team",
            related_entity_id=team.id,
        )
    elif plan is not None:
        subscription = await activate_subscription(
            db,
            payment.user_id,
            plan,
            billing_cycle=payment.billing_cycle,
            payment_method=PaymentMethod.MPESA.value,
        )
        await create_notification(
            db,
            payment.user_id,
            NotificationType.SUBSCRIPTION,
            title="Subscription Activated",
            message=f"Your payment was received. You are now on the {plan.name} plan.",
            related_entity_type="subscription",
            related_entity_id=subscription.id,
        )
    logger.info("Payment %s completed (%s)", payment.checkout_request_id, mpesa_ref)


async def handle_stk_callback(db: AsyncSession, payload: dict[str, Any]) -> str:
    """Apply a Daraja STK callback. Returns a short outcome label for logging.

    Unknown or already-settled payments are acknowledged without changes.
    """
    callback = (payload.get("Body") or {}).get("stkCallback")
    if not isinstance(callback, dict):
        logger.warning("M-Pesa callback without Body.stkCallback")
        return "malformed"

    checkout_request_id = callback.get("CheckoutRequestID")
    if not checkout_request_id:
        logger.warning("M-Pesa callback without CheckoutRequestID")
        return "malformed"

    payment = await find_payment(db, checkout_request_id)
    if payment is None:
        logger.warning("M-Pesa callback for unknown checkout %s", checkout_request_id)
        return "unknown"
    if payment.status != PaymentStatus.PENDING.value:
        logger.info("M-Pesa callback for settled checkout %s (%s)", checkout_request_id, payment.status)
        return "duplicate"

    if callback.get("MerchantRequestID") and not payment.merchant_request_id:
        payment.merchant_request_id = callback["MerchantRequestID"]

    result_desc = str(callback.get("ResultDesc") or "")
    try:
        result_code = int(callback.get("ResultCode"))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        result_code = -1

    if result_code == 0:
        metadata = parse_callback_metadata(callback)
        await complete_payment(
            db,
            payment,
            mpesa_ref=metadata.get("MpesaReceiptNumber"),
            paid_amount=metadata.get("Amount"),
            result_desc=result_desc or None,
        )
    else:
        await fail_payment(db, payment, result_desc or f"ResultCode {result_code}")
    return payment.status


async def refresh_payment_status(db: AsyncSession, mpesa: MpesaClient, payment: Payment) -> Payment:
    """Query Daraja for a PENDING payment and settle it when it has an outcome."""
    if payment.status != PaymentStatus.PENDING.value or not payment.checkout_request_id:
        return payment
    try:
        result = await mpesa.stk_query(payment.checkout_request_id)
    except MpesaError as e:
        # Still processing or Daraja unavailable: stays PENDING
        logger.info("STK query for %s inconclusive: %s", payment.checkout_request_id, e)
        return payment

    if result.result_code == "0":
        await complete_payment(db, payment, mpesa_ref=None, result_desc=result.result_desc or None)
    elif result.result_code:
        await fail_payment(db, payment, result.result_desc or f"ResultCode {result.result_code}")
    return payment
