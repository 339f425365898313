"""Shared STK push initiation for team and subscription payments."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.db.models import PaymentStatus, SubscriptionPayment, TeamPayment
from learnhub.errors import IntegrationError, ValidationFailedError
from learnhub.payments.mpesa import MpesaClient, MpesaError, normalize_phone

logger = logging.getLogger(__name__)


def clean_phone(phone_number: str | None) -> str:
    """Normalize a customer phone number or raise ValidationFailedError."""
    if not phone_number or not phone_number.strip():
        msg = "Phone number is required for payment"
        raise ValidationFailedError(msg)
    try:
        return normalize_phone(phone_number)
    except ValueError as e:
        raise ValidationFailedError(str(e)) from e


async def start_checkout(
    db: AsyncSession,
    mpesa: MpesaClient,
    payment: TeamPayment | SubscriptionPayment,
    account_reference: str,
    description: str,
) -> None:
    """Send the STK push for a freshly added PENDING payment row.

    On failure the row is kept as FAILED (so nothing stays PENDING without a
    checkout id) and IntegrationError is raised; the caller should commit
    before surfacing the error.
    """
    await db.flush()
    try:
        result = await mpesa.stk_push(
            payment.phone_number,
            payment.amount,
            account_reference=account_reference,
            transaction_desc=description,
        )
    except MpesaError as e:
        payment.status = PaymentStatus.FAILED.value
        payment.result_desc = str(e)[:512]
        payment.completed_at = datetime.now(UTC)
        await db.flush()
        logger.error("STK push failed for %s %s: %s", type(payment).__name__, payment.id, e)
        raise IntegrationError(str(e), payment_id=payment.id) from e

    payment.checkout_request_id = result.checkout_request_id
    payment.merchant_request_id = result.merchant_request_id
    await db.flush()
    logger.info("STK push sent for %s %s (%s)", type(payment).__name__, payment.id, result.checkout_request_id)
