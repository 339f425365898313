"""Payment endpoints: the Daraja callback and payment status."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.auth.dependencies import get_current_user
from learnhub.database import get_session
from learnhub.db.models import User
from learnhub.errors import ServiceError, raise_http
from learnhub.payments.mpesa import MpesaClient, get_mpesa_client
from learnhub.payments.schemas import CallbackAck, PaymentResponse, payment_response
from learnhub.payments.service import get_user_payment, handle_stk_callback, refresh_payment_status

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/payments", tags=["Payments"])


@router.post("/mpesa/callback", response_model=CallbackAck)
async def mpesa_callback(
    payload: dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_session),
) -> CallbackAck:
    """Daraja STK callback. Always acknowledged so Safaricom stops retrying."""
    outcome = await handle_stk_callback(db, payload)
    await db.commit()
    logger.info("mpesa_callback", outcome=outcome)
    return CallbackAck()


@router.get("/{checkout_request_id}", response_model=PaymentResponse)
async def get_payment_status(
    checkout_request_id: str,
    refresh: bool = Query(False),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    mpesa: MpesaClient = Depends(get_mpesa_client),
) -> PaymentResponse:
    """Status of one of the caller's payments, optionally re-checked with Daraja."""
    try:
        payment = await get_user_payment(db, user.id, checkout_request_id)
    except ServiceError as e:
        raise_http(e)
    if refresh:
        payment = await refresh_payment_status(db, mpesa, payment)
        await db.commit()
    return payment_response(payment)
