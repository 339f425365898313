"""Daraja callback handling and payment settlement."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.auth.service import register_user
from learnhub.db.models import Notification, SubscriptionPayment, SubscriptionPlan, TeamPayment, User
from learnhub.payments.mpesa import MpesaClient
from learnhub.payments.service import handle_stk_callback, parse_callback_metadata, refresh_payment_status
from learnhub.subscriptions.service import get_active_subscription
from tests.conftest import FakeDaraja, stk_callback


async def _pending_payment(db: AsyncSession, user: User, checkout_id: str = "ws_CO_TEST") -> SubscriptionPayment:
    pro = (await db.execute(select(SubscriptionPlan).where(SubscriptionPlan.name == "Pro"))).scalar_one()
    payment = SubscriptionPayment(
        user_id=user.id,
        plan_id=pro.id,
        amount=Decimal(999),
        currency="KES",
        phone_number="254712345678",
        billing_cycle="MONTHLY",
        status="PENDING",
        checkout_request_id=checkout_id,
        created_at=datetime.now(UTC),
    )
    db.add(payment)
    await db.flush()
    return payment


class TestParseMetadata:
    def test_flattens_items(self):
        callback = stk_callback("x", amount=999)["Body"]["stkCallback"]
        meta = parse_callback_metadata(callback)
        assert meta["Amount"] == 999
        assert meta["MpesaReceiptNumber"] == "QKX1234ABC"

    def test_missing_metadata(self):
        assert parse_callback_metadata({"ResultCode": 1032}) == {}


class TestHandleCallback:
    @pytest.mark.asyncio
    async def test_malformed_and_unknown(self, db_session: AsyncSession):
        assert await handle_stk_callback(db_session, {}) == "malformed"
        assert await handle_stk_callback(db_session, {"Body": {"stkCallback": {}}}) == "malformed"
        assert await handle_stk_callback(db_session, stk_callback("ws_CO_NOPE")) == "unknown"

    @pytest.mark.asyncio
    async def test_success_activates_plan(self, db_session: AsyncSession):
        user = await register_user(db_session, "Ivy", "ivy@example.com", "SecurePass1")
        payment = await _pending_payment(db_session, user)

        outcome = await handle_stk_callback(db_session, stk_callback("ws_CO_TEST", amount=999))
        await db_session.commit()

        assert outcome == "COMPLETED"
        assert payment.mpesa_ref == "QKX1234ABC"
        assert payment.completed_at is not None
        subscription, plan = await get_active_subscription(db_session, user.id)
        assert plan.name == "Pro"
        assert subscription.payment_method == "MPESA"

    @pytest.mark.asyncio
    async def test_duplicate_callback_ignored(self, db_session: AsyncSession):
        user = await register_user(db_session, "Jon", "jon@example.com", "SecurePass1")
        await _pending_payment(db_session, user)

        assert await handle_stk_callback(db_session, stk_callback("ws_CO_TEST", amount=999)) == "COMPLETED"
        assert await handle_stk_callback(db_session, stk_callback("ws_CO_TEST", result_code=1032)) == "duplicate"

    @pytest.mark.asyncio
    async def test_cancelled_payment_fails(self, db_session: AsyncSession):
        user = await register_user(db_session, "Kim", "kim@example.com", "SecurePass1")
        payment = await _pending_payment(db_session, user)

        outcome = await handle_stk_callback(db_session, stk_callback("ws_CO_TEST", result_code=1032))
        await db_session.commit()

        assert outcome == "FAILED"
        assert payment.result_desc == "Request cancelled by user"
        _, plan = await get_active_subscription(db_session, user.id)
        assert plan.name == "Free"
        notes = await db_session.execute(
            select(Notification.title).where(
                Notification.user_id == user.id, Notification.notification_type == "PAYMENT"
            )
        )
        assert notes.scalars().all() == ["Subscription Payment Failed"]

    @pytest.mark.asyncio
    async def test_underpayment_fails(self, db_session: AsyncSession):
        user = await register_user(db_session, "Lee", "lee@example.com", "SecurePass1")
        payment = await _pending_payment(db_session, user)

        outcome = await handle_stk_callback(db_session, stk_callback("ws_CO_TEST", amount=10))

        assert outcome == "FAILED"
        assert "Amount mismatch" in payment.result_desc

    @pytest.mark.asyncio
    async def test_payment_for_deleted_team_fails(self, db_session: AsyncSession):
        user = await register_user(db_session, "Mo", "mo@example.com", "SecurePass1")
        payment = TeamPayment(
            team_id=9999,
            user_id=user.id,
            amount=Decimal(150),
            phone_number="254712345678",
            status="PENDING",
            checkout_request_id="ws_CO_GONE",
            created_at=datetime.now(UTC),
        )
        db_session.add(payment)
        await db_session.flush()

        outcome = await handle_stk_callback(db_session, stk_callback("ws_CO_GONE", amount=150))
        await db_session.commit()

        assert outcome == "FAILED"
        assert payment.mpesa_ref == "QKX1234ABC"
        assert "needs a refund" in payment.result_desc
        notes = await db_session.execute(
            select(Notification.title).where(
                Notification.user_id == user.id, Notification.notification_type == "PAYMENT"
            )
        )
        assert notes.scalars().all() == ["Team Payment Failed"]


class TestRefreshStatus:
    @pytest.mark.asyncio
    async def test_query_settles_pending_payment(
        self, db_session: AsyncSession, mpesa_client: MpesaClient, daraja: FakeDaraja
    ):
        user = await register_user(db_session, "Max", "max@example.com", "SecurePass1")
        payment = await _pending_payment(db_session, user)

        await refresh_payment_status(db_session, mpesa_client, payment)
        assert payment.status == "COMPLETED"

    @pytest.mark.asyncio
    async def test_query_failure_code_fails_payment(
        self, db_session: AsyncSession, mpesa_client: MpesaClient, daraja: FakeDaraja
    ):
        daraja.query_result = {"ResultCode": "1037", "ResultDesc": "DS timeout user cannot be reached"}
        user = await register_user(db_session, "Ned", "ned@example.com", "SecurePass1")
        payment = await _pending_payment(db_session, user)

        await refresh_payment_status(db_session, mpesa_client, payment)
        assert payment.status == "FAILED"
        assert payment.result_desc == "DS timeout user cannot be reached"
