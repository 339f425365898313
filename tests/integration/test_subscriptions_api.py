"""Integration: plans, plan changes and M-Pesa activation."""

from __future__ import annotations

import pytest
from httpx import AsyncClient

from tests.conftest import FakeDaraja, stk_callback


async def _plans(client: AsyncClient) -> dict[str, dict]:
    return {p["name"]: p for p in (await client.get("/api/v1/subscriptions/plans")).json()}


class TestPlans:
    @pytest.mark.asyncio
    async def test_catalogue_cheapest_first(self, client: AsyncClient):
        plans = (await client.get("/api/v1/subscriptions/plans")).json()
        assert [p["name"] for p in plans] == ["Free", "Pro", "Enterprise"]
        assert plans[0]["price_monthly"] == 0
        assert plans[1]["can_create_private_teams"] is True

    @pytest.mark.asyncio
    async def test_signup_gets_free_plan(self, client: AsyncClient, alice: dict):
        me = (await client.get("/api/v1/subscriptions/me", headers=alice["headers"])).json()
        assert me["plan"]["name"] == "Free"
        assert me["is_active"] is True


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_paid_plan_activates_on_callback(self, client: AsyncClient, alice: dict, daraja: FakeDaraja):
        plans = await _plans(client)

        response = await client.post(
            "/api/v1/subscriptions/subscribe",
            json={"plan_id": plans["Pro"]["id"], "phone_number": "+254 712 345 678", "billing_cycle": "YEARLY"},
            headers=alice["headers"],
        )
        assert response.status_code == 202
        payment = response.json()["payment"]
        assert payment["kind"] == "subscription"
        assert payment["amount"] == 9990
        assert daraja.stk_pushes[0]["PhoneNumber"] == "254712345678"

        me = (await client.get("/api/v1/subscriptions/me", headers=alice["headers"])).json()
        assert me["plan"]["name"] == "Free"

        await client.post("/api/v1/payments/mpesa/callback", json=stk_callback(payment["checkout_request_id"]))

        me = (await client.get("/api/v1/subscriptions/me", headers=alice["headers"])).json()
        assert me["plan"]["name"] == "Pro"
        assert me["billing_cycle"] == "YEARLY"
        assert me["payment_method"] == "MPESA"

    @pytest.mark.asyncio
    async def test_cancelled_payment_keeps_plan(self, client: AsyncClient, alice: dict):
        plans = await _plans(client)
        response = await client.post(
            "/api/v1/subscriptions/subscribe",
            json={"plan_id": plans["Enterprise"]["id"], "phone_number": "0712345678"},
            headers=alice["headers"],
        )
        checkout_id = response.json()["payment"]["checkout_request_id"]
        await client.post("/api/v1/payments/mpesa/callback", json=stk_callback(checkout_id, result_code=1032))

        me = (await client.get("/api/v1/subscriptions/me", headers=alice["headers"])).json()
        assert me["plan"]["name"] == "Free"
        status = (await client.get(f"/api/v1/payments/{checkout_id}", headers=alice["headers"])).json()
        assert status["status"] == "FAILED"

    @pytest.mark.asyncio
    async def test_switch_back_to_free(self, client: AsyncClient, alice: dict):
        plans = await _plans(client)
        response = await client.post(
            "/api/v1/subscriptions/subscribe", json={"plan_id": plans["Free"]["id"]}, headers=alice["headers"]
        )
        assert response.status_code == 200
        data = response.json()
        assert data["requires_payment"] is False
        assert data["subscription"]["plan"]["name"] == "Free"

    @pytest.mark.asyncio
    async def test_phone_required(self, client: AsyncClient, alice: dict):
        plans = await _plans(client)
        response = await client.post(
            "/api/v1/subscriptions/subscribe", json={"plan_id": plans["Pro"]["id"]}, headers=alice["headers"]
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_invalid_phone(self, client: AsyncClient, alice: dict):
        plans = await _plans(client)
        response = await client.post(
            "/api/v1/subscriptions/subscribe",
            json={"plan_id": plans["Pro"]["id"], "phone_number": "12345"},
            headers=alice["headers"],
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_only_mpesa_accepted(self, client: AsyncClient, alice: dict, daraja: FakeDaraja):
        plans = await _plans(client)
        response = await client.post(
            "/api/v1/subscriptions/subscribe",
            json={"plan_id": plans["Pro"]["id"], "phone_number": "0712345678", "payment_method": "CARD"},
            headers=alice["headers"],
        )
        assert response.status_code == 400
        assert [e["loc"][-1] for e in response.json()["errors"]] == ["payment_method"]
        assert daraja.stk_pushes == []

    @pytest.mark.asyncio
    async def test_unknown_plan(self, client: AsyncClient, alice: dict):
        response = await client.post(
            "/api/v1/subscriptions/subscribe", json={"plan_id": 9999}, headers=alice["headers"]
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_pending_conflict(self, client: AsyncClient, alice: dict):
        plans = await _plans(client)
        body = {"plan_id": plans["Pro"]["id"], "phone_number": "0712345678"}
        first = await client.post("/api/v1/subscriptions/subscribe", json=body, headers=alice["headers"])
        assert first.status_code == 202
        second = await client.post("/api/v1/subscriptions/subscribe", json=body, headers=alice["headers"])
        assert second.status_code == 409
