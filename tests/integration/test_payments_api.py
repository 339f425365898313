"""Integration: Daraja callback endpoint and payment status."""

from __future__ import annotations

import pytest
from httpx import AsyncClient

from tests.conftest import FakeDaraja, stk_callback


async def _start_team_payment(client: AsyncClient, leader: dict, payer: dict, fee: int = 200) -> dict:
    team = (
        await client.post(
            "/api/v1/teams",
            json={"name": "Paid Club", "description": "Premium study", "max_members": 4, "join_fee": fee},
            headers=leader["headers"],
        )
    ).json()
    response = await client.post(
        f"/api/v1/teams/{team['id']}/join", json={"phone_number": "0712345678"}, headers=payer["headers"]
    )
    assert response.status_code == 202, response.text
    return response.json()["payment"]


class TestCallback:
    @pytest.mark.asyncio
    async def test_always_acknowledged(self, client: AsyncClient):
        for body in ({}, {"Body": {}}, stk_callback("ws_CO_unknown")):
            response = await client.post("/api/v1/payments/mpesa/callback", json=body)
            assert response.status_code == 200
            assert response.json() == {"ResultCode": 0, "ResultDesc": "Accepted"}

    @pytest.mark.asyncio
    async def test_success_sets_receipt(self, client: AsyncClient, alice: dict, bob: dict):
        payment = await _start_team_payment(client, alice, bob)
        checkout_id = payment["checkout_request_id"]

        await client.post(
            "/api/v1/payments/mpesa/callback", json=stk_callback(checkout_id, amount=200, receipt="QKX9")
        )

        status = (await client.get(f"/api/v1/payments/{checkout_id}", headers=bob["headers"])).json()
        assert status["status"] == "COMPLETED"
        assert status["mpesa_ref"] == "QKX9"
        assert status["completed_at"] is not None

    @pytest.mark.asyncio
    async def test_duplicate_callback_ignored(self, client: AsyncClient, alice: dict, bob: dict):
        payment = await _start_team_payment(client, alice, bob)
        checkout_id = payment["checkout_request_id"]

        await client.post("/api/v1/payments/mpesa/callback", json=stk_callback(checkout_id, receipt="FIRST"))
        await client.post("/api/v1/payments/mpesa/callback", json=stk_callback(checkout_id, result_code=1))

        status = (await client.get(f"/api/v1/payments/{checkout_id}", headers=bob["headers"])).json()
        assert status["status"] == "COMPLETED"
        assert status["mpesa_ref"] == "FIRST"

    @pytest.mark.asyncio
    async def test_underpayment_fails(self, client: AsyncClient, alice: dict, bob: dict):
        payment = await _start_team_payment(client, alice, bob)
        checkout_id = payment["checkout_request_id"]

        await client.post("/api/v1/payments/mpesa/callback", json=stk_callback(checkout_id, amount=50))

        status = (await client.get(f"/api/v1/payments/{checkout_id}", headers=bob["headers"])).json()
        assert status["status"] == "FAILED"
        team = (await client.get(f"/api/v1/teams/{payment['team_id']}", headers=bob["headers"])).json()
        assert len(team["members"]) == 1


class TestPaymentStatus:
    @pytest.mark.asyncio
    async def test_only_owner_can_see(self, client: AsyncClient, alice: dict, bob: dict):
        payment = await _start_team_payment(client, alice, bob)
        response = await client.get(f"/api/v1/payments/{payment['checkout_request_id']}", headers=alice["headers"])
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown(self, client: AsyncClient, bob: dict):
        assert (await client.get("/api/v1/payments/ws_CO_missing", headers=bob["headers"])).status_code == 404

    @pytest.mark.asyncio
    async def test_refresh_completes_pending(
        self, client: AsyncClient, alice: dict, bob: dict, daraja: FakeDaraja
    ):
        payment = await _start_team_payment(client, alice, bob)
        checkout_id = payment["checkout_request_id"]

        plain = (await client.get(f"/api/v1/payments/{checkout_id}", headers=bob["headers"])).json()
        assert plain["status"] == "PENDING"

        refreshed = (await client.get(f"/api/v1/payments/{checkout_id}?refresh=true", headers=bob["headers"])).json()
        assert refreshed["status"] == "COMPLETED"
        team = (await client.get(f"/api/v1/teams/{payment['team_id']}", headers=bob["headers"])).json()
        assert bob["id"] in [m["id"] for m in team["members"]]
        assert any(r.url.path == "/mpesa/stkpushquery/v1/query" for r in daraja.requests)

    @pytest.mark.asyncio
    async def test_refresh_records_cancellation(
        self, client: AsyncClient, alice: dict, bob: dict, daraja: FakeDaraja
    ):
        payment = await _start_team_payment(client, alice, bob)
        daraja.query_result = {"ResultCode": "1032", "ResultDesc": "Request cancelled by user"}

        refreshed = (
            await client.get(f"/api/v1/payments/{payment['checkout_request_id']}?refresh=true", headers=bob["headers"])
        ).json()
        assert refreshed["status"] == "FAILED"
        assert refreshed["result_desc"] == "Request cancelled by user"
