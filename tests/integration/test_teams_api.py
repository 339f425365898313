"""Integration: teams, paid joins and team chat."""

from __future__ import annotations

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.db.models import TeamPayment
from tests.conftest import FakeDaraja, signup, stk_callback


async def _create_team(client: AsyncClient, user: dict, **overrides) -> dict:
    body = {"name": "Study Group", "description": "Weekly calculus practice", "max_members": 5}
    body.update(overrides)
    response = await client.post("/api/v1/teams", json=body, headers=user["headers"])
    assert response.status_code == 201, response.text
    return response.json()


async def _notification_types(client: AsyncClient, user: dict) -> list[str]:
    response = await client.get("/api/v1/notifications", headers=user["headers"])
    return [n["notification_type"] for n in response.json()["notifications"]]


class TestCreateTeam:
    @pytest.mark.asyncio
    async def test_creator_is_leader(self, client: AsyncClient, alice: dict, bob: dict):
        team = await _create_team(client, alice)

        assert team["status"] == "ACTIVE"
        assert team["join_fee"] == 0
        assert team["is_private"] is False
        assert [(m["id"], m["role"]) for m in team["members"]] == [(alice["id"], "LEADER")]
        assert team["active_challenges"] == 0
        assert "TEAM_CREATED" in await _notification_types(client, bob)
        assert "TEAM_CREATED" not in await _notification_types(client, alice)

    @pytest.mark.asyncio
    async def test_size_limits(self, client: AsyncClient, alice: dict):
        for size in (1, 11):
            response = await client.post(
                "/api/v1/teams",
                json={"name": "X", "description": "Y", "max_members": size},
                headers=alice["headers"],
            )
            assert response.status_code == 400
            assert response.json()["detail"] == "Team size must be between 2 and 10 members"

    @pytest.mark.asyncio
    async def test_private_team_needs_plan(self, client: AsyncClient, alice: dict):
        response = await client.post(
            "/api/v1/teams",
            json={"name": "Secret", "description": "Invite only", "max_members": 3, "is_private": True},
            headers=alice["headers"],
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_private_team_on_pro_plan(self, client: AsyncClient, alice: dict):
        plans = (await client.get("/api/v1/subscriptions/plans")).json()
        pro = next(p for p in plans if p["name"] == "Pro")
        started = await client.post(
            "/api/v1/subscriptions/subscribe",
            json={"plan_id": pro["id"], "phone_number": "0712345678"},
            headers=alice["headers"],
        )
        checkout_id = started.json()["payment"]["checkout_request_id"]
        await client.post("/api/v1/payments/mpesa/callback", json=stk_callback(checkout_id))

        team = await _create_team(client, alice, is_private=True)
        assert team["is_private"] is True

    @pytest.mark.asyncio
    async def test_list_and_get(self, client: AsyncClient, alice: dict, bob: dict):
        first = await _create_team(client, alice, name="First")
        second = await _create_team(client, bob, name="Second")

        teams = (await client.get("/api/v1/teams", headers=alice["headers"])).json()
        assert [t["id"] for t in teams] == [second["id"], first["id"]]

        response = await client.get(f"/api/v1/teams/{first['id']}", headers=bob["headers"])
        assert response.json()["name"] == "First"
        assert (await client.get("/api/v1/teams/9999", headers=bob["headers"])).status_code == 404


class TestFreeJoin:
    @pytest.mark.asyncio
    async def test_join_awards_team_player_once(self, client: AsyncClient, alice: dict, bob: dict):
        first = await _create_team(client, alice, name="First")
        second = await _create_team(client, alice, name="Second")

        response = await client.post(f"/api/v1/teams/{first['id']}/join", headers=bob["headers"])
        assert response.status_code == 200
        assert response.json()["requires_payment"] is False
        assert response.json()["badge_awarded"] is True

        response = await client.post(f"/api/v1/teams/{second['id']}/join", headers=bob["headers"])
        assert response.json()["badge_awarded"] is False

        badges = (await client.get("/api/v1/badges/me", headers=bob["headers"])).json()
        assert [b["slug"] for b in badges] == ["team_player"]
        assert "TEAM_JOIN" in await _notification_types(client, alice)

    @pytest.mark.asyncio
    async def test_join_twice(self, client: AsyncClient, alice: dict, bob: dict):
        team = await _create_team(client, alice)
        await client.post(f"/api/v1/teams/{team['id']}/join", headers=bob["headers"])
        response = await client.post(f"/api/v1/teams/{team['id']}/join", headers=bob["headers"])
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_full_team(self, client: AsyncClient, alice: dict, bob: dict, carol: dict):
        team = await _create_team(client, alice, max_members=2)
        await client.post(f"/api/v1/teams/{team['id']}/join", headers=bob["headers"])
        response = await client.post(f"/api/v1/teams/{team['id']}/join", headers=carol["headers"])
        assert response.status_code == 400
        assert response.json()["detail"] == "Team is full"


class TestPaidJoin:
    @pytest.mark.asyncio
    async def test_payment_then_callback_adds_member(
        self, client: AsyncClient, alice: dict, bob: dict, daraja: FakeDaraja
    ):
        team = await _create_team(client, alice, join_fee=150)

        response = await client.post(
            f"/api/v1/teams/{team['id']}/join", json={"phone_number": "0712345678"}, headers=bob["headers"]
        )
        assert response.status_code == 202
        data = response.json()
        assert data["requires_payment"] is True
        payment = data["payment"]
        assert payment["status"] == "PENDING"
        assert payment["kind"] == "team"
        assert payment["phone_number"] == "254712345678"
        assert daraja.stk_pushes[0]["Amount"] == 150
        assert daraja.stk_pushes[0]["AccountReference"] == f"TEAM{team['id']}"

        detail = (await client.get(f"/api/v1/teams/{team['id']}", headers=bob["headers"])).json()
        assert len(detail["members"]) == 1

        ack = await client.post(
            "/api/v1/payments/mpesa/callback", json=stk_callback(payment["checkout_request_id"], amount=150)
        )
        assert ack.json() == {"ResultCode": 0, "ResultDesc": "Accepted"}

        detail = (await client.get(f"/api/v1/teams/{team['id']}", headers=bob["headers"])).json()
        assert [m["id"] for m in detail["members"]] == [alice["id"], bob["id"]]
        assert "PAYMENT" in await _notification_types(client, bob)

    @pytest.mark.asyncio
    async def test_phone_required(self, client: AsyncClient, alice: dict, bob: dict):
        team = await _create_team(client, alice, join_fee=150)
        response = await client.post(f"/api/v1/teams/{team['id']}/join", headers=bob["headers"])
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_pending_payment_conflict(self, client: AsyncClient, alice: dict, bob: dict):
        team = await _create_team(client, alice, join_fee=150)
        url = f"/api/v1/teams/{team['id']}/join"
        body = {"phone_number": "0712345678"}
        assert (await client.post(url, json=body, headers=bob["headers"])).status_code == 202
        assert (await client.post(url, json=body, headers=bob["headers"])).status_code == 409

    @pytest.mark.asyncio
    async def test_push_failure_keeps_failed_payment(
        self, client: AsyncClient, alice: dict, bob: dict, daraja: FakeDaraja, db_session: AsyncSession
    ):
        team = await _create_team(client, alice, join_fee=150)
        daraja.push_status = 400

        response = await client.post(
            f"/api/v1/teams/{team['id']}/join", json={"phone_number": "0712345678"}, headers=bob["headers"]
        )
        assert response.status_code == 502

        result = await db_session.execute(select(TeamPayment).where(TeamPayment.team_id == team["id"]))
        payments = result.scalars().all()
        assert [p.status for p in payments] == ["FAILED"]
        assert payments[0].checkout_request_id is None

        # A failed attempt does not block a retry
        daraja.push_status = 200
        retry = await client.post(
            f"/api/v1/teams/{team['id']}/join", json={"phone_number": "0712345678"}, headers=bob["headers"]
        )
        assert retry.status_code == 202


class TestLeaveAndLeadership:
    @pytest.mark.asyncio
    async def test_member_leaves(self, client: AsyncClient, alice: dict, bob: dict):
        team = await _create_team(client, alice)
        await client.post(f"/api/v1/teams/{team['id']}/join", headers=bob["headers"])

        response = await client.post(f"/api/v1/teams/{team['id']}/leave", headers=bob["headers"])
        assert response.status_code == 200
        assert response.json()["team_deleted"] is False
        assert "TEAM_MEMBER_LEFT" in await _notification_types(client, alice)

    @pytest.mark.asyncio
    async def test_leader_must_transfer_first(self, client: AsyncClient, alice: dict, bob: dict):
        team = await _create_team(client, alice)
        url = f"/api/v1/teams/{team['id']}"
        await client.post(f"{url}/join", headers=bob["headers"])

        assert (await client.post(f"{url}/leave", headers=alice["headers"])).status_code == 400

        response = await client.post(
            f"{url}/transfer-leadership", json={"user_id": bob["id"]}, headers=alice["headers"]
        )
        assert response.status_code == 200
        roles = {m["id"]: m["role"] for m in response.json()["members"]}
        assert roles == {alice["id"]: "MEMBER", bob["id"]: "LEADER"}
        assert "TEAM_LEADERSHIP" in await _notification_types(client, bob)

        assert (await client.post(f"{url}/leave", headers=alice["headers"])).status_code == 200

    @pytest.mark.asyncio
    async def test_last_leader_deletes_team(self, client: AsyncClient, alice: dict):
        team = await _create_team(client, alice)
        await client.post(f"/api/v1/teams/{team['id']}/messages", json={"content": "hi"}, headers=alice["headers"])

        response = await client.post(f"/api/v1/teams/{team['id']}/leave", headers=alice["headers"])
        assert response.json() == {
            "message": "Team has been deleted as you were the last member",
            "team_deleted": True,
        }
        assert (await client.get(f"/api/v1/teams/{team['id']}", headers=alice["headers"])).status_code == 404

    @pytest.mark.asyncio
    async def test_last_leader_cannot_delete_with_pending_payment(
        self, client: AsyncClient, alice: dict, bob: dict, daraja: FakeDaraja
    ):
        team = await _create_team(client, alice, join_fee=150)
        joined = await client.post(
            f"/api/v1/teams/{team['id']}/join", json={"phone_number": "0712345678"}, headers=bob["headers"]
        )
        assert joined.status_code == 202

        response = await client.post(f"/api/v1/teams/{team['id']}/leave", headers=alice["headers"])
        assert response.status_code == 400
        assert response.json()["detail"] == "The team cannot be deleted while join payments are pending"

        await client.post(
            "/api/v1/payments/mpesa/callback",
            json=stk_callback(joined.json()["payment"]["checkout_request_id"], amount=150),
        )
        detail = (await client.get(f"/api/v1/teams/{team['id']}", headers=bob["headers"])).json()
        assert [m["id"] for m in detail["members"]] == [alice["id"], bob["id"]]

    @pytest.mark.asyncio
    async def test_non_member_cannot_leave(self, client: AsyncClient, alice: dict, bob: dict):
        team = await _create_team(client, alice)
        response = await client.post(f"/api/v1/teams/{team['id']}/leave", headers=bob["headers"])
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_only_leader_transfers(self, client: AsyncClient, alice: dict, bob: dict, carol: dict):
        team = await _create_team(client, alice)
        url = f"/api/v1/teams/{team['id']}"
        await client.post(f"{url}/join", headers=bob["headers"])

        response = await client.post(
            f"{url}/transfer-leadership", json={"user_id": alice["id"]}, headers=bob["headers"]
        )
        assert response.status_code == 403

        response = await client.post(
            f"{url}/transfer-leadership", json={"user_id": carol["id"]}, headers=alice["headers"]
        )
        assert response.status_code == 400


class TestMessages:
    @pytest.mark.asyncio
    async def test_post_and_list(self, client: AsyncClient, alice: dict, bob: dict):
        team = await _create_team(client, alice)
        url = f"/api/v1/teams/{team['id']}"
        await client.post(f"{url}/join", headers=bob["headers"])

        response = await client.post(f"{url}/messages", json={"content": "  Hello team  "}, headers=alice["headers"])
        assert response.status_code == 201
        assert response.json()["content"] == "Hello team"
        assert response.json()["sender_name"] == "Alice"
        await client.post(f"{url}/messages", json={"content": "Hi Alice"}, headers=bob["headers"])

        messages = (await client.get(f"{url}/messages", headers=bob["headers"])).json()
        assert [m["content"] for m in messages] == ["Hi Alice", "Hello team"]
        assert "TEAM_MESSAGE" in await _notification_types(client, bob)
        assert "TEAM_MESSAGE" in await _notification_types(client, alice)

    @pytest.mark.asyncio
    async def test_members_only(self, client: AsyncClient, alice: dict):
        team = await _create_team(client, alice)
        outsider = await signup(client, "Dave")
        url = f"/api/v1/teams/{team['id']}/messages"

        assert (await client.get(url, headers=outsider["headers"])).status_code == 403
        response = await client.post(url, json={"content": "let me in"}, headers=outsider["headers"])
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_blank_message(self, client: AsyncClient, alice: dict):
        team = await _create_team(client, alice)
        response = await client.post(
            f"/api/v1/teams/{team['id']}/messages", json={"content": "   "}, headers=alice["headers"]
        )
        assert response.status_code == 400
