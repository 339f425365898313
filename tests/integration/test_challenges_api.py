"""Integration: challenges, progress and badges."""

from __future__ import annotations

import pytest
from httpx import AsyncClient


async def _create_challenge(client: AsyncClient, user: dict, **overrides) -> dict:
    body = {"title": "Solve 5 integrals", "description": "Practice integration by parts", "goal_target": 5}
    body.update(overrides)
    response = await client.post("/api/v1/challenges", json=body, headers=user["headers"])
    assert response.status_code == 201, response.text
    return response.json()


class TestChallenges:
    @pytest.mark.asyncio
    async def test_create_and_list_by_reward(self, client: AsyncClient, alice: dict, bob: dict):
        big = await _create_challenge(client, alice, title="Big", reward_points=500)
        small = await _create_challenge(client, alice, title="Small", reward_points=50)

        challenges = (await client.get("/api/v1/challenges", headers=bob["headers"])).json()
        assert [c["id"] for c in challenges] == [small["id"], big["id"]]
        assert all(c["joined"] is False and c["progress"] == 0 for c in challenges)

    @pytest.mark.asyncio
    async def test_unknown_team(self, client: AsyncClient, alice: dict):
        response = await client.post(
            "/api/v1/challenges",
            json={"title": "T", "description": "D", "team_id": 9999},
            headers=alice["headers"],
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_team_challenge_counts(self, client: AsyncClient, alice: dict):
        team = (
            await client.post(
                "/api/v1/teams",
                json={"name": "Squad", "description": "Study", "max_members": 3},
                headers=alice["headers"],
            )
        ).json()
        await _create_challenge(client, alice, team_id=team["id"])

        detail = (await client.get(f"/api/v1/teams/{team['id']}", headers=alice["headers"])).json()
        assert detail["active_challenges"] == 1
        assert detail["completed_challenges"] == 0

    @pytest.mark.asyncio
    async def test_join(self, client: AsyncClient, alice: dict, bob: dict):
        challenge = await _create_challenge(client, alice)
        url = f"/api/v1/challenges/{challenge['id']}/join"

        response = await client.post(url, headers=bob["headers"])
        assert response.status_code == 201
        assert response.json()["joined"] is True
        assert (await client.post(url, headers=bob["headers"])).status_code == 400
        assert (await client.post("/api/v1/challenges/9999/join", headers=bob["headers"])).status_code == 404


class TestProgress:
    @pytest.mark.asyncio
    async def test_progress_to_completion(self, client: AsyncClient, alice: dict, bob: dict):
        challenge = await _create_challenge(client, alice)
        url = f"/api/v1/challenges/{challenge['id']}/progress"

        partial = await client.post(url, json={"progress": 3}, headers=bob["headers"])
        assert partial.status_code == 200
        assert partial.json()["completed"] is False
        assert partial.json()["badge_awarded"] is False

        done = await client.post(url, json={"progress": 5}, headers=bob["headers"])
        assert done.json()["completed"] is True
        assert done.json()["completed_at"] is not None
        assert done.json()["badge_awarded"] is True

        again = await client.post(url, json={"progress": 6}, headers=bob["headers"])
        assert again.json()["badge_awarded"] is False
        assert again.json()["completed_at"] == done.json()["completed_at"]

        types = [
            n["notification_type"]
            for n in (await client.get("/api/v1/notifications", headers=bob["headers"])).json()["notifications"]
        ]
        assert types.count("CHALLENGE_COMPLETE") == 1
        assert types.count("BADGE_EARNED") == 1

        listed = (await client.get("/api/v1/challenges", headers=bob["headers"])).json()
        assert listed[0]["progress"] == 6
        assert listed[0]["completed"] is True

    @pytest.mark.asyncio
    async def test_negative_progress(self, client: AsyncClient, alice: dict):
        challenge = await _create_challenge(client, alice)
        response = await client.post(
            f"/api/v1/challenges/{challenge['id']}/progress", json={"progress": -1}, headers=alice["headers"]
        )
        assert response.status_code == 400


class TestBadges:
    @pytest.mark.asyncio
    async def test_catalogue(self, client: AsyncClient):
        badges = (await client.get("/api/v1/badges")).json()
        assert [b["slug"] for b in badges] == ["quick_starter", "team_player", "challenge_champion"]

    @pytest.mark.asyncio
    async def test_no_badges_yet(self, client: AsyncClient, alice: dict):
        assert (await client.get("/api/v1/badges/me", headers=alice["headers"])).json() == []
