"""Integration: profile view, edits and password change."""

from __future__ import annotations

import pytest
from httpx import AsyncClient

from tests.conftest import PASSWORD


class TestProfile:
    @pytest.mark.asyncio
    async def test_fresh_profile(self, client: AsyncClient, alice: dict):
        response = await client.get("/api/v1/profile", headers=alice["headers"])
        assert response.status_code == 200
        data = response.json()
        assert data["id"] == alice["id"]
        assert data["name"] == "Alice"
        assert data["email"] == "alice@example.com"
        assert data["bio"] is None
        assert data["completed_sessions"] == 0
        assert data["earned_badges"] == 0
        assert data["recent_badges"] == []
        assert data["joined_date"]

    @pytest.mark.asyncio
    async def test_badges_and_sessions_counted(self, client: AsyncClient, alice: dict, bob: dict):
        team = (
            await client.post(
                "/api/v1/teams",
                json={"name": "Squad", "description": "Study", "max_members": 3},
                headers=alice["headers"],
            )
        ).json()
        await client.post(f"/api/v1/teams/{team['id']}/join", headers=bob["headers"])

        session = (
            await client.post(
                "/api/v1/sessions",
                json={
                    "title": "Graph theory",
                    "description": "Shortest paths",
                    "start_time": "2030-01-01T10:00:00Z",
                    "duration": 60,
                },
                headers=alice["headers"],
            )
        ).json()
        await client.post(f"/api/v1/sessions/{session['id']}/join", headers=bob["headers"])
        await client.post(f"/api/v1/sessions/{session['id']}/complete", headers=bob["headers"])

        data = (await client.get("/api/v1/profile", headers=bob["headers"])).json()
        assert data["completed_sessions"] == 1
        assert data["earned_badges"] == 2
        assert {b["slug"] for b in data["recent_badges"]} == {"team_player", "quick_starter"}

    @pytest.mark.asyncio
    async def test_update(self, client: AsyncClient, alice: dict):
        response = await client.put(
            "/api/v1/profile", json={"name": "  Alice Wanjiru ", "bio": "Maths tutor"}, headers=alice["headers"]
        )
        assert response.status_code == 200
        assert response.json()["name"] == "Alice Wanjiru"
        assert response.json()["bio"] == "Maths tutor"

        response = await client.put(
            "/api/v1/profile", json={"name": "Alice Wanjiru", "bio": "   "}, headers=alice["headers"]
        )
        assert response.json()["name"] == "Alice Wanjiru"
        assert response.json()["bio"] is None

    @pytest.mark.asyncio
    async def test_blank_name(self, client: AsyncClient, alice: dict):
        response = await client.put("/api/v1/profile", json={"name": "  "}, headers=alice["headers"])
        assert response.status_code == 400
        assert response.json()["detail"] == "Name is required"


class TestPasswordChange:
    @pytest.mark.asyncio
    async def test_change_revokes_refresh_tokens(self, client: AsyncClient, alice: dict):
        response = await client.put(
            "/api/v1/profile/password",
            json={"current_password": PASSWORD, "new_password": "NewSecure2"},
            headers=alice["headers"],
        )
        assert response.status_code == 200
        assert response.json() == {"detail": "Password updated successfully"}

        refresh = await client.post("/api/v1/auth/refresh", json={"refresh_token": alice["refresh_token"]})
        assert refresh.status_code == 401

        old = await client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": PASSWORD})
        assert old.status_code == 401
        new = await client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": "NewSecure2"})
        assert new.status_code == 200

    @pytest.mark.asyncio
    async def test_wrong_current_password(self, client: AsyncClient, alice: dict):
        response = await client.put(
            "/api/v1/profile/password",
            json={"current_password": "Nope12345", "new_password": "NewSecure2"},
            headers=alice["headers"],
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_weak_new_password(self, client: AsyncClient, alice: dict):
        response = await client.put(
            "/api/v1/profile/password",
            json={"current_password": PASSWORD, "new_password": "short"},
            headers=alice["headers"],
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_fields(self, client: AsyncClient, alice: dict):
        response = await client.put("/api/v1/profile/password", json={}, headers=alice["headers"])
        assert response.status_code == 400
