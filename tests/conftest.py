"""Shared test fixtures."""

from __future__ import annotations

import itertools
import json
import os
from collections.abc import AsyncGenerator
from typing import Any

os.environ["LEARNHUB_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["LEARNHUB_REDIS_URL"] = ""
os.environ["LEARNHUB_ENVIRONMENT"] = "development"
os.environ["LEARNHUB_LOG_FORMAT"] = "console"
os.environ["LEARNHUB_JWT_SECRET_KEY"] = "test-secret-key-with-enough-length-for-hs256"
os.environ["LEARNHUB_MPESA_CONSUMER_KEY"] = "test-key"
os.environ["LEARNHUB_MPESA_CONSUMER_SECRET"] = "test-secret"
os.environ["LEARNHUB_MPESA_SHORTCODE"] = "174379"
os.environ["LEARNHUB_MPESA_PASSKEY"] = "test-passkey"
os.environ["LEARNHUB_GOOGLE_CLIENT_EMAIL"] = ""
os.environ["LEARNHUB_GOOGLE_PRIVATE_KEY"] = ""

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.config import get_settings
from learnhub.database import close_db, create_all, get_session, init_db
from learnhub.gamification.seed import seed_badges
from learnhub.main import create_app
from learnhub.meet.google_calendar import GoogleCalendarClient, get_calendar_client
from learnhub.payments.mpesa import MpesaClient, get_mpesa_client
from learnhub.subscriptions.seed import seed_plans

get_settings.cache_clear()

PASSWORD = "SecurePass1"


class FakeDaraja:
    """Records Daraja requests and answers like the sandbox."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.stk_pushes: list[dict[str, Any]] = []
        self.push_status = 200
        self.query_result: dict[str, Any] = {"ResultCode": "0", "ResultDesc": "The service request is processed"}
        self._ids = itertools.count(1)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/oauth/v1/generate":
            return httpx.Response(200, json={"access_token": "sandbox-token", "expires_in": "3599"})
        if path == "/mpesa/stkpush/v1/processrequest":
            body = json.loads(request.content)
            self.stk_pushes.append(body)
            if self.push_status != 200:
                return httpx.Response(self.push_status, json={"errorMessage": "Bad Request - Invalid PhoneNumber"})
            n = next(self._ids)
            return httpx.Response(
                200,
                json={
                    "MerchantRequestID": f"merchant-{n}",
                    "CheckoutRequestID": f"ws_CO_{n:06d}",
                    "ResponseCode": "0",
                    "ResponseDescription": "Success. Request accepted for processing",
                    "CustomerMessage": "Success. Request accepted for processing",
                },
            )
        if path == "/mpesa/stkpushquery/v1/query":
            return httpx.Response(200, json=self.query_result)
        return httpx.Response(404, json={"errorMessage": "not found"})


def stk_callback(
    checkout_request_id: str, result_code: int = 0, amount: Any = None, receipt: str = "QKX1234ABC"
) -> dict:
    """Build a Daraja STK callback body."""
    callback: dict[str, Any] = {
        "MerchantRequestID": "merchant-x",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": (
            "The service request is processed successfully." if result_code == 0 else "Request cancelled by user"
        ),
    }
    if result_code == 0:
        items = [{"Name": "MpesaReceiptNumber", "Value": receipt}, {"Name": "PhoneNumber", "Value": 254712345678}]
        if amount is not None:
            items.insert(0, {"Name": "Amount", "Value": amount})
        callback["CallbackMetadata"] = {"Item": items}
    return {"Body": {"stkCallback": callback}}


class FakeRedis:
    """In-memory counters and pub/sub log covering the Redis calls the app makes."""

    def __init__(self) -> None:
        self.counters: dict[str, int] = {}
        self.ttls: dict[str, int] = {}
        self.published: list[tuple[str, dict[str, Any]]] = []

    def pipeline(self) -> FakePipeline:
        return FakePipeline(self)

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, json.loads(message)))
        return 1

    async def ping(self) -> bool:
        return True


class FakePipeline:
    def __init__(self, redis: FakeRedis) -> None:
        self.redis = redis
        self.commands: list[tuple[str, str, int]] = []

    def incr(self, key: str) -> None:
        self.commands.append(("incr", key, 1))

    def expire(self, key: str, seconds: int) -> None:
        self.commands.append(("expire", key, seconds))

    async def execute(self) -> list[Any]:
        results: list[Any] = []
        for command, key, value in self.commands:
            if command == "incr":
                self.redis.counters[key] = self.redis.counters.get(key, 0) + value
                results.append(self.redis.counters[key])
            else:
                self.redis.ttls[key] = value
                results.append(True)
        self.commands.clear()
        return results


@pytest.fixture
def fake_redis(monkeypatch: pytest.MonkeyPatch) -> FakeRedis:
    """Install a FakeRedis as the shared client for the duration of a test."""
    fake = FakeRedis()
    monkeypatch.setattr("learnhub.redis_client._client", fake)
    return fake


@pytest.fixture
def daraja() -> FakeDaraja:
    return FakeDaraja()


@pytest.fixture
def mpesa_client(daraja: FakeDaraja) -> MpesaClient:
    return MpesaClient(get_settings(), transport=httpx.MockTransport(daraja.handler))


@pytest.fixture
def calendar_client() -> GoogleCalendarClient:
    """Unconfigured client: returns mock Meet links in development."""
    return GoogleCalendarClient(get_settings())


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, None]:
    """Fresh in-memory schema with seeded badges and plans."""
    settings = get_settings()
    await init_db(settings.database_url)
    await create_all()
    async for db in get_session():
        await seed_badges(db)
        await seed_plans(db)
        break
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(database: None) -> AsyncGenerator[AsyncSession, None]:
    """Direct database session for setup and assertions."""
    async for session in get_session():
        yield session
        break


@pytest_asyncio.fixture
async def client(
    database: None, mpesa_client: MpesaClient, calendar_client: GoogleCalendarClient
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client with external integrations stubbed."""
    app = create_app()
    app.dependency_overrides[get_mpesa_client] = lambda: mpesa_client
    app.dependency_overrides[get_calendar_client] = lambda: calendar_client

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def signup(client: AsyncClient, name: str = "Alice", email: str | None = None) -> dict:
    """Register a user and return the token response plus auth headers."""
    email = email or f"{name.lower().replace(' ', '.')}@example.com"
    response = await client.post("/api/v1/auth/signup", json={"name": name, "email": email, "password": PASSWORD})
    assert response.status_code == 201, response.text
    data = response.json()
    data["headers"] = {"Authorization": f"Bearer {data['access_token']}"}
    data["id"] = data["user"]["id"]
    return data


@pytest_asyncio.fixture
async def alice(client: AsyncClient) -> dict:
    return await signup(client, "Alice")


@pytest_asyncio.fixture
async def bob(client: AsyncClient) -> dict:
    return await signup(client, "Bob")


@pytest_asyncio.fixture
async def carol(client: AsyncClient) -> dict:
    return await signup(client, "Carol")
