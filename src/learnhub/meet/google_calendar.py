"""
Google Calendar integration for session video meetings.

Authenticates as a service account (JWT bearer grant) and creates calendar
events with a Google Meet conference attached. Video meetings are optional:
every failure is logged and reported as ``None``.
"""

from __future__ import annotations

import logging
import secrets
import time
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

import httpx
import jwt

from learnhub.config import Settings, get_settings

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar"


@dataclass
class MeetResult:
    meet_link: str
    event_id: str


class GoogleCalendarClient:
    """Service-account Calendar client."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings
        self._transport = transport
        self._access_token: str | None = None
        self._token_expiry: float = 0.0

    @property
    def enabled(self) -> bool:
        return self.settings.google_calendar_enabled

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.settings.google_timeout_seconds, transport=self._transport)

    def _signed_assertion(self) -> str:
        now = int(time.time())
        claims = {
            "iss": self.settings.google_client_email,
            "scope": CALENDAR_SCOPE,
            "aud": GOOGLE_TOKEN_URL,
            "iat": now,
            "exp": now + 3600,
        }
        # Keys pasted into env files often carry literal \n sequences
        private_key = self.settings.google_private_key.replace("\\n", "\n")
        return jwt.encode(claims, private_key, algorithm="RS256")

    async def get_access_token(self) -> str:
        """Exchange a signed assertion for an access token (cached until near expiry)."""
        if self._access_token and time.monotonic() < self._token_expiry:
            return self._access_token

        async with self._client() as client:
            response = await client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                    "assertion": self._signed_assertion(),
                },
            )
            response.raise_for_status()
            payload = response.json()

        self._access_token = payload["access_token"]
        self._token_expiry = time.monotonic() + max(int(payload.get("expires_in", 3600)) - 60, 0)
        return self._access_token

    async def create_meet(self, title: str, start: datetime, end: datetime) -> MeetResult | None:
        """Create a calendar event with a Meet link.

        Returns None when the integration is unavailable. In development
        without credentials a mock link is returned instead.
        """
        if not self.enabled:
            if self.settings.environment == "development":
                logger.warning("Google Calendar not configured, returning mock Meet link")
                return MeetResult(
                    meet_link=f"https://meet.google.com/mock-{secrets.token_hex(4)}",
                    event_id=f"mock-{int(time.time() * 1000)}",
                )
            logger.error("Google Calendar credentials not configured")
            return None

        event = {
            "summary": title,
            "description": f"Learning session: {title}\n\nParticipants can join using this link.",
            "start": {"dateTime": start.astimezone(UTC).isoformat(), "timeZone": "UTC"},
            "end": {"dateTime": end.astimezone(UTC).isoformat(), "timeZone": "UTC"},
            "conferenceData": {
                "createRequest": {
                    "requestId": uuid.uuid4().hex,
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                },
            },
            "visibility": "public",
            "guestsCanModify": True,
            "guestsCanSeeOtherGuests": True,
        }

        try:
            token = await self.get_access_token()
            async with self._client() as client:
                response = await client.post(
                    f"{GOOGLE_CALENDAR_API}/calendars/{self.settings.google_calendar_id}/events",
                    params={"conferenceDataVersion": 1},
                    json=event,
                    headers={"Authorization": f"Bearer {token}"},
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, KeyError, ValueError, jwt.PyJWTError) as e:
            logger.error("Error creating Google Meet: %s", e)
            return None

        if not data.get("hangoutLink") or not data.get("id"):
            logger.error("Google Calendar response missing hangoutLink or id")
            return None

        return MeetResult(meet_link=data["hangoutLink"], event_id=data["id"])

    async def delete_meet(self, event_id: str) -> None:
        """Delete the calendar event. Best effort: never raises."""
        if not self.enabled or event_id.startswith("mock-"):
            logger.info("Skipping Meet deletion for %s", event_id)
            return

        try:
            token = await self.get_access_token()
            async with self._client() as client:
                response = await client.delete(
                    f"{GOOGLE_CALENDAR_API}/calendars/{self.settings.google_calendar_id}/events/{event_id}",
                    headers={"Authorization": f"Bearer {token}"},
                )
            # Already gone counts as deleted
            if response.status_code not in (200, 204, 404, 410):
                logger.warning("Google Meet deletion returned %s for %s", response.status_code, event_id)
        except (httpx.HTTPError, KeyError, ValueError, jwt.PyJWTError) as e:
            logger.error("Error deleting Google Meet %s: %s", event_id, e)


_client: GoogleCalendarClient | None = None


def get_calendar_client() -> GoogleCalendarClient:
    """Process-wide client (FastAPI dependency)."""
    global _client  # noqa: PLW0603
    if _client is None:
        _client = GoogleCalendarClient(get_settings())
    return _client
