"""Daraja (M-Pesa) client: OAuth token, STK push and STK query."""

from __future__ import annotations

import base64
import logging
import math
import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import httpx

from learnhub.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Daraja timestamps are in East Africa Time
_EAT = timezone(timedelta(hours=3))
_ACCOUNT_REFERENCE_MAX_LEN = 12
_TRANSACTION_DESC_MAX_LEN = 13


class MpesaError(Exception):
    """Raised when Daraja cannot be reached or rejects a request."""


@dataclass
class StkPushResult:
    merchant_request_id: str | None
    checkout_request_id: str
    response_description: str | None = None
    customer_message: str | None = None


@dataclass
class StkQueryResult:
    result_code: str
    result_desc: str
    raw: dict[str, Any]


def normalize_phone(phone_number: str) -> str:
    """Return the number as 2547XXXXXXXX.

    Raises:
        ValueError: if the cleaned number is not 12 digits.
    """
    cleaned = re.sub(r"\D", "", phone_number or "")
    if cleaned.startswith("0"):
        cleaned = f"254{cleaned[1:]}"
    elif not cleaned.startswith("254"):
        cleaned = f"254{cleaned}"
    if len(cleaned) != 12:
        msg = "Invalid phone number format. Must be 12 digits including 254 prefix."
        raise ValueError(msg)
    return cleaned


class MpesaClient:
    """Async Daraja helper.

    ``transport`` is handed to every ``httpx.AsyncClient`` the client opens,
    which lets callers plug in a mock transport.
    """

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings
        self.base_url = settings.mpesa_base_url
        self.shortcode = settings.mpesa_shortcode.zfill(6)
        self._transport = transport
        self._access_token: str | None = None
        self._token_expiry: float = 0.0

    @property
    def enabled(self) -> bool:
        s = self.settings
        return bool(s.mpesa_consumer_key and s.mpesa_consumer_secret and s.mpesa_shortcode and s.mpesa_passkey)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.settings.mpesa_timeout_seconds,
            transport=self._transport,
        )

    def _generate_password(self) -> tuple[str, str]:
        timestamp = datetime.now(_EAT).strftime("%Y%m%d%H%M%S")
        raw = f"{self.shortcode}{self.settings.mpesa_passkey}{timestamp}"
        return base64.b64encode(raw.encode("utf-8")).decode("utf-8"), timestamp

    async def get_access_token(self) -> str:
        """Return a cached OAuth token, fetching a new one when it has expired."""
        if self._access_token and time.monotonic() < self._token_expiry:
            return self._access_token

        if not self.enabled:
            msg = "M-Pesa is not configured"
            raise MpesaError(msg)

        credentials = f"{self.settings.mpesa_consumer_key}:{self.settings.mpesa_consumer_secret}"
        auth = base64.b64encode(credentials.encode("ascii")).decode("ascii")
        try:
            async with self._client() as client:
                response = await client.get(
                    "/oauth/v1/generate",
                    params={"grant_type": "client_credentials"},
                    headers={"Authorization": f"Basic {auth}"},
                )
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Daraja token request failed: %s", e)
            msg = f"Failed to get M-Pesa access token: {e}"
            raise MpesaError(msg) from e

        token = payload.get("access_token")
        if not token:
            logger.error("Daraja token response missing access_token")
            msg = "Failed to get valid access token"
            raise MpesaError(msg)

        expires_in = int(payload.get("expires_in", 3599))
        self._access_token = token
        # Refresh a minute early
        self._token_expiry = time.monotonic() + max(expires_in - 60, 0)
        return token

    async def stk_push(
        self,
        phone_number: str,
        amount: Decimal | float | int,
        account_reference: str,
        transaction_desc: str,
    ) -> StkPushResult:
        """Send an STK push prompt to the customer's phone.

        Raises:
            ValueError: invalid phone number.
            MpesaError: transport/HTTP failure or a response without CheckoutRequestID.
        """
        phone = normalize_phone(phone_number)
        token = await self.get_access_token()
        password, timestamp = self._generate_password()

        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": password,
            "Timestamp": timestamp,
            "TransactionType": self.settings.mpesa_transaction_type,
            "Amount": math.ceil(amount),
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.settings.mpesa_callback,
            "AccountReference": account_reference[:_ACCOUNT_REFERENCE_MAX_LEN],
            "TransactionDesc": transaction_desc[:_TRANSACTION_DESC_MAX_LEN],
        }
        logger.info("Initiating STK push for %s (amount=%s, ref=%s)", phone, payload["Amount"], account_reference)

        try:
            async with self._client() as client:
                response = await client.post(
                    "/mpesa/stkpush/v1/processrequest",
                    json=payload,
                    headers={"Authorization": f"Bearer {token}"},
                )
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("STK push request failed: %s", e)
            msg = f"Failed to initiate M-Pesa payment: {e}"
            raise MpesaError(msg) from e

        checkout_request_id = data.get("CheckoutRequestID")
        if response.status_code != 200 or not checkout_request_id:
            error = data.get("errorMessage") or data.get("ResponseDescription") or "STK push failed"
            logger.error("STK push rejected (status=%s): %s", response.status_code, error)
            msg = f"Failed to initiate M-Pesa payment: {error}"
            raise MpesaError(msg)

        return StkPushResult(
            merchant_request_id=data.get("MerchantRequestID"),
            checkout_request_id=checkout_request_id,
            response_description=data.get("ResponseDescription"),
            customer_message=data.get("CustomerMessage"),
        )

    async def stk_query(self, checkout_request_id: str) -> StkQueryResult:
        """Ask Daraja for the outcome of an STK push.

        Raises:
            MpesaError: transport/HTTP failure.
        """
        token = await self.get_access_token()
        password, timestamp = self._generate_password()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": password,
            "Timestamp": timestamp,
            "CheckoutRequestID": checkout_request_id,
        }
        try:
            async with self._client() as client:
                response = await client.post(
                    "/mpesa/stkpushquery/v1/query",
                    json=payload,
                    headers={"Authorization": f"Bearer {token}"},
                )
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("STK query request failed: %s", e)
            msg = f"Failed to check M-Pesa transaction status: {e}"
            raise MpesaError(msg) from e

        if response.status_code != 200:
            msg = f"STK query failed: {data.get('errorMessage', response.status_code)}"
            raise MpesaError(msg)

        return StkQueryResult(
            result_code=str(data.get("ResultCode", "")),
            result_desc=data.get("ResultDesc", ""),
            raw=data,
        )


_client: MpesaClient | None = None


def get_mpesa_client() -> MpesaClient:
    """Process-wide client (FastAPI dependency); keeps the OAuth token cached."""
    global _client  # noqa: PLW0603
    if _client is None:
        _client = MpesaClient(get_settings())
    return _client
