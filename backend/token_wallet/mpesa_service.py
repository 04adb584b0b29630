"""
M-Pesa Service for Token Purchases

Implements the Safaricom Daraja STK push (Lipa Na M-Pesa Online) request.

Features:
- OAuth client-credentials access token with caching
- STK push submission with per-request password
- Environment switching (sandbox/production)

The push call only tells us the request was accepted. The payment outcome
arrives later on the callback URL and is handled by the reconciler.

Required Settings:
- mpesa_consumer_key / mpesa_consumer_secret
- mpesa_shortcode / mpesa_passkey
- mpesa_callback_url
- mpesa_env (sandbox|production)
"""

import logging
import base64
from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any

import httpx

from .config import (
    MPESA_TOKEN_PATH,
    MPESA_STK_PUSH_PATH,
    MPESA_TRANSACTION_TYPE,
    MPESA_COUNTRY_CODE,
    MPESA_TOKEN_EXPIRY_MARGIN,
)
from .models import PushResult

logger = logging.getLogger(__name__)


class GatewayAuthError(Exception):
    """Raised when an access token cannot be obtained from Daraja."""


def normalize_phone_number(phone_number: str) -> str:
    """
    Convert a Kenyan subscriber number to international format.

    0712345678 -> 254712345678, +254712345678 -> 254712345678,
    712345678 -> 254712345678; 254... passes through unchanged.
    """
    phone = phone_number.strip().replace(" ", "")
    if phone.startswith("+"):
        phone = phone[1:]
    if phone.startswith(MPESA_COUNTRY_CODE):
        return phone
    if phone.startswith("0"):
        return MPESA_COUNTRY_CODE + phone[1:]
    return MPESA_COUNTRY_CODE + phone


def generate_timestamp(now: Optional[datetime] = None) -> str:
    """Daraja timestamp, YYYYMMDDHHMMSS."""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y%m%d%H%M%S")


def generate_password(shortcode: str, passkey: str, timestamp: str) -> str:
    """STK push password: base64(shortcode + passkey + timestamp)."""
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode()).decode()


def _error_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class MpesaClient:
    """Daraja client for STK push token purchases."""

    def __init__(self, settings, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 30.0):
        self.settings = settings
        self._transport = transport
        self._timeout = timeout
        self._access_token = None
        self._token_expires = None

    @property
    def api_base(self) -> str:
        """Get API base URL for current environment."""
        return self.settings.mpesa_base_url

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_base,
            transport=self._transport,
            timeout=self._timeout
        )

    async def obtain_access_credential(self) -> str:
        """Get or refresh the OAuth access token."""
        now = datetime.now(timezone.utc)

        # Check if we have a valid cached token
        if self._access_token and self._token_expires and now < self._token_expires:
            return self._access_token

        auth = base64.b64encode(
            f"{self.settings.mpesa_consumer_key}:{self.settings.mpesa_consumer_secret}".encode()
        ).decode()

        try:
            async with self._client() as client:
                response = await client.get(
                    MPESA_TOKEN_PATH,
                    headers={"Authorization": f"Basic {auth}"}
                )
        except httpx.HTTPError as e:
            logger.error(f"M-Pesa token request failed: {e}")
            raise GatewayAuthError("Failed to get M-Pesa token") from e

        if response.status_code != 200:
            logger.error(f"M-Pesa auth failed ({response.status_code}): {response.text}")
            raise GatewayAuthError("Failed to get M-Pesa token")

        data = _error_body(response)
        access_token = data.get("access_token")
        if not access_token:
            logger.error("M-Pesa auth response did not include an access token")
            raise GatewayAuthError("Failed to get M-Pesa token")

        try:
            expires_in = int(data.get("expires_in", 3599))
        except (TypeError, ValueError):
            expires_in = 3599

        self._access_token = access_token
        self._token_expires = now + timedelta(seconds=max(expires_in - MPESA_TOKEN_EXPIRY_MARGIN, 0))
        return self._access_token

    async def submit_push_payment(
        self,
        contact: str,
        amount: int,
        reference: str
    ) -> PushResult:
        """
        Ask Daraja to prompt the customer's phone to pay `amount`.

        Args:
            contact: Subscriber phone number (local or international format)
            amount: Charge in KSh, rounded to whole shillings
            reference: AccountReference used to reconcile the payment

        Returns:
            PushResult; failures are reported, never raised
        """
        try:
            access_token = await self.obtain_access_credential()
        except GatewayAuthError as e:
            return PushResult(success=False, error=str(e))

        timestamp = generate_timestamp()
        phone = normalize_phone_number(contact)
        shortcode = self.settings.mpesa_shortcode

        request_data = {
            "BusinessShortCode": shortcode,
            "Password": generate_password(shortcode, self.settings.mpesa_passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": MPESA_TRANSACTION_TYPE,
            "Amount": int(round(amount)),
            "PartyA": phone,
            "PartyB": shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.settings.mpesa_callback_url,
            "AccountReference": reference,
            "TransactionDesc": f"Purchase {reference}"
        }

        try:
            async with self._client() as client:
                response = await client.post(
                    MPESA_STK_PUSH_PATH,
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Content-Type": "application/json"
                    },
                    json=request_data
                )
        except httpx.HTTPError as e:
            logger.error(f"STK push request failed: {e}")
            return PushResult(success=False, error="Failed to initiate payment")

        data = _error_body(response)

        if response.status_code not in [200, 201]:
            logger.error(f"STK push rejected ({response.status_code}): {response.text}")
            return PushResult(
                success=False,
                error=data.get("errorMessage") or "Failed to initiate payment"
            )

        response_code = str(data.get("ResponseCode", ""))
        checkout_request_id = data.get("CheckoutRequestID")

        if response_code != "0" or not checkout_request_id:
            logger.error(f"STK push not accepted: {data}")
            return PushResult(
                success=False,
                response_code=response_code or None,
                response_description=data.get("ResponseDescription"),
                error=data.get("ResponseDescription") or data.get("errorMessage") or "Failed to initiate payment"
            )

        return PushResult(
            success=True,
            checkout_request_id=checkout_request_id,
            merchant_request_id=data.get("MerchantRequestID"),
            response_code=response_code,
            response_description=data.get("ResponseDescription")
        )
