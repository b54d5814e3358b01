"""Twilio adapter — plain SMS via the Messages API and codes via Verify v2.

Talks to Twilio's REST API directly with httpx (form-encoded POSTs, HTTP
Basic auth with the account SID and token). Twilio errors come back as
JSON `{"code": 21211, "message": "..."}` and are raised as ProviderError
carrying that code; `describe_provider_error` turns them into the short
messages shown to users.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from src.config import settings
from src.errors import ChannelUnavailable, ProviderError

logger = logging.getLogger(__name__)

# Twilio error codes → user-facing messages
SEND_ERROR_MESSAGES: dict[int, str] = {
    21211: "Invalid phone number",
    21608: "Phone number is not SMS capable",
    21614: "SMS to this number is not allowed",
    60200: "Invalid phone number format",
}

CHECK_ERROR_MESSAGES: dict[int, str] = {
    20404: "Verification code expired or not found",
    60202: "Invalid verification code",
    60203: "Maximum verification attempts exceeded",
}


def describe_provider_error(
    exc: ProviderError,
    fallback_prefix: str,
    known: dict[int, str] | None = None,
) -> str:
    """Map a provider error to a fixed message, or '<prefix> error: <upstream text>'."""
    table = SEND_ERROR_MESSAGES if known is None else known
    if exc.code is not None and exc.code in table:
        return table[exc.code]
    return f"{fallback_prefix} error: {exc.upstream_message or exc.message}"


@dataclass(frozen=True)
class VerificationStart:
    sid: str
    status: str


class TwilioClient:
    """Async wrapper around the Twilio endpoints this service needs.

    Endpoints:
        POST {api}/Accounts/{sid}/Messages.json
        GET  {verify}/Services
        POST {verify}/Services
        POST {verify}/Services/{service}/Verifications
        POST {verify}/Services/{service}/VerificationCheck
    """

    def __init__(self) -> None:
        tw = settings.twilio
        self._account_sid = tw.twilio_account_sid
        self._auth_token = tw.twilio_auth_token
        self._from_number = tw.twilio_phone_number
        self._api_url = tw.twilio_api_url.rstrip("/")
        self._verify_url = tw.twilio_verify_url.rstrip("/")
        self._service_name = tw.twilio_verify_service_name
        self._verify_service_sid: str | None = tw.twilio_verify_service_sid or None
        self._service_lock = asyncio.Lock()
        self._timeout = httpx.Timeout(15.0, connect=5.0)

    @property
    def is_configured(self) -> bool:
        """Credentials present — enough for Verify."""
        return bool(self._account_sid and self._auth_token)

    @property
    def can_send_messages(self) -> bool:
        """Credentials and a sender number — needed for plain SMS."""
        return self.is_configured and bool(self._from_number)

    # ── Plain SMS ────────────────────────────────────────────────────

    async def send_message(self, to: str, body: str) -> str:
        """Send a plain SMS and return the message SID."""
        if not self.can_send_messages:
            raise ChannelUnavailable("SMS service not configured")

        payload = await self._request(
            "POST",
            f"{self._api_url}/Accounts/{self._account_sid}/Messages.json",
            data={"To": to, "From": self._from_number, "Body": body},
        )
        sid = str(payload.get("sid", ""))
        logger.info("SMS sent to %s, SID: %s", _mask(to), sid)
        return sid

    # ── Verify ───────────────────────────────────────────────────────

    async def get_or_create_verify_service(self) -> str:
        """Return the Verify service SID, creating the service on first use.

        A pinned SID from settings wins. Otherwise the service is looked up
        by friendly name (any existing service as a second choice) and only
        created when none exists. The lookup/create runs under a lock and
        the result is cached, so concurrent first calls in this process
        create at most one service.
        """
        if not self.is_configured:
            raise ChannelUnavailable("SMS verification service not configured")
        if self._verify_service_sid:
            return self._verify_service_sid

        async with self._service_lock:
            if self._verify_service_sid:
                return self._verify_service_sid

            listing = await self._request("GET", f"{self._verify_url}/Services", params={"PageSize": 50})
            services: list[dict[str, Any]] = listing.get("services", [])
            chosen = next((s for s in services if s.get("friendly_name") == self._service_name), None)
            if chosen is None and services:
                chosen = services[0]

            if chosen is None:
                chosen = await self._request(
                    "POST",
                    f"{self._verify_url}/Services",
                    data={"FriendlyName": self._service_name},
                )
                logger.info("Created Twilio Verify service %s", chosen.get("sid"))

            self._verify_service_sid = str(chosen["sid"])
            return self._verify_service_sid

    async def start_verification(self, service_sid: str, to: str) -> VerificationStart:
        payload = await self._request(
            "POST",
            f"{self._verify_url}/Services/{service_sid}/Verifications",
            data={"To": to, "Channel": "sms"},
        )
        return VerificationStart(sid=str(payload.get("sid", "")), status=str(payload.get("status", "")))

    async def check_verification(self, service_sid: str, to: str, code: str) -> str:
        """Return the check status ('approved', 'pending', ...)."""
        payload = await self._request(
            "POST",
            f"{self._verify_url}/Services/{service_sid}/VerificationCheck",
            data={"To": to, "Code": code},
        )
        return str(payload.get("status", ""))

    # ── HTTP ─────────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        url: str,
        data: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                auth=(self._account_sid, self._auth_token),
            ) as client:
                response = await client.request(method, url, data=data, params=params)
        except httpx.HTTPError as exc:
            logger.warning("Twilio request failed: %s %s: %s", method, url, exc)
            raise ProviderError(upstream_message=str(exc)) from exc

        if response.status_code >= 400:
            try:
                body: dict[str, Any] = response.json()
            except ValueError:
                body = {}
            code = body.get("code")
            upstream = body.get("message") or response.text[:200]
            logger.warning("Twilio error %s (HTTP %s): %s", code, response.status_code, upstream)
            raise ProviderError(
                upstream,
                code=int(code) if code is not None else None,
                upstream_message=upstream,
            )

        return response.json()


def _mask(phone: str) -> str:
    """Keep the last 4 digits for logs."""
    return f"***{phone[-4:]}" if len(phone) > 4 else "***"


# Module-level singleton
twilio_client = TwilioClient()
