"""SMS routes — phone verification and operator-initiated raw SMS."""
# ruff: noqa: B008

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.channels.sms import describe_provider_error, twilio_client
from src.db.engine import get_session
from src.errors import InvalidInput, ProviderError
from src.identity.auth import get_current_user
from src.identity.client import AuthenticatedUser
from src.verification.service import normalize_phone, phone_verification

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sms", tags=["sms"])


class VerifySendRequest(BaseModel):
    phone_number: str | None = Field(default=None, alias="phoneNumber")


class VerifyCheckRequest(BaseModel):
    phone_number: str | None = Field(default=None, alias="phoneNumber")
    code: str | None = None


class RawSmsRequest(BaseModel):
    to: str | None = None
    body: str | None = None


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("x-real-ip") or (request.client.host if request.client else None) or "unknown"


@router.post("/verify/send")
async def verify_send(
    body: VerifySendRequest,
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    sent = await phone_verification.send_code(user.id, body.phone_number or "")
    if sent.fallback:
        return {
            "success": True,
            "message": "Verification code sent via SMS",
            "sid": sent.sid,
            "fallback": True,
        }
    return {
        "success": True,
        "message": "Verification code sent successfully",
        "status": sent.status,
        "sid": sent.sid,
    }


@router.post("/verify/check")
async def verify_check(
    body: VerifyCheckRequest,
    request: Request,
    db: AsyncSession = Depends(get_session),
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    approved = await phone_verification.check_code(
        db,
        user.id,
        body.phone_number or "",
        body.code or "",
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent") or "unknown",
    )
    return {
        "success": True,
        "message": "Phone number verified and SMS consent recorded",
        "verified": True,
        "phoneNumber": approved.phone_number,
        "consentRecorded": True,
        "consentDate": approved.consent_date.isoformat(),
    }


@router.post("/send")
async def send_raw_sms(
    body: RawSmsRequest,
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    """Send an arbitrary SMS. Authenticated callers only."""
    if not body.to or not body.body:
        raise InvalidInput("Missing required fields: to and body")
    to = normalize_phone(body.to, "Invalid phone number format")

    try:
        sid = await twilio_client.send_message(to, body.body)
    except ProviderError as exc:
        raise ProviderError(
            describe_provider_error(exc, "SMS service"),
            code=exc.code,
            upstream_message=exc.upstream_message,
        ) from exc

    logger.info("Raw SMS sent by user %s, SID: %s", user.id, sid)
    return {"success": True, "message": "SMS sent successfully!", "sid": sid}
