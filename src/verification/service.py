"""Phone verification — proves a user owns a phone number before SMS alerts.

Flow:
    send_code  → normalize, rate-limit, Twilio Verify (or a fallback code by
                 plain SMS when the Verify service is unusable)
    check_code → fallback code if one is pending, else Twilio Verify check;
                 on approval the number is saved and SMS consent recorded

Fallback codes live in Redis under `verify:fallback:{user_id}:{phone}` for
`settings.verification.fallback_code_ttl` seconds and are single-use.
"""

from __future__ import annotations

import hmac
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.channels.sms import CHECK_ERROR_MESSAGES, TwilioClient, describe_provider_error, twilio_client
from src.config import settings
from src.db.engine import redis_client
from src.db.queries import upsert_profile
from src.errors import AppError, InternalError, InvalidInput, ProviderError
from src.events.bus import emit
from src.models.enums import ConsentType
from src.schemas.events import EventType, SystemEvent
from src.security.consent import (
    SMS_CONSENT_PURPOSE,
    SMS_CONSENT_RETENTION,
    ConsentLedger,
    consent_ledger,
)
from src.security.rate_limiter import RateLimiter, rate_limiter, verification_send_key

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{7,14}$")
CODE_PATTERN = re.compile(r"^\d{6}$")
_PHONE_SEPARATORS = re.compile(r"[\s\-()]")

INVALID_PHONE_MESSAGE = "Invalid phone number format. Please include country code (e.g., +1234567890)"
VERIFICATION_METHOD = "onboarding_verification"


def normalize_phone(raw: str, message: str = INVALID_PHONE_MESSAGE) -> str:
    """Strip spaces, dashes and parentheses, then validate E.164-ish shape.

    Raises InvalidInput when the result does not match.
    """
    cleaned = _PHONE_SEPARATORS.sub("", raw or "")
    if not PHONE_PATTERN.match(cleaned):
        raise InvalidInput(message)
    return cleaned


def generate_fallback_code() -> str:
    """Six-digit code, uniform in [100000, 999999], from a CSPRNG."""
    return str(100000 + secrets.randbelow(900000))


def _fallback_key(user_id: str, phone: str) -> str:
    return f"verify:fallback:{user_id}:{phone}"


@dataclass(frozen=True)
class VerificationSent:
    phone_number: str
    status: str
    sid: str
    fallback: bool = False


@dataclass(frozen=True)
class VerificationApproved:
    phone_number: str
    consent_date: datetime


class PhoneVerificationService:
    """Send and check verification codes. Stateless apart from injected clients."""

    def __init__(
        self,
        twilio: TwilioClient = twilio_client,
        redis: Any = redis_client,
        limiter: RateLimiter = rate_limiter,
        ledger: ConsentLedger = consent_ledger,
    ) -> None:
        self._twilio = twilio
        self._redis = redis
        self._limiter = limiter
        self._ledger = ledger

    # ── Send ─────────────────────────────────────────────────────────

    async def send_code(self, user_id: str, raw_phone: str) -> VerificationSent:
        """Start a verification for the given number.

        Raises InvalidInput, RateLimited, ChannelUnavailable or ProviderError
        (with a user-facing message).
        """
        if not raw_phone:
            raise InvalidInput("Phone number is required")
        phone = normalize_phone(raw_phone)

        cfg = settings.verification
        await self._limiter.enforce(verification_send_key(user_id), cfg.verify_send_limit, cfg.verify_send_window)

        try:
            service_sid = await self._twilio.get_or_create_verify_service()
        except ProviderError as exc:
            logger.warning("Verify service unavailable (code=%s), sending fallback code", exc.code)
            return await self._send_fallback(user_id, phone)

        try:
            started = await self._twilio.start_verification(service_sid, phone)
        except ProviderError as exc:
            raise ProviderError(
                describe_provider_error(exc, "Verification service"),
                code=exc.code,
                upstream_message=exc.upstream_message,
            ) from exc

        logger.info("Verification started for user %s, status: %s", user_id, started.status)
        await emit(SystemEvent(
            event_type=EventType.VERIFICATION_SENT,
            actor_id=user_id,
            actor_role="user",
            data={"status": started.status, "sid": started.sid},
            source_module="verification.service",
        ))
        return VerificationSent(phone_number=phone, status=started.status, sid=started.sid)

    async def _send_fallback(self, user_id: str, phone: str) -> VerificationSent:
        code = generate_fallback_code()
        await self._redis.set(_fallback_key(user_id, phone), code, ex=settings.verification.fallback_code_ttl)

        body = f"Your {settings.branding.app_name} verification code is: {code}"
        try:
            sid = await self._twilio.send_message(phone, body)
        except ProviderError as exc:
            await self._redis.delete(_fallback_key(user_id, phone))
            raise ProviderError(
                describe_provider_error(exc, "Verification service"),
                code=exc.code,
                upstream_message=exc.upstream_message,
            ) from exc
        except AppError:
            await self._redis.delete(_fallback_key(user_id, phone))
            raise

        await emit(SystemEvent(
            event_type=EventType.VERIFICATION_FALLBACK,
            actor_id=user_id,
            actor_role="user",
            data={"sid": sid},
            source_module="verification.service",
        ))
        return VerificationSent(phone_number=phone, status="sent", sid=sid, fallback=True)

    # ── Check ────────────────────────────────────────────────────────

    async def check_code(
        self,
        db: AsyncSession,
        user_id: str,
        raw_phone: str,
        code: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> VerificationApproved:
        """Validate a code; on approval store the phone and record SMS consent.

        Raises InvalidInput for malformed input or a wrong code,
        ProviderError for mapped Verify failures, InternalError when the
        code was right but the profile could not be saved.
        """
        if not raw_phone or not code:
            raise InvalidInput("Phone number and verification code are required")
        phone = normalize_phone(raw_phone, "Invalid phone number format")
        if not CODE_PATTERN.match(code):
            raise InvalidInput("Verification code must be 6 digits")

        key = _fallback_key(user_id, phone)
        stored = await self._redis.get(key)
        if stored is not None:
            if not hmac.compare_digest(str(stored), code):
                raise InvalidInput("Invalid verification code")
            await self._redis.delete(key)
        else:
            await self._check_with_provider(phone, code)

        logger.info("Phone verified for user %s", user_id)
        try:
            await upsert_profile(db, user_id, phone_number=phone, sms_notifications_enabled=True)
            record = await self._ledger.record_consent(
                db,
                user_id,
                ConsentType.SMS_NOTIFICATIONS,
                True,
                VERIFICATION_METHOD,
                legal_basis="consent",
                purpose=SMS_CONSENT_PURPOSE,
                retention_period=SMS_CONSENT_RETENTION,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        except Exception as exc:
            logger.exception("Error saving verified phone number for user %s", user_id)
            raise InternalError("Phone verified but failed to save to profile") from exc

        await emit(SystemEvent(
            event_type=EventType.PHONE_VERIFIED,
            actor_id=user_id,
            actor_role="user",
            data={"consent_record_id": record.id, "fallback": stored is not None},
            source_module="verification.service",
        ))
        return VerificationApproved(phone_number=phone, consent_date=record.consent_date)

    async def _check_with_provider(self, phone: str, code: str) -> None:
        try:
            service_sid = await self._twilio.get_or_create_verify_service()
            status = await self._twilio.check_verification(service_sid, phone, code)
        except ProviderError as exc:
            raise ProviderError(
                describe_provider_error(exc, "Verification", CHECK_ERROR_MESSAGES),
                code=exc.code,
                upstream_message=exc.upstream_message,
            ) from exc

        if status != "approved":
            logger.info("Verification check for ***%s returned %s", phone[-4:], status)
            raise InvalidInput("Invalid verification code")


# Module-level singleton
phone_verification = PhoneVerificationService()
