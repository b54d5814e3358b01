"""Consent ledger — records, withdraws, checks, and exports GDPR consent.

Every grant and every withdrawal appends an immutable ConsentRecord row;
nothing here updates or deletes an existing row. UserProfile's
sms_notifications_enabled flag is updated alongside as a cache, but
ConsentRecord is the authoritative source.

Each write commits before its consent.* event is emitted, so the audit
trail never records a change that was rolled back.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.queries import upsert_profile
from src.events.bus import emit
from src.models.consent import ConsentRecord
from src.models.enums import ConsentType
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

# Wording recorded with SMS consent captured during phone verification
SMS_CONSENT_PURPOSE = "Receive SMS notifications about support ticket updates and status changes"
SMS_CONSENT_RETENTION = "Until consent is withdrawn or account is deleted"

# Consent types whose state is mirrored on UserProfile
_PROFILE_CACHED: frozenset[ConsentType] = frozenset({ConsentType.SMS_NOTIFICATIONS})


class ConsentLedger:
    """Stateless consent operations — AsyncSession passed per call."""

    async def record_consent(
        self,
        db: AsyncSession,
        user_id: str,
        consent_type: ConsentType,
        given: bool,
        method: str,
        legal_basis: str = "consent",
        purpose: str | None = None,
        retention_period: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ConsentRecord:
        """Append a ConsentRecord and update the profile cache.

        Never deduplicates: granting twice yields two rows.
        """
        record = ConsentRecord(
            user_id=user_id,
            consent_type=consent_type.value,
            consent_given=given,
            consent_date=datetime.now(UTC),
            consent_method=method,
            legal_basis=legal_basis,
            purpose=purpose,
            data_retention_period=retention_period,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.add(record)

        if consent_type in _PROFILE_CACHED:
            await upsert_profile(db, user_id, sms_notifications_enabled=given)

        await db.commit()

        event_type = EventType.CONSENT_GRANTED if given else EventType.CONSENT_REVOKED
        await emit(SystemEvent(
            event_type=event_type,
            actor_id=user_id,
            actor_role="user",
            data={
                "consent_type": consent_type.value,
                "consent_given": given,
                "method": method,
                "legal_basis": legal_basis,
            },
            source_module="security.consent",
        ))

        logger.info(
            "Consent %s: user=%s type=%s method=%s",
            "granted" if given else "refused",
            user_id,
            consent_type.value,
            method,
        )
        return record

    async def withdraw_consent(
        self,
        db: AsyncSession,
        user_id: str,
        consent_type: ConsentType,
        method: str,
    ) -> ConsentRecord | None:
        """Append a withdrawal row for the active grant.

        Returns None when there is no active grant to withdraw; in that case
        nothing is written.
        """
        latest = await self._latest(db, user_id, consent_type)
        if latest is None or latest.withdrawal_date is not None or not latest.consent_given:
            logger.info("No active %s consent to withdraw for user=%s", consent_type.value, user_id)
            return None

        now = datetime.now(UTC)
        record = ConsentRecord(
            user_id=user_id,
            consent_type=consent_type.value,
            consent_given=False,
            consent_date=now,
            consent_method=method,
            legal_basis=latest.legal_basis,
            purpose=latest.purpose,
            data_retention_period=latest.data_retention_period,
            withdrawal_date=now,
            withdrawal_method=method,
        )
        db.add(record)

        if consent_type in _PROFILE_CACHED:
            await upsert_profile(db, user_id, sms_notifications_enabled=False)

        await db.commit()

        await emit(SystemEvent(
            event_type=EventType.CONSENT_WITHDRAWN,
            actor_id=user_id,
            actor_role="user",
            data={
                "consent_type": consent_type.value,
                "method": method,
                "withdrawn_grant_id": latest.id,
            },
            source_module="security.consent",
        ))

        logger.info("Consent withdrawn: user=%s type=%s method=%s", user_id, consent_type.value, method)
        return record

    async def current_consent(self, db: AsyncSession, user_id: str, consent_type: ConsentType) -> bool:
        """Effective consent: the latest row decides; a withdrawal row means no."""
        latest = await self._latest(db, user_id, consent_type)
        if latest is None or latest.withdrawal_date is not None:
            return False
        return bool(latest.consent_given)

    async def get_history(self, db: AsyncSession, user_id: str) -> list[ConsentRecord]:
        """Every consent row for the user, newest first. Unfiltered audit export."""
        result = await db.execute(
            select(ConsentRecord)
            .where(ConsentRecord.user_id == user_id)
            .order_by(ConsentRecord.consent_date.desc(), ConsentRecord.id.desc())
        )
        return list(result.scalars().all())

    async def _latest(self, db: AsyncSession, user_id: str, consent_type: ConsentType) -> ConsentRecord | None:
        result = await db.execute(
            select(ConsentRecord)
            .where(
                ConsentRecord.user_id == user_id,
                ConsentRecord.consent_type == consent_type.value,
            )
            .order_by(ConsentRecord.consent_date.desc(), ConsentRecord.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


def serialize_record(record: ConsentRecord) -> dict[str, Any]:
    """camelCase view of a ConsentRecord for the history API."""
    return {
        "id": record.id,
        "consentType": record.consent_type,
        "consentGiven": record.consent_given,
        "consentDate": record.consent_date.isoformat() if record.consent_date else None,
        "consentMethod": record.consent_method,
        "legalBasis": record.legal_basis,
        "purpose": record.purpose,
        "withdrawalDate": record.withdrawal_date.isoformat() if record.withdrawal_date else None,
        "withdrawalMethod": record.withdrawal_method,
        "dataRetentionPeriod": record.data_retention_period,
    }


# Module-level singleton
consent_ledger = ConsentLedger()
