"""Consent routes — withdraw SMS consent, export consent history."""
# ruff: noqa: B008

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.engine import get_session
from src.errors import InvalidInput, NotFound
from src.identity.auth import get_current_user
from src.identity.client import AuthenticatedUser
from src.models.enums import ConsentType
from src.security.consent import consent_ledger, serialize_record

router = APIRouter(prefix="/api/consent", tags=["consent"])


class WithdrawRequest(BaseModel):
    consent_type: str | None = Field(default=None, alias="consentType")
    withdrawal_reason: str | None = Field(default=None, alias="withdrawalReason")


def withdrawal_method(reason: str | None) -> str:
    """`user_request`, or `user_request_<reason>` when a reason was given."""
    return f"user_request_{reason}" if reason else "user_request"


@router.post("/withdraw")
async def withdraw(
    body: WithdrawRequest,
    db: AsyncSession = Depends(get_session),
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    if not body.consent_type:
        raise InvalidInput("Consent type is required")
    # Only SMS consent can be withdrawn through the API
    if body.consent_type != ConsentType.SMS_NOTIFICATIONS.value:
        raise InvalidInput("Invalid consent type")

    record = await consent_ledger.withdraw_consent(
        db,
        user.id,
        ConsentType.SMS_NOTIFICATIONS,
        withdrawal_method(body.withdrawal_reason),
    )
    if record is None:
        raise NotFound("No active consent found to withdraw")

    return {
        "success": True,
        "message": "SMS consent withdrawn successfully",
        "withdrawalDate": record.withdrawal_date.isoformat() if record.withdrawal_date else None,
        "consentRecordId": record.id,
    }


@router.get("/history")
async def history(
    db: AsyncSession = Depends(get_session),
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    records = await consent_ledger.get_history(db, user.id)
    formatted = [serialize_record(r) for r in records]
    return {"success": True, "consentHistory": formatted, "totalRecords": len(formatted)}
