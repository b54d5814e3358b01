"""Profile routes — read and update the caller's phone number and SMS preference.

The SMS flag on the profile mirrors the consent ledger: turning it off
withdraws consent, and it can only be turned on while consent is active
(consent is granted by verifying a phone number).
"""
# ruff: noqa: B008

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.engine import get_session
from src.db.queries import UNSET, get_profile, upsert_profile
from src.errors import InvalidInput
from src.identity.auth import get_current_user
from src.identity.client import AuthenticatedUser
from src.models.enums import ConsentType
from src.models.profile import UserProfile
from src.security.consent import consent_ledger
from src.verification.service import normalize_phone

router = APIRouter(prefix="/api/user", tags=["profile"])


class ProfileUpdateRequest(BaseModel):
    phone_number: str | None = None
    sms_notifications_enabled: bool | None = None


def serialize_profile(profile: UserProfile) -> dict[str, Any]:
    return {
        "user_id": profile.user_id,
        "phone_number": profile.phone_number,
        "sms_notifications_enabled": profile.sms_notifications_enabled,
        "created_at": profile.created_at.isoformat() if profile.created_at else None,
        "updated_at": profile.updated_at.isoformat() if profile.updated_at else None,
    }


@router.get("/profile")
async def read_profile(
    db: AsyncSession = Depends(get_session),
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    profile = await get_profile(db, user.id)
    if profile is None:
        return {
            "success": True,
            "profile": {"user_id": user.id, "phone_number": None, "sms_notifications_enabled": False},
        }
    return {"success": True, "profile": serialize_profile(profile)}


@router.post("/profile")
async def update_profile(
    body: ProfileUpdateRequest,
    db: AsyncSession = Depends(get_session),
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    fields = body.model_fields_set
    phone: Any = UNSET
    if "phone_number" in fields:
        phone = normalize_phone(body.phone_number) if body.phone_number else None

    sms_enabled = body.sms_notifications_enabled
    if sms_enabled is False:
        # Withdrawal also clears the cached flag
        await consent_ledger.withdraw_consent(db, user.id, ConsentType.SMS_NOTIFICATIONS, "profile_settings")
    elif sms_enabled is True:
        if not await consent_ledger.current_consent(db, user.id, ConsentType.SMS_NOTIFICATIONS):
            raise InvalidInput("Verify your phone number to enable SMS notifications")

    profile = await upsert_profile(db, user.id, phone_number=phone, sms_notifications_enabled=sms_enabled)
    return {"success": True, "profile": serialize_profile(profile), "message": "Profile updated successfully"}
