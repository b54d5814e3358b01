"""Push subscription routes — register and revoke browser endpoints."""
# ruff: noqa: B008

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.db.engine import get_session
from src.identity.auth import get_current_user
from src.identity.client import AuthenticatedUser
from src.notifications.subscriptions import subscribe_push, unsubscribe_push

router = APIRouter(prefix="/api/push", tags=["push"])


class SubscriptionKeys(BaseModel):
    p256dh: str = ""
    auth: str = ""


class SubscribeRequest(BaseModel):
    endpoint: str = ""
    keys: SubscriptionKeys = SubscriptionKeys()


class UnsubscribeRequest(BaseModel):
    endpoint: str = ""


@router.get("/vapid-public-key")
async def vapid_public_key() -> dict[str, Any]:
    """Public key the browser needs to create a subscription."""
    return {"success": True, "publicKey": settings.push.vapid_public_key}


@router.post("/subscribe")
async def subscribe(
    body: SubscribeRequest,
    request: Request,
    db: AsyncSession = Depends(get_session),
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    sub = await subscribe_push(
        db,
        user.id,
        body.endpoint,
        body.keys.p256dh,
        body.keys.auth,
        user_agent=request.headers.get("user-agent"),
    )
    return {"success": True, "subscriptionId": sub.id}


@router.post("/unsubscribe")
async def unsubscribe(
    body: UnsubscribeRequest,
    db: AsyncSession = Depends(get_session),
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    await unsubscribe_push(db, user.id, body.endpoint)
    return {"success": True}
