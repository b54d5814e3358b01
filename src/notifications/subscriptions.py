"""Push subscription registry — one row per browser endpoint per user."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.db.queries import get_push_subscription_by_endpoint, revoke_push_subscription
from src.errors import InvalidInput, NotFound
from src.events.bus import emit
from src.models.push import PushSubscription
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)


async def subscribe_push(
    db: AsyncSession,
    user_id: str,
    endpoint: str,
    p256dh: str,
    auth: str,
    user_agent: str | None = None,
) -> PushSubscription:
    """Store or reactivate a subscription for `user_id`.

    An endpoint already on file is re-pointed at this user with fresh keys;
    a browser endpoint belongs to whoever subscribed it last.
    """
    if not (endpoint and p256dh and auth):
        raise InvalidInput("Subscription endpoint and keys are required")

    sub = await get_push_subscription_by_endpoint(db, endpoint)
    if sub is None:
        sub = PushSubscription(user_id=user_id, endpoint=endpoint, p256dh=p256dh, auth=auth, user_agent=user_agent)
        db.add(sub)
    else:
        sub.user_id = user_id
        sub.p256dh = p256dh
        sub.auth = auth
        sub.user_agent = user_agent
        sub.revoked_at = None
    await db.commit()

    await emit(SystemEvent(
        event_type=EventType.PUSH_SUBSCRIBED,
        actor_id=user_id,
        actor_role="user",
        data={"subscription_id": sub.id},
        source_module="notifications.subscriptions",
    ))
    logger.info("User %s subscribed to push notifications", user_id)
    return sub


async def unsubscribe_push(db: AsyncSession, user_id: str, endpoint: str) -> PushSubscription:
    """Revoke the caller's subscription for `endpoint`."""
    sub = await get_push_subscription_by_endpoint(db, endpoint) if endpoint else None
    if sub is None or sub.user_id != user_id or not sub.is_active:
        raise NotFound("Subscription not found")

    await revoke_push_subscription(db, sub)
    await db.commit()
    await emit(SystemEvent(
        event_type=EventType.PUSH_REVOKED,
        actor_id=user_id,
        actor_role="user",
        data={"subscription_id": sub.id, "reason": "user_request"},
        source_module="notifications.subscriptions",
    ))
    logger.info("User %s unsubscribed from push notifications", user_id)
    return sub
