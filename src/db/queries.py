"""Typed accessor functions over the relational store.

Services and routers go through these instead of building queries inline,
so tests can patch a single name per lookup.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.profile import UserProfile
from src.models.push import PushSubscription
from src.models.ticket import Ticket


UNSET = object()


# ── Tickets ──────────────────────────────────────────────────────────


async def get_ticket(db: AsyncSession, ticket_id: int) -> Ticket | None:
    """Return a ticket by id, or None."""
    return await db.get(Ticket, ticket_id)


async def get_team_tickets(db: AsyncSession, team_id: str) -> list[Ticket]:
    """All tickets owned by a team, newest first."""
    result = await db.execute(
        select(Ticket)
        .where(Ticket.team_id == team_id)
        .order_by(Ticket.created_at.desc(), Ticket.id.desc())
    )
    return list(result.scalars().all())


# ── User profiles ────────────────────────────────────────────────────


async def get_profile(db: AsyncSession, user_id: str) -> UserProfile | None:
    """Return the stored profile for a user, or None if they never saved one."""
    return await db.get(UserProfile, user_id)


async def upsert_profile(
    db: AsyncSession,
    user_id: str,
    *,
    phone_number: str | None | object = UNSET,
    sms_notifications_enabled: bool | None = None,
) -> UserProfile:
    """Create or update a profile, touching only the fields passed.

    `phone_number=None` clears the number; omitting it leaves it alone.
    """
    profile = await db.get(UserProfile, user_id)
    if profile is None:
        profile = UserProfile(user_id=user_id, sms_notifications_enabled=False)
        db.add(profile)

    if phone_number is not UNSET:
        profile.phone_number = phone_number  # type: ignore[assignment]
    if sms_notifications_enabled is not None:
        profile.sms_notifications_enabled = sms_notifications_enabled

    await db.flush()
    return profile


# ── Push subscriptions ───────────────────────────────────────────────


async def get_active_push_subscriptions(db: AsyncSession, user_id: str) -> list[PushSubscription]:
    """Non-revoked push subscriptions for a user."""
    result = await db.execute(
        select(PushSubscription).where(
            PushSubscription.user_id == user_id,
            PushSubscription.revoked_at.is_(None),
        )
    )
    return list(result.scalars().all())


async def get_push_subscription_by_endpoint(db: AsyncSession, endpoint: str) -> PushSubscription | None:
    result = await db.execute(select(PushSubscription).where(PushSubscription.endpoint == endpoint))
    return result.scalar_one_or_none()


async def revoke_push_subscription(db: AsyncSession, subscription: PushSubscription) -> None:
    """Stamp revoked_at; the row is kept."""
    if subscription.revoked_at is None:
        subscription.revoked_at = datetime.now(UTC)
        await db.flush()
