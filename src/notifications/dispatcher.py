"""Notification dispatcher — turns ticket events into SMS and push sends.

Subscribed to the ticket.* event types on the event bus, so it always runs
on the bus worker and never inside the request that caused the event.

For each event:
1. resolve recipients (team members and/or the ticket creator),
2. read each recipient's profile, consent and push subscriptions,
3. send every (recipient, channel) delivery concurrently, each isolated.

SMS goes out only when the consent ledger AND the profile flag both say
yes and a phone number is on file. Push has no consent gate.
Failures are logged and audited, never retried, never re-raised.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.channels.push import SubscriptionGone, build_push_payload, push_sender
from src.channels.sms import twilio_client
from src.db.engine import async_session_factory
from src.db.queries import (
    get_active_push_subscriptions,
    get_profile,
    get_push_subscription_by_endpoint,
    revoke_push_subscription,
)
from src.errors import AppError, InvalidRecipient, ProviderError
from src.events.bus import emit
from src.identity.client import TeamMember, identity_client
from src.models.enums import ConsentType, NotificationChannel, RecipientRole
from src.notifications.messages import render
from src.schemas.events import EventType, SystemEvent
from src.schemas.tickets import (
    TicketCreated,
    TicketStatusChanged,
    TicketUpdated,
    notification_from_event,
)
from src.security.consent import ConsentLedger, consent_ledger

logger = logging.getLogger(__name__)

Notification = TicketCreated | TicketStatusChanged | TicketUpdated


class SmsChannel(Protocol):
    async def send_message(self, to: str, body: str) -> str: ...


class PushChannel(Protocol):
    async def send(self, subscription_info: dict[str, Any], payload: dict[str, Any]) -> None: ...


class TeamDirectory(Protocol):
    async def list_team_members(self, team_id: str) -> list[TeamMember]: ...


@dataclass(frozen=True)
class Recipient:
    user_id: str
    display_name: str
    role: RecipientRole


@dataclass(frozen=True)
class Delivery:
    """One planned send on one channel to one recipient."""

    channel: NotificationChannel
    recipient: Recipient
    body: str
    phone_number: str | None = None
    subscription: dict[str, Any] | None = None


@dataclass
class DispatchReport:
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    expired_endpoints: list[str] = field(default_factory=list)


class NotificationDispatcher:
    """Fans a ticket event out to its recipients over every available channel.

    Channels, the team directory and the session factory are injected so
    tests can drive `dispatch()` directly with doubles.
    """

    def __init__(
        self,
        sms: SmsChannel = twilio_client,
        push: PushChannel = push_sender,
        directory: TeamDirectory = identity_client,
        session_factory: Callable[[], Any] = async_session_factory,
        ledger: ConsentLedger = consent_ledger,
    ) -> None:
        self._sms = sms
        self._push = push
        self._directory = directory
        self._session_factory = session_factory
        self._ledger = ledger

    async def on_event(self, event: SystemEvent) -> None:
        """Event bus entry point. Never raises."""
        try:
            notification = notification_from_event(event)
        except ValueError:
            logger.exception("Malformed ticket event %s (ticket=%s)", event.event_type.value, event.ticket_id)
            return
        if notification is None:
            return

        try:
            await self.dispatch(notification)
        except Exception:
            logger.exception("Notification dispatch failed for %s (ticket=%s)", event.event_type.value, event.ticket_id)

    async def dispatch(self, event: Notification) -> DispatchReport:
        """Resolve, plan and send. Returns counts for logging and tests."""
        report = DispatchReport()
        recipients = await self.resolve_recipients(event)
        if not recipients:
            logger.info("No notification recipients for %s (ticket=%s)", event.kind, event.ticket.id)
            return report

        async with self._session_factory() as db:
            deliveries: list[Delivery] = []
            for recipient in recipients:
                try:
                    planned, skipped = await self._plan(db, recipient, event)
                except Exception:
                    logger.exception("Could not plan notifications for %s (ticket=%s)", recipient.user_id, event.ticket.id)
                    await db.rollback()
                    report.failed += 1
                    continue
                deliveries.extend(planned)
                report.skipped += skipped

        outcomes = await asyncio.gather(*[self._deliver(d, event) for d in deliveries])
        for delivery, ok in zip(deliveries, outcomes):
            if ok is True:
                report.sent += 1
            else:
                report.failed += 1
                if ok == "gone" and delivery.subscription is not None:
                    report.expired_endpoints.append(str(delivery.subscription["endpoint"]))

        if report.expired_endpoints:
            await self._revoke_expired(report.expired_endpoints)

        logger.info(
            "%s notifications for ticket %s: %d/%d sent (%d skipped)",
            event.kind,
            event.ticket.id,
            report.sent,
            len(deliveries),
            report.skipped,
        )
        await emit(SystemEvent(
            event_type=EventType.NOTIFICATION_SENT,
            ticket_id=event.ticket.id,
            actor_role="system",
            data={
                "kind": event.kind,
                "recipients": len(recipients),
                "sent": report.sent,
                "failed": report.failed,
                "skipped": report.skipped,
            },
            source_module="notifications.dispatcher",
        ))
        return report

    # ── Recipients ───────────────────────────────────────────────────

    async def resolve_recipients(self, event: Notification) -> list[Recipient]:
        """Who hears about an event. The actor is never notified of their own action.

        Created: the team. Status changed: the team with team wording plus
        the creator with creator wording. Updated: the creator alone.
        """
        ticket = event.ticket
        creator = Recipient(ticket.creator_id, ticket.creator_name or "Unknown User", RecipientRole.TICKET_CREATOR)

        if isinstance(event, TicketUpdated):
            return [creator] if ticket.creator_id != event.actor_id else []

        members = await self._team_members(ticket.team_id)

        if isinstance(event, TicketCreated):
            return [
                Recipient(m.id, m.display_name or "Unknown User", RecipientRole.TEAM_MEMBER)
                for m in members
                if m.id != event.actor_id
            ]

        # Status change: team members get the team wording, the creator their own
        excluded = {ticket.creator_id, event.actor_id}
        recipients = [
            Recipient(m.id, m.display_name or "Unknown User", RecipientRole.TEAM_MEMBER)
            for m in members
            if m.id not in excluded
        ]
        if ticket.creator_id != event.actor_id:
            recipients.append(creator)
        return recipients

    async def _team_members(self, team_id: str) -> list[TeamMember]:
        try:
            return await self._directory.list_team_members(team_id)
        except Exception:
            logger.exception("Could not list members of team %s", team_id)
            return []

    # ── Planning ─────────────────────────────────────────────────────

    async def _plan(
        self,
        db: AsyncSession,
        recipient: Recipient,
        event: Notification,
    ) -> tuple[list[Delivery], int]:
        """Deliveries for one recipient, plus how many channels were skipped."""
        body = render(event, recipient.role)
        deliveries: list[Delivery] = []
        skipped = 0

        try:
            deliveries.append(await self._plan_sms(db, recipient, body))
        except InvalidRecipient as exc:
            logger.debug("Skipping SMS to %s: %s", recipient.user_id, exc.message)
            skipped += 1

        for sub in await get_active_push_subscriptions(db, recipient.user_id):
            deliveries.append(Delivery(
                channel=NotificationChannel.PUSH,
                recipient=recipient,
                body=body,
                subscription=sub.as_subscription_info(),
            ))

        return deliveries, skipped

    async def _plan_sms(self, db: AsyncSession, recipient: Recipient, body: str) -> Delivery:
        """SMS delivery if consent and contact details allow it, else InvalidRecipient."""
        profile = await get_profile(db, recipient.user_id)
        has_consent = await self._ledger.current_consent(db, recipient.user_id, ConsentType.SMS_NOTIFICATIONS)
        profile_enabled = bool(profile is not None and profile.sms_notifications_enabled)

        if has_consent != profile_enabled:
            logger.warning(
                "SMS consent mismatch for user %s (ledger=%s profile=%s); not sending",
                recipient.user_id,
                has_consent,
                profile_enabled,
            )
        if not (has_consent and profile_enabled):
            raise InvalidRecipient("no valid SMS consent")
        if profile is None or not profile.phone_number:
            raise InvalidRecipient("no phone number on file")

        return Delivery(
            channel=NotificationChannel.SMS,
            recipient=recipient,
            body=body,
            phone_number=profile.phone_number,
        )

    # ── Sending ──────────────────────────────────────────────────────

    async def _deliver(self, delivery: Delivery, event: Notification) -> bool | str:
        """Send one delivery. Returns True, False, or 'gone' for a dead push endpoint."""
        try:
            if delivery.channel is NotificationChannel.SMS:
                await self._sms.send_message(delivery.phone_number or "", delivery.body)
            else:
                await self._push.send(delivery.subscription or {}, build_push_payload(delivery.body))
            return True
        except SubscriptionGone:
            logger.info("Push endpoint gone for user %s; revoking", delivery.recipient.user_id)
            return "gone"
        except Exception as exc:
            code = exc.code if isinstance(exc, ProviderError) else None
            message = exc.message if isinstance(exc, AppError) else str(exc)
            logger.warning(
                "%s notification to %s failed (code=%s): %s",
                delivery.channel.value,
                delivery.recipient.user_id,
                code,
                message,
            )
            await emit(SystemEvent(
                event_type=EventType.NOTIFICATION_FAILED,
                ticket_id=event.ticket.id,
                actor_role="system",
                data={
                    "kind": event.kind,
                    "channel": delivery.channel.value,
                    "recipient_id": delivery.recipient.user_id,
                    "error": type(exc).__name__,
                    "code": code,
                },
                source_module="notifications.dispatcher",
            ))
            return False

    async def _revoke_expired(self, endpoints: list[str]) -> None:
        try:
            async with self._session_factory() as db:
                for endpoint in endpoints:
                    sub = await get_push_subscription_by_endpoint(db, endpoint)
                    if sub is not None:
                        await revoke_push_subscription(db, sub)
                await db.commit()
        except Exception:
            logger.exception("Failed to revoke %d expired push subscriptions", len(endpoints))


# Module-level singleton
notification_dispatcher = NotificationDispatcher()
