"""SystemEvent schema — the event type that flows through the event bus.

Ticket lifecycle, consent and dispatch outcomes all emit SystemEvents.
Subscribers (AuditLogger, NotificationDispatcher) consume them asynchronously.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types emitted by the system."""

    # Ticket lifecycle
    TICKET_CREATED = "ticket.created"
    TICKET_STATUS_CHANGED = "ticket.status_changed"
    TICKET_UPDATED = "ticket.updated"
    ATTACHMENT_FAILED = "ticket.attachment_failed"

    # Consent & GDPR
    CONSENT_GRANTED = "consent.granted"
    CONSENT_REVOKED = "consent.revoked"
    CONSENT_WITHDRAWN = "consent.withdrawn"

    # Phone verification
    VERIFICATION_SENT = "verification.sent"
    VERIFICATION_FALLBACK = "verification.fallback"
    PHONE_VERIFIED = "verification.approved"

    # Notification dispatch
    NOTIFICATION_SENT = "notification.sent"
    NOTIFICATION_FAILED = "notification.failed"

    # Push subscriptions
    PUSH_SUBSCRIBED = "push.subscribed"
    PUSH_REVOKED = "push.revoked"

    # System
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_SHUTDOWN = "system.shutdown"


# Event types the notification dispatcher consumes
TICKET_EVENT_TYPES: list[EventType] = [
    EventType.TICKET_CREATED,
    EventType.TICKET_STATUS_CHANGED,
    EventType.TICKET_UPDATED,
]


class SystemEvent(BaseModel):
    """Core event that flows through the event bus.

    Immutable once created. Consumed by:
    - AuditLogger → writes to audit_log table
    - NotificationDispatcher → ticket.* events fan out to SMS and push
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Context (optional, not every event concerns a ticket)
    ticket_id: int | None = None
    actor_id: str | None = None
    actor_role: str | None = None

    # Flexible payload
    data: dict[str, Any] = Field(default_factory=dict)

    # Metadata
    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}
