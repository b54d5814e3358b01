"""Ticket payload schemas and the notification events built from them.

A TicketSnapshot travels inside SystemEvent.data so the dispatcher never
re-reads the ticket. The three notification event models are what the
dispatcher works with; `notification_from_event` rebuilds one from the
SystemEvent the lifecycle emitted.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from src.models.enums import TicketStatus
from src.schemas.events import EventType, SystemEvent


class AttachmentSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    filename: str
    file_size: int | None = None
    mime_type: str | None = None


class TicketSnapshot(BaseModel):
    """Serializable view of a Ticket row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str
    severity: str
    category: str
    status: str
    team_id: str
    creator_id: str
    creator_name: str
    creator_email: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TicketCreated(BaseModel):
    kind: Literal["ticket_created"] = "ticket_created"
    ticket: TicketSnapshot
    actor_id: str


class TicketStatusChanged(BaseModel):
    kind: Literal["ticket_status_changed"] = "ticket_status_changed"
    ticket: TicketSnapshot
    actor_id: str
    old_status: TicketStatus
    new_status: TicketStatus


class TicketUpdated(BaseModel):
    kind: Literal["ticket_updated"] = "ticket_updated"
    ticket: TicketSnapshot
    actor_id: str
    update_type: str
    description: str = ""
    actor_name: str


NotificationEvent = Annotated[
    TicketCreated | TicketStatusChanged | TicketUpdated,
    Field(discriminator="kind"),
]

_notification_adapter: TypeAdapter[Any] = TypeAdapter(NotificationEvent)

_KIND_BY_EVENT_TYPE: dict[EventType, str] = {
    EventType.TICKET_CREATED: "ticket_created",
    EventType.TICKET_STATUS_CHANGED: "ticket_status_changed",
    EventType.TICKET_UPDATED: "ticket_updated",
}


def notification_from_event(event: SystemEvent) -> TicketCreated | TicketStatusChanged | TicketUpdated | None:
    """Rebuild the typed notification event; None for non-ticket events."""
    kind = _KIND_BY_EVENT_TYPE.get(event.event_type)
    if kind is None:
        return None
    return _notification_adapter.validate_python({
        **event.data,
        "kind": kind,
        "actor_id": event.actor_id or "",
    })
