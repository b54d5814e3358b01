"""Ticket lifecycle — create, change status, annotate, list.

Every mutation follows the same order: write, commit, then emit the
ticket.* event. The event is only enqueued; notification delivery happens
later on the event-bus worker and can never fail the request.

Authorization is team membership as reported by the identity provider:
the caller's teams come in on the AuthenticatedUser.
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.db.queries import get_team_tickets, get_ticket
from src.errors import Forbidden, InvalidInput, NotFound
from src.events.bus import emit
from src.identity.client import AuthenticatedUser
from src.models.enums import TicketCategory, TicketSeverity, TicketStatus
from src.models.ticket import Ticket, TicketAttachment
from src.schemas.events import EventType, SystemEvent
from src.schemas.tickets import AttachmentSnapshot, TicketSnapshot

logger = logging.getLogger(__name__)

VALID_STATUSES = ", ".join(s.value for s in TicketStatus)


@dataclass(frozen=True)
class AttachmentUpload:
    """A file received with a new ticket, not yet persisted."""

    filename: str
    content: bytes
    mime_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.content)

    def data_uri(self) -> str:
        encoded = base64.b64encode(self.content).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


def ticket_payload(ticket: Ticket, attachments: Sequence[TicketAttachment] | None = None) -> dict[str, Any]:
    """JSON view of a ticket for API responses."""
    payload = TicketSnapshot.model_validate(ticket).model_dump(mode="json")
    rows = ticket.attachments if attachments is None else attachments
    payload["attachments"] = [AttachmentSnapshot.model_validate(a).model_dump(mode="json") for a in rows]
    return payload


def _snapshot(ticket: Ticket) -> dict[str, Any]:
    return TicketSnapshot.model_validate(ticket).model_dump(mode="json")


class TicketLifecycle:
    """Stateless ticket operations — AsyncSession passed per call."""

    async def create_ticket(
        self,
        db: AsyncSession,
        actor: AuthenticatedUser,
        *,
        title: str,
        description: str,
        severity: str,
        category: str,
        team_id: str,
        attachments: Sequence[AttachmentUpload] = (),
    ) -> tuple[Ticket, list[TicketAttachment]]:
        """Create a ticket owned by the caller's team.

        Attachments are stored one by one; a failing attachment is logged
        and skipped without affecting the ticket. Returns the ticket and
        the attachments that were saved.
        """
        if not all((title, description, severity, category, team_id)):
            raise InvalidInput("Missing required fields")
        try:
            severity_value = TicketSeverity(severity).value
            category_value = TicketCategory(category).value
        except ValueError as exc:
            raise InvalidInput(str(exc)) from exc

        if not actor.is_member(team_id):
            raise Forbidden("Access denied: User not part of team")

        ticket = Ticket(
            title=title,
            description=description,
            severity=severity_value,
            category=category_value,
            status=TicketStatus.OPEN.value,
            team_id=team_id,
            creator_id=actor.id,
            creator_name=actor.display_name or "Unknown User",
            creator_email=actor.email or "",
        )
        db.add(ticket)
        await db.flush()

        saved: list[TicketAttachment] = []
        failed: list[str] = []
        for upload in attachments:
            try:
                async with db.begin_nested():
                    row = TicketAttachment(
                        ticket_id=ticket.id,
                        filename=upload.filename,
                        file_url=upload.data_uri(),
                        file_size=upload.size,
                        mime_type=upload.mime_type,
                    )
                    db.add(row)
                    await db.flush()
                saved.append(row)
            except Exception:
                logger.exception("Error storing attachment %s for ticket %s", upload.filename, ticket.id)
                failed.append(upload.filename)

        await db.commit()

        logger.info(
            "Ticket %s created in team %s by %s (%d attachments)",
            ticket.id,
            team_id,
            actor.id,
            len(saved),
        )
        for filename in failed:
            await emit(SystemEvent(
                event_type=EventType.ATTACHMENT_FAILED,
                ticket_id=ticket.id,
                actor_id=actor.id,
                actor_role="user",
                data={"filename": filename},
                source_module="tickets.service",
            ))
        await emit(SystemEvent(
            event_type=EventType.TICKET_CREATED,
            ticket_id=ticket.id,
            actor_id=actor.id,
            actor_role="user",
            data={"ticket": _snapshot(ticket)},
            source_module="tickets.service",
        ))
        return ticket, saved

    async def change_status(
        self,
        db: AsyncSession,
        actor: AuthenticatedUser,
        ticket_id: int,
        new_status: str | None,
    ) -> tuple[Ticket, bool]:
        """Move a ticket to `new_status`.

        Returns (ticket, changed). Setting the current status again is a
        no-op: nothing is written and no event is emitted.
        """
        try:
            status = TicketStatus(new_status)
        except ValueError as exc:
            raise InvalidInput(f"Invalid status. Must be one of: {VALID_STATUSES}") from exc

        ticket = await get_ticket(db, ticket_id)
        if ticket is None:
            raise NotFound("Ticket not found")
        if not actor.is_member(ticket.team_id):
            raise Forbidden("Access denied: User not part of team")

        if ticket.status == status.value:
            return ticket, False

        old_status = ticket.status
        ticket.status = status.value
        await db.commit()

        logger.info("Ticket %s status %s -> %s by %s", ticket.id, old_status, status.value, actor.id)
        await emit(SystemEvent(
            event_type=EventType.TICKET_STATUS_CHANGED,
            ticket_id=ticket.id,
            actor_id=actor.id,
            actor_role="user",
            data={
                "ticket": _snapshot(ticket),
                "old_status": old_status,
                "new_status": status.value,
            },
            source_module="tickets.service",
        ))
        return ticket, True

    async def record_update(
        self,
        db: AsyncSession,
        actor: AuthenticatedUser,
        ticket_id: int,
        update_type: str | None,
        description: str | None = None,
        notify_creator: bool = True,
    ) -> tuple[Ticket, bool]:
        """Announce an update on a ticket to its creator.

        The ticket itself is not modified. Returns (ticket, notified);
        nobody is notified when the caller is the creator.
        """
        ticket = await get_ticket(db, ticket_id)
        if ticket is None:
            raise NotFound("Ticket not found")
        if not (actor.is_member(ticket.team_id) or actor.id == ticket.creator_id):
            raise Forbidden("Access denied")
        if not update_type:
            raise InvalidInput("Update type is required")

        if not notify_creator or actor.id == ticket.creator_id:
            return ticket, False

        await emit(SystemEvent(
            event_type=EventType.TICKET_UPDATED,
            ticket_id=ticket.id,
            actor_id=actor.id,
            actor_role="user",
            data={
                "ticket": _snapshot(ticket),
                "update_type": update_type,
                "description": description or "",
                "actor_name": actor.display_name or "Team Member",
            },
            source_module="tickets.service",
        ))
        return ticket, True

    async def list_team_tickets(self, db: AsyncSession, actor: AuthenticatedUser) -> list[Ticket] | None:
        """Tickets of the caller's primary team, newest first; None without a team."""
        team = actor.primary_team
        if team is None:
            return None
        return await get_team_tickets(db, team.id)


# Module-level singleton
ticket_lifecycle = TicketLifecycle()
