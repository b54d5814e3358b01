"""SMS/push message text for each ticket notification.

Team members and the ticket creator get different wording for status
changes; the creator is addressed as the owner of the ticket.
"""

from __future__ import annotations

from src.config import settings
from src.models.enums import RecipientRole, TicketStatus
from src.schemas.tickets import TicketCreated, TicketStatusChanged, TicketUpdated

STATUS_EMOJI: dict[TicketStatus, str] = {
    TicketStatus.OPEN: "\U0001f195",
    TicketStatus.IN_PROGRESS: "\U0001f504",
    TicketStatus.RESOLVED: "\u2705",
    TicketStatus.CLOSED: "\U0001f512",
}
DEFAULT_EMOJI = "\U0001f4cb"


def tickets_link() -> str:
    return f"{settings.branding.public_url.rstrip('/')}/dashboard/tickets"


def status_emoji(status: TicketStatus | str) -> str:
    try:
        return STATUS_EMOJI[TicketStatus(status)]
    except ValueError:
        return DEFAULT_EMOJI


def ticket_created_message(event: TicketCreated) -> str:
    t = event.ticket
    return (
        "\U0001f3ab New Support Ticket Created\n\n"
        f"Title: {t.title}\n"
        f"Severity: {t.severity}\n"
        f"Category: {t.category}\n"
        f"Created by: {t.creator_name}\n\n"
        f"View ticket: {tickets_link()}"
    )


def status_changed_message(event: TicketStatusChanged, role: RecipientRole) -> str:
    t = event.ticket
    emoji = status_emoji(event.new_status)
    transition = f"Status: {event.old_status.value} \u2192 {event.new_status.value}"
    if role is RecipientRole.TICKET_CREATOR:
        return (
            f"{emoji} Your Ticket Status Updated\n\n"
            f"Title: {t.title}\n"
            f"{transition}\n"
            f"{t.severity} Priority\n\n"
            "Your support ticket has been updated by our team.\n\n"
            f"View ticket: {tickets_link()}"
        )
    return (
        f"{emoji} Ticket Status Updated\n\n"
        f"Title: {t.title}\n"
        f"{transition}\n"
        f"{t.severity} Priority\n"
        f"Created by: {t.creator_name}\n\n"
        f"View ticket: {tickets_link()}"
    )


def ticket_updated_message(event: TicketUpdated) -> str:
    details = f"Details: {event.description}\n" if event.description else ""
    return (
        "\U0001f4ac Your Ticket Updated\n\n"
        f"Title: {event.ticket.title}\n"
        f"Update: {event.update_type}\n"
        f"{details}"
        f"Updated by: {event.actor_name}\n\n"
        f"View ticket: {tickets_link()}"
    )


def render(event: TicketCreated | TicketStatusChanged | TicketUpdated, role: RecipientRole) -> str:
    """Message body for a recipient of the given role."""
    if isinstance(event, TicketCreated):
        return ticket_created_message(event)
    if isinstance(event, TicketStatusChanged):
        return status_changed_message(event, role)
    return ticket_updated_message(event)
