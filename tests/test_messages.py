"""Tests for notification message templates."""

from __future__ import annotations

from src.models.enums import RecipientRole, TicketStatus
from src.notifications.messages import (
    DEFAULT_EMOJI,
    render,
    status_emoji,
    tickets_link,
)
from src.schemas.tickets import TicketCreated, TicketSnapshot, TicketStatusChanged, TicketUpdated

TICKET = TicketSnapshot(
    id=7,
    title="Back door forced",
    description="Camera 3 shows the back door open",
    severity="Critical",
    category="Intrusion",
    status="Open",
    team_id="team-1",
    creator_id="u-creator",
    creator_name="Casey",
    creator_email="casey@example.com",
)


def _status_change(new=TicketStatus.IN_PROGRESS):
    return TicketStatusChanged(ticket=TICKET, actor_id="u-actor", old_status=TicketStatus.OPEN, new_status=new)


class TestStatusEmoji:
    def test_known_statuses_have_distinct_emoji(self):
        emojis = {status_emoji(s) for s in TicketStatus}
        assert len(emojis) == 4
        assert DEFAULT_EMOJI not in emojis

    def test_unknown_status_uses_default(self):
        assert status_emoji("Escalated") == DEFAULT_EMOJI


class TestTicketCreated:
    def test_contains_ticket_details_and_link(self):
        body = render(TicketCreated(ticket=TICKET, actor_id="u-creator"), RecipientRole.TEAM_MEMBER)

        assert body.startswith("\U0001f3ab New Support Ticket Created")
        assert "Title: Back door forced" in body
        assert "Severity: Critical" in body
        assert "Category: Intrusion" in body
        assert "Created by: Casey" in body
        assert body.endswith(f"View ticket: {tickets_link()}")
        assert tickets_link().endswith("/dashboard/tickets")


class TestStatusChanged:
    def test_team_wording(self):
        body = render(_status_change(), RecipientRole.TEAM_MEMBER)

        assert body.startswith("\U0001f504 Ticket Status Updated")
        assert "Status: Open \u2192 In Progress" in body
        assert "Critical Priority" in body
        assert "Created by: Casey" in body

    def test_creator_wording(self):
        body = render(_status_change(TicketStatus.CLOSED), RecipientRole.TICKET_CREATOR)

        assert body.startswith("\U0001f512 Your Ticket Status Updated")
        assert "Your support ticket has been updated by our team." in body
        assert "Created by" not in body


class TestTicketUpdated:
    def test_with_details(self):
        event = TicketUpdated(
            ticket=TICKET, actor_id="u-actor", update_type="Technician dispatched",
            description="ETA 20 minutes", actor_name="Alex",
        )
        body = render(event, RecipientRole.TICKET_CREATOR)

        assert "Update: Technician dispatched" in body
        assert "Details: ETA 20 minutes" in body
        assert "Updated by: Alex" in body

    def test_details_line_omitted_when_empty(self):
        event = TicketUpdated(ticket=TICKET, actor_id="u-actor", update_type="Comment", actor_name="Alex")
        body = render(event, RecipientRole.TICKET_CREATOR)

        assert "Details:" not in body
