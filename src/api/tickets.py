"""Ticket routes — create, list, change status, announce updates."""
# ruff: noqa: B008

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import UploadFile

from src.db.engine import get_session
from src.errors import InvalidInput
from src.identity.auth import get_current_user
from src.identity.client import AuthenticatedUser
from src.tickets.service import AttachmentUpload, ticket_lifecycle, ticket_payload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tickets", tags=["tickets"])


class StatusChangeRequest(BaseModel):
    status: str | None = None


class TicketUpdateRequest(BaseModel):
    update_type: str | None = Field(default=None, alias="updateType")
    update_description: str | None = Field(default=None, alias="updateDescription")
    notify_creator: bool = Field(default=True, alias="notifyCreator")


def _parse_ticket_id(raw: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise InvalidInput("Invalid ticket ID") from exc


def _form_str(form: Any, name: str) -> str:
    value = form.get(name)
    return value.strip() if isinstance(value, str) else ""


@router.post("/create")
async def create_ticket(
    request: Request,
    db: AsyncSession = Depends(get_session),
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    """Multipart form: title, description, severity, category, teamId, file-*."""
    form = await request.form()

    uploads: list[AttachmentUpload] = []
    for key, value in form.multi_items():
        if key.startswith("file-") and isinstance(value, UploadFile):
            uploads.append(AttachmentUpload(
                filename=value.filename or key,
                content=await value.read(),
                mime_type=value.content_type or "application/octet-stream",
            ))

    ticket, attachments = await ticket_lifecycle.create_ticket(
        db,
        user,
        title=_form_str(form, "title"),
        description=_form_str(form, "description"),
        severity=_form_str(form, "severity"),
        category=_form_str(form, "category"),
        team_id=_form_str(form, "teamId"),
        attachments=uploads,
    )
    return {
        "success": True,
        "ticket": ticket_payload(ticket, attachments),
        "message": "Ticket created successfully. Team members will be notified.",
    }


@router.get("")
async def list_tickets(
    db: AsyncSession = Depends(get_session),
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    tickets = await ticket_lifecycle.list_team_tickets(db, user)
    if tickets is None:
        return {"success": True, "tickets": [], "team": None, "message": "No team found"}

    team = user.primary_team
    return {
        "success": True,
        "tickets": [ticket_payload(t) for t in tickets],
        "team": {"id": team.id, "displayName": team.display_name} if team else None,
    }


@router.patch("/{ticket_id}/status")
async def change_status(
    ticket_id: str,
    body: StatusChangeRequest,
    db: AsyncSession = Depends(get_session),
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    ticket, changed = await ticket_lifecycle.change_status(db, user, _parse_ticket_id(ticket_id), body.status)
    if not changed:
        return {"success": True, "ticket": ticket_payload(ticket), "message": "Status unchanged"}
    return {
        "success": True,
        "ticket": ticket_payload(ticket),
        "message": f"Ticket status updated to {ticket.status}",
    }


@router.post("/{ticket_id}/update")
async def record_update(
    ticket_id: str,
    body: TicketUpdateRequest,
    db: AsyncSession = Depends(get_session),
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, Any]:
    ticket, notified = await ticket_lifecycle.record_update(
        db,
        user,
        _parse_ticket_id(ticket_id),
        body.update_type,
        body.update_description,
        body.notify_creator,
    )
    return {
        "success": True,
        "message": "Ticket update notification sent" if notified else "Ticket update recorded",
        "ticket": ticket_payload(ticket),
    }
