"""Ticket and TicketAttachment models — team-scoped incident records."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import Base, TimestampMixin
from src.models.enums import TicketStatus


class Ticket(TimestampMixin, Base):
    """An incident raised by a team member.

    team_id and the creator_* columns are written once at creation.
    """

    __tablename__ = "tickets"

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, index=True, comment="TicketSeverity value")
    category: Mapped[str] = mapped_column(String(50), nullable=False, comment="TicketCategory value")
    status: Mapped[str] = mapped_column(
        String(20), default=TicketStatus.OPEN.value, nullable=False, index=True
    )

    # Ownership (identity provider ids)
    team_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    creator_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    creator_name: Mapped[str] = mapped_column(String(255), nullable=False)
    creator_email: Mapped[str] = mapped_column(String(255), nullable=False)

    # Relationships
    attachments: Mapped[list[TicketAttachment]] = relationship(
        "TicketAttachment", back_populates="ticket", lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Ticket id={self.id} status={self.status} team={self.team_id}>"


class TicketAttachment(Base):
    """A file attached to a ticket at creation time, stored inline as a data URI."""

    __tablename__ = "ticket_attachments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    file_url: Mapped[str] = mapped_column(Text, nullable=False, comment="data:<mime>;base64,<payload>")
    file_size: Mapped[int | None] = mapped_column(Integer)
    mime_type: Mapped[str | None] = mapped_column(String(100))
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    ticket: Mapped[Ticket] = relationship("Ticket", back_populates="attachments")

    def __repr__(self) -> str:
        return f"<TicketAttachment ticket={self.ticket_id} file={self.filename}>"
