"""SQLAlchemy ORM models for the VAKTROS incident desk.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from src.models.audit import AuditLog
from src.models.base import Base
from src.models.consent import ConsentRecord
from src.models.enums import (
    ConsentType,
    NotificationChannel,
    RecipientRole,
    TicketCategory,
    TicketSeverity,
    TicketStatus,
)
from src.models.profile import UserProfile
from src.models.push import PushSubscription
from src.models.ticket import Ticket, TicketAttachment

__all__ = [
    # Base
    "Base",
    # Models
    "Ticket",
    "TicketAttachment",
    "ConsentRecord",
    "UserProfile",
    "PushSubscription",
    "AuditLog",
    # Enums
    "TicketSeverity",
    "TicketCategory",
    "TicketStatus",
    "ConsentType",
    "NotificationChannel",
    "RecipientRole",
]
