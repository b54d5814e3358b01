"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization; columns store the `.value`.
"""

from __future__ import annotations

from enum import Enum


class _LabelEnum(str, Enum):
    """Enum whose values are display labels, matched case-insensitively on input."""

    @classmethod
    def _missing_(cls, value: object) -> _LabelEnum | None:
        if isinstance(value, str):
            wanted = value.strip().lower()
            for member in cls:
                if member.value.lower() == wanted:
                    return member
        return None


class TicketSeverity(_LabelEnum):
    """How urgently an incident needs attention."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class TicketCategory(_LabelEnum):
    """What kind of incident or request a ticket describes."""

    INTRUSION = "Intrusion"
    SUSPICIOUS_ACTIVITY = "Suspicious Activity"
    EQUIPMENT_FAULT = "Equipment Fault"
    TECHNICAL = "Technical"
    BILLING = "Billing"
    FEATURE_REQUEST = "Feature Request"
    BUG_REPORT = "Bug Report"
    GENERAL_SUPPORT = "General Support"


class TicketStatus(str, Enum):
    """Ticket lifecycle states. Any state may move to any other.

    Matched exactly: status changes are a contract, not free text.
    """

    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    RESOLVED = "Resolved"
    CLOSED = "Closed"


class ConsentType(str, Enum):
    """Types of consent tracked for GDPR compliance."""

    SMS_NOTIFICATIONS = "sms_notifications"


class NotificationChannel(str, Enum):
    """Delivery mechanisms for ticket notifications."""

    SMS = "sms"
    PUSH = "push"


class RecipientRole(str, Enum):
    """Why a user receives a ticket notification — selects the message wording."""

    TEAM_MEMBER = "team_member"
    TICKET_CREATOR = "ticket_creator"
