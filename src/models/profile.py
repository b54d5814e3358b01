"""UserProfile model — phone number and the SMS preference cache.

sms_notifications_enabled mirrors the consent ledger; ConsentRecord is the
authoritative source.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base


class UserProfile(Base):
    """Per-user contact details, keyed by the identity provider's user id."""

    __tablename__ = "user_profiles"
    __mapper_args__ = {"eager_defaults": True}

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    phone_number: Mapped[str | None] = mapped_column(String(20))
    sms_notifications_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<UserProfile user={self.user_id} sms={self.sms_notifications_enabled}>"
