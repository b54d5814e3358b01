"""ConsentRecord model — GDPR consent tracking.

Every consent grant and every withdrawal is its own row. Rows are never
updated or deleted; a withdrawal is a new row with withdrawal_date set.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, CreatedAtMixin


class ConsentRecord(CreatedAtMixin, Base):
    """An individual consent grant or withdrawal event."""

    __tablename__ = "consent_records"
    __table_args__ = (
        Index("ix_consent_records_user_type_date", "user_id", "consent_type", "consent_date"),
    )

    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    # Consent details
    consent_type: Mapped[str] = mapped_column(String(50), nullable=False, comment="ConsentType enum value")
    consent_given: Mapped[bool] = mapped_column(Boolean, nullable=False)
    consent_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    consent_method: Mapped[str] = mapped_column(
        String(100), nullable=False, comment="How consent was captured: onboarding_verification, profile, ..."
    )

    # Capture context
    ip_address: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(String(512))

    # Legal framing
    legal_basis: Mapped[str] = mapped_column(String(50), nullable=False, default="consent")
    purpose: Mapped[str | None] = mapped_column(String(500))
    data_retention_period: Mapped[str | None] = mapped_column(String(255))

    # Set only on withdrawal rows
    withdrawal_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    withdrawal_method: Mapped[str | None] = mapped_column(String(100))

    @property
    def is_withdrawal(self) -> bool:
        return self.withdrawal_date is not None

    def __repr__(self) -> str:
        return (
            f"<ConsentRecord user={self.user_id} type={self.consent_type} "
            f"given={self.consent_given} withdrawn={self.is_withdrawal}>"
        )
