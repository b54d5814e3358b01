"""PushSubscription model — one row per browser/device push endpoint."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, CreatedAtMixin


class PushSubscription(CreatedAtMixin, Base):
    """A Web Push subscription owned by a user.

    Revocation stamps revoked_at; rows are kept so re-subscribing the same
    endpoint can reactivate them.
    """

    __tablename__ = "push_subscriptions"

    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    endpoint: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    p256dh: Mapped[str] = mapped_column(String(255), nullable=False)
    auth: Mapped[str] = mapped_column(String(255), nullable=False)
    user_agent: Mapped[str | None] = mapped_column(String(512))
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None

    def as_subscription_info(self) -> dict[str, object]:
        """Shape expected by pywebpush."""
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh, "auth": self.auth}}

    def __repr__(self) -> str:
        return f"<PushSubscription id={self.id} user={self.user_id} active={self.is_active}>"
