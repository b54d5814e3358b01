"""Initial schema — tickets, consent ledger, profiles, push, audit.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def upgrade() -> None:
    # ── Standalone tables (no FKs) ─────────────────────────────────────

    op.create_table(
        "tickets",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False, index=True, comment="TicketSeverity value"),
        sa.Column("category", sa.String(50), nullable=False, comment="TicketCategory value"),
        sa.Column("status", sa.String(20), nullable=False, index=True),
        sa.Column("team_id", sa.String(255), nullable=False, index=True),
        sa.Column("creator_id", sa.String(255), nullable=False, index=True),
        sa.Column("creator_name", sa.String(255), nullable=False),
        sa.Column("creator_email", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "consent_records",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False, index=True),
        sa.Column("consent_type", sa.String(50), nullable=False, comment="ConsentType enum value"),
        sa.Column("consent_given", sa.Boolean(), nullable=False),
        sa.Column("consent_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("consent_method", sa.String(100), nullable=False),
        sa.Column("ip_address", sa.String(45)),
        sa.Column("user_agent", sa.String(512)),
        sa.Column("legal_basis", sa.String(50), nullable=False),
        sa.Column("purpose", sa.String(500)),
        sa.Column("data_retention_period", sa.String(255)),
        sa.Column("withdrawal_date", sa.DateTime(timezone=True)),
        sa.Column("withdrawal_method", sa.String(100)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_consent_records_user_type_date",
        "consent_records",
        ["user_id", "consent_type", "consent_date"],
    )

    op.create_table(
        "user_profiles",
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("phone_number", sa.String(20)),
        sa.Column("sms_notifications_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "push_subscriptions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False, index=True),
        sa.Column("endpoint", sa.Text(), nullable=False),
        sa.Column("p256dh", sa.String(255), nullable=False),
        sa.Column("auth", sa.String(255), nullable=False),
        sa.Column("user_agent", sa.String(512)),
        sa.Column("revoked_at", sa.DateTime(timezone=True), index=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("endpoint"),
    )

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False, index=True),
        sa.Column("ticket_id", sa.Integer(), index=True),
        sa.Column("actor_id", sa.String(255), comment="User ID or 'system'"),
        sa.Column("actor_role", sa.String(50), comment="user, system"),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # ── Dependent tables ───────────────────────────────────────────────

    op.create_table(
        "ticket_attachments",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("ticket_id", sa.Integer(), nullable=False, index=True),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("file_url", sa.Text(), nullable=False, comment="data:<mime>;base64,<payload>"),
        sa.Column("file_size", sa.Integer()),
        sa.Column("mime_type", sa.String(100)),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    # Drop in reverse dependency order
    op.drop_table("ticket_attachments")
    op.drop_table("audit_log")
    op.drop_table("push_subscriptions")
    op.drop_table("user_profiles")
    op.drop_index("ix_consent_records_user_type_date", table_name="consent_records")
    op.drop_table("consent_records")
    op.drop_table("tickets")
