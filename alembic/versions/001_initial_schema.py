"""Initial schema: users, availability, bookings, calendar credentials, audit log.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
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


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    # ── Standalone tables (no FKs) ─────────────────────────────────────

    op.create_table(
        "audit_log",
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True)),
        sa.Column("actor_id", sa.String(100), comment="User ID or 'system'"),
        sa.Column("actor_role", sa.String(50), comment="applicant, expert, system"),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text())),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_audit_log"),
    )
    op.create_index("ix_audit_log_event_type", "audit_log", ["event_type"])
    op.create_index("ix_audit_log_entity_id", "audit_log", ["entity_id"])

    op.create_table(
        "users",
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100)),
        sa.Column("last_name", sa.String(100)),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("ix_users_role", "users", ["role"])

    # ── Tables depending on users ──────────────────────────────────────

    op.create_table(
        "calendar_credentials",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("access_token_encrypted", sa.Text(), nullable=False, comment="AES-256-GCM encrypted"),
        sa.Column("refresh_token_encrypted", sa.Text(), comment="AES-256-GCM encrypted"),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("google_email", sa.String(255)),
        sa.Column("calendar_id", sa.String(500)),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_calendar_credentials"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_calendar_credentials_user_id_users"),
        sa.UniqueConstraint("user_id", name="uq_calendar_credentials_user_id"),
    )

    op.create_table(
        "availability_preferences",
        sa.Column("expert_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column("slot_duration", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("buffer_time", sa.Integer(), nullable=False, server_default="15"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_availability_preferences"),
        sa.ForeignKeyConstraint(["expert_id"], ["users.id"], name="fk_availability_preferences_expert_id_users"),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_availability_preferences_day_of_week_range"),
        sa.CheckConstraint("start_time < end_time", name="ck_availability_preferences_window_order"),
        sa.CheckConstraint("slot_duration > 0", name="ck_availability_preferences_slot_duration_positive"),
        sa.CheckConstraint("buffer_time >= 0", name="ck_availability_preferences_buffer_time_non_negative"),
    )
    op.create_index("ix_availability_preferences_expert_id", "availability_preferences", ["expert_id"])
    # At most one active rule per expert and weekday
    op.create_index(
        "uq_availability_preferences_active_day",
        "availability_preferences",
        ["expert_id", "day_of_week"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )

    op.create_table(
        "meeting_bookings",
        sa.Column("expert_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("applicant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("preference_id", postgresql.UUID(as_uuid=True)),
        sa.Column("rescheduled_from_id", postgresql.UUID(as_uuid=True)),
        sa.Column("meeting_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column("status", sa.String(20), nullable=False, server_default="scheduled"),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("notes", sa.Text()),
        sa.Column("meeting_link", sa.String(500)),
        sa.Column("conferencing_provider", sa.String(20)),
        sa.Column("external_event_id", sa.String(255), comment="Google Calendar event ID"),
        sa.Column("cancelled_by", postgresql.UUID(as_uuid=True)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("cancellation_reason", sa.String(500)),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_meeting_bookings"),
        sa.ForeignKeyConstraint(["expert_id"], ["users.id"], name="fk_meeting_bookings_expert_id_users"),
        sa.ForeignKeyConstraint(["applicant_id"], ["users.id"], name="fk_meeting_bookings_applicant_id_users"),
        sa.ForeignKeyConstraint(["cancelled_by"], ["users.id"], name="fk_meeting_bookings_cancelled_by_users"),
        sa.ForeignKeyConstraint(
            ["preference_id"],
            ["availability_preferences.id"],
            name="fk_meeting_bookings_preference_id_availability_preferences",
        ),
        sa.ForeignKeyConstraint(
            ["rescheduled_from_id"],
            ["meeting_bookings.id"],
            name="fk_meeting_bookings_rescheduled_from_id_meeting_bookings",
        ),
        sa.CheckConstraint("start_time < end_time", name="ck_meeting_bookings_time_order"),
        sa.CheckConstraint(
            "status IN ('scheduled', 'completed', 'cancelled')",
            name="ck_meeting_bookings_status_values",
        ),
        sa.CheckConstraint(
            "(status = 'cancelled') = (cancelled_by IS NOT NULL AND cancellation_reason IS NOT NULL)",
            name="ck_meeting_bookings_cancellation_metadata",
        ),
    )
    op.create_index("ix_meeting_bookings_expert_id", "meeting_bookings", ["expert_id"])
    op.create_index("ix_meeting_bookings_applicant_id", "meeting_bookings", ["applicant_id"])
    op.create_index("ix_meeting_bookings_status", "meeting_bookings", ["status"])
    op.create_index("ix_meeting_bookings_applicant_date", "meeting_bookings", ["applicant_id", "meeting_date"])
    # A slot backs at most one scheduled booking; cancelled rows drop out and free it
    op.create_index(
        "uq_meeting_bookings_active_slot",
        "meeting_bookings",
        ["expert_id", "meeting_date", "start_time"],
        unique=True,
        postgresql_where=sa.text("status = 'scheduled'"),
    )


def downgrade() -> None:
    # Drop in reverse dependency order
    op.drop_table("meeting_bookings")
    op.drop_table("availability_preferences")
    op.drop_table("calendar_credentials")
    op.drop_table("users")
    op.drop_table("audit_log")
