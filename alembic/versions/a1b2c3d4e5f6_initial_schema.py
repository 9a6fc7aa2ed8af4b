"""initial PTSA schema

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "a1b2c3d4e5f6"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False, index=True),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("role", sa.String(32), nullable=False, server_default="member", index=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
    )

    op.create_table(
        "members",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("user_id", sa.String(255), sa.ForeignKey("users.id", ondelete="SET NULL"), unique=True),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("email", sa.String(320), nullable=True, index=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("membership_type", sa.String(50), nullable=False, server_default="individual"),
        sa.Column("membership_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("membership_expires_at", sa.DateTime(), nullable=True),
        sa.Column("payment_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("student_info", sa.JSON(), nullable=True),
        sa.Column("volunteer_interests", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
    )

    op.create_table(
        "privacy_settings",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("user_id", sa.String(255), unique=True, nullable=False, index=True),
        sa.Column("show_email", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("show_phone", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("show_address", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("show_children", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("directory_visible", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("allow_photo_sharing", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("allow_data_sharing", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )

    op.create_table(
        "consent_records",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("user_id", sa.String(255), nullable=True, index=True),
        sa.Column("consent_type", sa.String(50), nullable=False),
        sa.Column("granted", sa.Boolean(), nullable=False),
        sa.Column("parent_user_id", sa.String(255), nullable=True),
        sa.Column("consent_version", sa.String(20), nullable=False, server_default="1.0"),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "idx_consent_user_type_created", "consent_records", ["user_id", "consent_type", "created_at"]
    )

    op.create_table(
        "child_accounts",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("child_user_id", sa.String(255), unique=True, nullable=False, index=True),
        sa.Column("parent_user_id", sa.String(255), nullable=False, index=True),
        sa.Column("birth_date", sa.Date(), nullable=False),
        sa.Column("parental_consent_given", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("consent_date", sa.DateTime(), nullable=True),
        sa.Column("restrictions", sa.JSON(), nullable=False),
        sa.Column("verification_method", sa.String(50), nullable=True),
        sa.Column("verification_status", sa.String(20), nullable=False, server_default="pending_review"),
        sa.Column("verification_token", sa.String(128), nullable=True),
        sa.Column("verified_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("user_id", sa.String(255), nullable=True, index=True),
        sa.Column("stripe_payment_intent_id", sa.String(255), unique=True, nullable=False, index=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="usd"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payment_type", sa.String(20), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=True),
        sa.Column("target_id", sa.String(255), nullable=True),
        sa.Column("resource_type", sa.String(100), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_audit_user_created", "audit_logs", ["user_id", "created_at"])
    op.create_index("idx_audit_event_created", "audit_logs", ["event_type", "created_at"])

    op.create_table(
        "archived_records",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("source_table", sa.String(100), nullable=False),
        sa.Column("record_id", sa.String(64), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("archive_reason", sa.String(100), nullable=False, server_default="retention_policy"),
        sa.Column("archived_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_archived_source_record", "archived_records", ["source_table", "record_id"])

    for table in ("data_export_requests", "data_deletion_requests"):
        extra = (
            [
                sa.Column("export_data", sa.JSON(), nullable=True),
                sa.Column("export_url", sa.String(255), nullable=True),
                sa.Column("expires_at", sa.DateTime(), nullable=True),
            ]
            if table == "data_export_requests"
            else [
                sa.Column("reason", sa.Text(), nullable=True),
                sa.Column("anonymized_id", sa.String(64), nullable=True),
                sa.Column("deletion_results", sa.JSON(), nullable=True),
            ]
        )
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), primary_key=True, index=True),
            sa.Column("user_id", sa.String(255), nullable=False, index=True),
            sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("error", sa.Text(), nullable=True),
            *extra,
            sa.Column("started_at", sa.DateTime(), nullable=True),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    op.create_table(
        "communication_preferences",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("user_id", sa.String(255), unique=True, nullable=False, index=True),
        sa.Column("email_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("email_frequency", sa.String(20), nullable=False, server_default="weekly"),
        sa.Column("announcements_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("events_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payments_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("volunteer_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("meetings_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("parent_consent_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("parent_consent_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("unsubscribed_at", sa.DateTime(), nullable=True),
        sa.Column("unsubscribe_reason", sa.String(255), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "email_logs",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("user_id", sa.String(255), nullable=True, index=True),
        sa.Column("recipient_hash", sa.String(64), nullable=False),
        sa.Column("recipient_domain", sa.String(255), nullable=True),
        sa.Column("subject", sa.String(255), nullable=False),
        sa.Column("template", sa.String(100), nullable=True),
        sa.Column("category", sa.String(50), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "email_queue",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("recipients", sa.JSON(), nullable=False),
        sa.Column("subject", sa.String(255), nullable=False),
        sa.Column("template", sa.String(100), nullable=False),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("scheduled_for", sa.DateTime(), nullable=True, index=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_attempt_at", sa.DateTime(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "announcements",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("type", sa.String(20), nullable=False, server_default="general"),
        sa.Column("audience", sa.String(20), nullable=False, server_default="all"),
        sa.Column("created_by", sa.String(255), nullable=False),
        sa.Column("published_at", sa.DateTime(), nullable=True, index=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("is_pinned", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("event_type", sa.String(20), nullable=False),
        sa.Column("start_time", sa.DateTime(), nullable=False, index=True),
        sa.Column("end_time", sa.DateTime(), nullable=False),
        sa.Column("location_type", sa.String(20), nullable=False, server_default="in_person"),
        sa.Column("location_name", sa.String(200), nullable=True),
        sa.Column("location_address", sa.String(500), nullable=True),
        sa.Column("virtual_link", sa.String(500), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=True),
        sa.Column("rsvp_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("visibility", sa.String(20), nullable=False, server_default="members"),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("created_by", sa.String(255), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "event_rsvps",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("user_id", sa.String(255), nullable=False, index=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="attending"),
        sa.Column("guest_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.String(500), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("event_id", "user_id", name="uq_event_rsvp_user"),
    )

    op.create_table(
        "event_volunteer_slots",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "volunteer_signups",
        sa.Column("id", sa.Integer(), primary_key=True, index=True),
        sa.Column(
            "slot_id",
            sa.Integer(),
            sa.ForeignKey("event_volunteer_slots.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("user_id", sa.String(255), nullable=False, index=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("notes", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("slot_id", "user_id", name="uq_volunteer_signup_user"),
    )


def downgrade() -> None:
    for table in (
        "volunteer_signups",
        "event_volunteer_slots",
        "event_rsvps",
        "events",
        "announcements",
        "email_queue",
        "email_logs",
        "communication_preferences",
        "data_deletion_requests",
        "data_export_requests",
        "archived_records",
        "audit_logs",
        "payments",
        "child_accounts",
        "consent_records",
        "privacy_settings",
        "members",
        "users",
    ):
        op.drop_table(table)
