"""add notifications and notification preferences

Revision ID: 3f1c2a7d9b10
Revises:
Create Date: 2026-10-19 09:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "3f1c2a7d9b10"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Uuid(), nullable=False, comment="UUID v7 primary key (time-sortable)"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
            comment="Timestamp of record creation",
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
            comment="Timestamp of last update",
        ),
    ]


def upgrade() -> None:
    """Upgrade database schema - add notification tables."""
    op.create_table(
        "notifications",
        sa.Column("user_id", sa.String(length=255), nullable=False, comment="Owning user identifier"),
        sa.Column(
            "kind",
            sa.String(length=32),
            nullable=False,
            comment="Notification kind: new_message, message_batch, system",
        ),
        sa.Column("title", sa.String(length=255), nullable=False, comment="Short notification title"),
        sa.Column("message", sa.Text(), nullable=False, comment="Notification body text"),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()).with_variant(sa.JSON(), "sqlite"),
            nullable=True,
            comment="Kind-specific metadata (message ids, sender, counts)",
        ),
        sa.Column("is_read", sa.Boolean(), nullable=False, comment="Whether the user has read the notification"),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True, comment="When the notification was read"),
        sa.Column(
            "is_email_sent",
            sa.Boolean(),
            nullable=False,
            comment="Whether the email for this notification was sent",
        ),
        sa.Column("email_sent_at", sa.DateTime(timezone=True), nullable=True, comment="When the email was sent"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notifications")),
    )
    op.create_index(op.f("ix_notifications_user_id"), "notifications", ["user_id"], unique=False)
    op.create_index(op.f("ix_notifications_created_at"), "notifications", ["created_at"], unique=False)
    op.create_index(
        "idx_notification_user_read_kind_created",
        "notifications",
        ["user_id", "is_read", "kind", "created_at"],
        unique=False,
    )

    op.create_table(
        "notification_preferences",
        sa.Column("user_id", sa.String(length=255), nullable=False, comment="Owning user identifier"),
        sa.Column("enable_in_app_notifications", sa.Boolean(), nullable=False),
        sa.Column("in_app_new_message", sa.Boolean(), nullable=False),
        sa.Column("in_app_message_batch", sa.Boolean(), nullable=False),
        sa.Column("enable_email_notifications", sa.Boolean(), nullable=False),
        sa.Column("email_new_message", sa.Boolean(), nullable=False),
        sa.Column("email_message_batch", sa.Boolean(), nullable=False),
        sa.Column(
            "email_address",
            sa.String(length=320),
            nullable=True,
            comment="Destination address for email notifications",
        ),
        sa.Column(
            "batch_window_minutes",
            sa.Integer(),
            nullable=False,
            comment="Window in which unread message notifications are batched",
        ),
        sa.Column(
            "batch_threshold",
            sa.Integer(),
            nullable=False,
            comment="Message count at which a batch notification is created",
        ),
        sa.Column("enable_quiet_hours", sa.Boolean(), nullable=False),
        sa.Column(
            "quiet_hours_start",
            sa.String(length=8),
            nullable=True,
            comment="Quiet hours start (HH:MM:SS, local time)",
        ),
        sa.Column(
            "quiet_hours_end",
            sa.String(length=8),
            nullable=True,
            comment="Quiet hours end (HH:MM:SS, local time)",
        ),
        sa.Column("timezone", sa.String(length=64), nullable=True, comment="IANA timezone name; UTC when unset"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notification_preferences")),
        sa.UniqueConstraint("user_id", name=op.f("uq_notification_preferences_user_id")),
    )
    op.create_index(
        op.f("ix_notification_preferences_created_at"),
        "notification_preferences",
        ["created_at"],
        unique=False,
    )


def downgrade() -> None:
    """Downgrade database schema - drop notification tables."""
    op.drop_index(op.f("ix_notification_preferences_created_at"), table_name="notification_preferences")
    op.drop_table("notification_preferences")
    op.drop_index("idx_notification_user_read_kind_created", table_name="notifications")
    op.drop_index(op.f("ix_notifications_created_at"), table_name="notifications")
    op.drop_index(op.f("ix_notifications_user_id"), table_name="notifications")
    op.drop_table("notifications")
