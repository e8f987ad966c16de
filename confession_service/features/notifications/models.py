"""SQLAlchemy models for the notifications feature."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from confession_service.core.database import UUIDv7TimestampedBase


class NotificationKind(StrEnum):
    """Kinds of notification the pipeline creates."""

    NEW_MESSAGE = "new_message"
    MESSAGE_BATCH = "message_batch"
    SYSTEM = "system"


class Notification(UUIDv7TimestampedBase):
    """A persisted, user-facing notification.

    Created by the preference gate, either for a single event or as a batch
    that absorbs several recent unread message notifications. Read state is
    mutated by the user; the email fields are only written by the delivery
    worker and ``is_email_sent`` never goes back to false.

    Metadata shape by kind:
        - new_message: ``{"message_id", "sender_id"}``
        - message_batch: ``{"message_ids", "message_count"}``
        - system: free-form
    """

    __tablename__ = "notifications"

    user_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
        comment="Owning user identifier",
    )
    kind: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="Notification kind: new_message, message_batch, system",
    )
    title: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Short notification title",
    )
    message: Mapped[str] = mapped_column(
        Text(),
        nullable=False,
        comment="Notification body text",
    )
    metadata_: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",
        JSONB().with_variant(JSON(), "sqlite"),
        nullable=True,
        comment="Kind-specific metadata (message ids, sender, counts)",
    )

    # Read state
    is_read: Mapped[bool] = mapped_column(
        Boolean(),
        default=False,
        nullable=False,
        comment="Whether the user has read the notification",
    )
    read_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the notification was read",
    )

    # Email delivery
    is_email_sent: Mapped[bool] = mapped_column(
        Boolean(),
        default=False,
        nullable=False,
        comment="Whether the email for this notification was sent",
    )
    email_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the email was sent",
    )

    __table_args__ = (
        Index("idx_notification_user_read_kind_created", "user_id", "is_read", "kind", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, user_id={self.user_id}, kind={self.kind}, is_read={self.is_read})>"


class NotificationPreference(UUIDv7TimestampedBase):
    """Per-user delivery preferences.

    Exactly one row per user, created lazily with defaults on first read.
    Quiet hours are ``HH:MM:SS`` strings interpreted in ``timezone``
    (UTC when unset).
    """

    __tablename__ = "notification_preferences"

    user_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="Owning user identifier",
    )

    # In-app
    enable_in_app_notifications: Mapped[bool] = mapped_column(Boolean(), default=True, nullable=False)
    in_app_new_message: Mapped[bool] = mapped_column(Boolean(), default=True, nullable=False)
    in_app_message_batch: Mapped[bool] = mapped_column(Boolean(), default=True, nullable=False)

    # Email
    enable_email_notifications: Mapped[bool] = mapped_column(Boolean(), default=True, nullable=False)
    email_new_message: Mapped[bool] = mapped_column(Boolean(), default=True, nullable=False)
    email_message_batch: Mapped[bool] = mapped_column(Boolean(), default=True, nullable=False)
    email_address: Mapped[str | None] = mapped_column(
        String(320),
        nullable=True,
        comment="Destination address for email notifications",
    )

    # Batching
    batch_window_minutes: Mapped[int] = mapped_column(
        Integer(),
        default=5,
        nullable=False,
        comment="Window in which unread message notifications are batched",
    )
    batch_threshold: Mapped[int] = mapped_column(
        Integer(),
        default=3,
        nullable=False,
        comment="Message count at which a batch notification is created",
    )

    # Quiet hours
    enable_quiet_hours: Mapped[bool] = mapped_column(Boolean(), default=False, nullable=False)
    quiet_hours_start: Mapped[str | None] = mapped_column(
        String(8),
        nullable=True,
        comment="Quiet hours start (HH:MM:SS, local time)",
    )
    quiet_hours_end: Mapped[str | None] = mapped_column(
        String(8),
        nullable=True,
        comment="Quiet hours end (HH:MM:SS, local time)",
    )
    timezone: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="IANA timezone name; UTC when unset",
    )

    def __repr__(self) -> str:
        return f"<NotificationPreference(user_id={self.user_id})>"
