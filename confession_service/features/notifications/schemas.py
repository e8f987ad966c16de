"""Pydantic schemas for the notifications feature."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from confession_service.features.notifications.models import NotificationKind

QUIET_HOURS_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d:[0-5]\d$"


# ============================================================================
# Inbound events
# ============================================================================


class NotificationEvent(BaseModel):
    """An inbound event from the confession or messaging subsystems."""

    kind: NotificationKind = Field(..., description="Event kind")
    user_id: str = Field(..., min_length=1, max_length=255, description="Recipient user id")
    sender_id: str | None = Field(default=None, max_length=255)
    message_id: str | None = Field(default=None, max_length=255)
    preview_text: str = Field(default="", max_length=2000, description="Message preview or body text")
    title: str | None = Field(
        default=None,
        max_length=255,
        description="Title for system notifications",
    )

    @model_validator(mode="after")
    def validate_message_fields(self) -> NotificationEvent:
        if self.kind == NotificationKind.MESSAGE_BATCH:
            msg = "message_batch notifications are created by batching, not posted directly"
            raise ValueError(msg)
        if self.kind == NotificationKind.NEW_MESSAGE and not self.message_id:
            msg = "message_id is required for new_message events"
            raise ValueError(msg)
        return self


# ============================================================================
# Notifications
# ============================================================================


class NotificationResponse(BaseModel):
    """Representation of a notification returned from the API."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    user_id: str
    kind: str
    title: str
    message: str
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="metadata_")
    is_read: bool
    read_at: datetime | None = None
    is_email_sent: bool
    email_sent_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class EventResultResponse(BaseModel):
    """Result of posting an inbound event."""

    created: bool
    notification: NotificationResponse | None = None


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    total: int
    unread_count: int


class UnreadCountResponse(BaseModel):
    count: int


class MarkAllReadResponse(BaseModel):
    updated: int


# ============================================================================
# Preferences
# ============================================================================


class PreferenceResponse(BaseModel):
    """Current delivery preferences of the caller."""

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    enable_in_app_notifications: bool
    in_app_new_message: bool
    in_app_message_batch: bool
    enable_email_notifications: bool
    email_new_message: bool
    email_message_batch: bool
    email_address: str | None = None
    batch_window_minutes: int
    batch_threshold: int
    enable_quiet_hours: bool
    quiet_hours_start: str | None = None
    quiet_hours_end: str | None = None
    timezone: str | None = None


class PreferenceUpdate(BaseModel):
    """Partial preference update. Omitted fields keep their current value."""

    model_config = ConfigDict(extra="forbid")

    enable_in_app_notifications: bool | None = None
    in_app_new_message: bool | None = None
    in_app_message_batch: bool | None = None
    enable_email_notifications: bool | None = None
    email_new_message: bool | None = None
    email_message_batch: bool | None = None
    email_address: EmailStr | None = None
    batch_window_minutes: int | None = Field(default=None, ge=1, le=60)
    batch_threshold: int | None = Field(default=None, ge=2, le=20)
    enable_quiet_hours: bool | None = None
    quiet_hours_start: str | None = Field(default=None, pattern=QUIET_HOURS_PATTERN)
    quiet_hours_end: str | None = Field(default=None, pattern=QUIET_HOURS_PATTERN)
    timezone: str | None = Field(default=None, max_length=64)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str | None) -> str | None:
        if value is None:
            return value
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            msg = f"Unknown timezone: {value}"
            raise ValueError(msg) from exc
        return value

    def changes(self) -> dict[str, Any]:
        """Fields explicitly set by the caller."""
        return self.model_dump(exclude_unset=True)


# ============================================================================
# Dead-letter administration
# ============================================================================


class CamelModel(BaseModel):
    """Admin payloads use camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeadLetterJobResponse(CamelModel):
    job_id: str
    name: str
    attempts_made: int
    max_attempts: int
    failed_reason: str
    failed_at: datetime
    created_at: datetime
    channel: str
    recipient: str | None = None
    replay_of: str | None = None


class ReplayAuditResponse(CamelModel):
    dead_letter_job_id: str
    new_job_id: str
    replayed_at: datetime
    reason: str | None = None
    actor_id: str | None = None


class DeadLetterJobDetailResponse(DeadLetterJobResponse):
    payload: dict[str, Any]
    replays: list[ReplayAuditResponse] = Field(default_factory=list)


class DeadLetterListResponse(CamelModel):
    jobs: list[DeadLetterJobResponse]
    total: int
    page: int
    limit: int


class ReplayRequest(CamelModel):
    reason: str | None = Field(default=None, max_length=500)


class ReplayResponse(CamelModel):
    success: bool
    message: str
    job_id: str


class BulkReplayRequest(CamelModel):
    """Replay every dead-letter job matching the filters, up to ``limit``."""

    failed_after: datetime | None = None
    failed_before: datetime | None = None
    min_retries: int | None = Field(default=None, ge=0)
    search: str | None = Field(default=None, max_length=200)
    limit: int = Field(default=50, ge=1, le=500)
    reason: str | None = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def validate_range(self) -> BulkReplayRequest:
        if self.failed_after and self.failed_before and self.failed_after >= self.failed_before:
            msg = "failedAfter must be earlier than failedBefore"
            raise ValueError(msg)
        return self


class BulkReplayResponse(CamelModel):
    success: bool
    replayed: int
    job_ids: list[str]
    failed: list[str] = Field(default_factory=list)


class DeleteDeadLetterResponse(CamelModel):
    success: bool
    job_id: str


class QueueStatsResponse(CamelModel):
    pending: int
    delayed: int
    active: int
    completed: int
    dead_lettered: int


# ============================================================================
# Template administration
# ============================================================================


class TemplatePreviewRequest(CamelModel):
    template_key: str = Field(..., min_length=1, max_length=100)
    vars: dict[str, str] = Field(default_factory=dict)
    version: str | None = Field(default=None, max_length=50)


class RenderedTemplate(CamelModel):
    subject: str
    html: str
    text: str


class TemplatePreview(CamelModel):
    template_key: str
    version: str
    lifecycle_state: str
    rendered: RenderedTemplate | None = None
    validation_errors: list[str] = Field(default_factory=list)
    missing_vars: list[str] = Field(default_factory=list)
    required_vars: list[str] = Field(default_factory=list)


class TemplatePreviewResponse(CamelModel):
    ok: bool
    preview: TemplatePreview


class TemplateRolloutUpdate(CamelModel):
    """Promote a version or start a canary for a template key."""

    action: Literal["activate", "canary"]
    version: str = Field(..., min_length=1, max_length=50)
    canary_percent: float | None = Field(default=None, ge=0, le=100)
    reason: str | None = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def validate_percent(self) -> TemplateRolloutUpdate:
        if self.action == "canary" and self.canary_percent is None:
            msg = "canaryPercent is required to start a canary"
            raise ValueError(msg)
        return self


class TemplateRolloutResponse(CamelModel):
    template_key: str
    active_version: str
    canary_version: str | None = None
    canary_percent: float = 0
