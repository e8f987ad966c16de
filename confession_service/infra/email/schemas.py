"""Email schemas and data models."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, EmailStr, Field


class EmailStatus(StrEnum):
    """Email delivery status."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class EmailMessage(BaseModel):
    """Email message ready for sending.

    Example:
        message = EmailMessage(
            to=["user@example.com"],
            subject="New Message on xConfess",
            body_text="You have a new message on xConfess: hello",
            body_html="<p>hello</p>",
        )
    """

    to: list[EmailStr] = Field(
        min_length=1,
        description="Primary recipients",
    )
    from_email: EmailStr | None = Field(
        default=None,
        description="Sender email address",
    )
    from_name: str | None = Field(
        default=None,
        max_length=100,
        description="Sender display name",
    )
    subject: str = Field(
        min_length=1,
        max_length=500,
        description="Email subject line",
    )
    body_text: str | None = Field(
        default=None,
        description="Plain text body",
    )
    body_html: str | None = Field(
        default=None,
        description="HTML body",
    )
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Additional email headers",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Custom metadata for tracking (template key, version, notification id)",
    )

    def model_post_init(self, __context: Any) -> None:
        """Validate that at least one body type is provided."""
        if self.body_text is None and self.body_html is None:
            msg = "Either body_text or body_html must be provided"
            raise ValueError(msg)


class EmailResult(BaseModel):
    """Result of an email send operation.

    Clients report transport failures through a failed result instead of
    raising; callers that need retry semantics convert it into an
    EmailDeliveryError.
    """

    success: bool = Field(
        description="Whether the email was sent successfully",
    )
    message_id: str | None = Field(
        default=None,
        description="Message ID from the mail server",
    )
    status: EmailStatus = Field(
        default=EmailStatus.PENDING,
        description="Delivery status",
    )
    error: str | None = Field(
        default=None,
        description="Error message if failed",
    )
    error_code: str | None = Field(
        default=None,
        description="Error code for programmatic handling",
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the operation completed",
    )
    recipients_accepted: list[str] = Field(
        default_factory=list,
        description="Recipients accepted by the server",
    )
    recipients_rejected: list[str] = Field(
        default_factory=list,
        description="Recipients rejected by the server",
    )
    backend: str = Field(
        default="smtp",
        description="Backend used for sending",
    )

    @classmethod
    def success_result(
        cls,
        message_id: str | None = None,
        recipients: list[str] | None = None,
        backend: str = "smtp",
    ) -> EmailResult:
        """Create a success result."""
        return cls(
            success=True,
            message_id=message_id,
            status=EmailStatus.SENT,
            recipients_accepted=recipients or [],
            backend=backend,
        )

    @classmethod
    def failure_result(
        cls,
        error: str,
        error_code: str | None = None,
        backend: str = "smtp",
    ) -> EmailResult:
        """Create a failure result."""
        return cls(
            success=False,
            status=EmailStatus.FAILED,
            error=error,
            error_code=error_code,
            backend=backend,
        )
