"""Email transport: aiosmtplib SMTP plus console and file backends."""

from .client import (
    BaseEmailClient,
    ConsoleClient,
    EmailClient,
    EmailDeliveryError,
    FileClient,
    SMTPClient,
    get_email_client,
    reset_email_client,
)
from .schemas import EmailMessage, EmailResult, EmailStatus

__all__ = [
    "BaseEmailClient",
    "ConsoleClient",
    "EmailClient",
    "EmailDeliveryError",
    "EmailMessage",
    "EmailResult",
    "EmailStatus",
    "FileClient",
    "SMTPClient",
    "get_email_client",
    "reset_email_client",
]
