"""Email client for SMTP and alternative backends.

Provides low-level email sending with support for multiple backends:
- SMTP: Production email delivery via aiosmtplib
- Console: Log emails to console (development)
- File: Write emails to files (testing)
"""

from __future__ import annotations

import json
import logging
import ssl
import uuid
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import TYPE_CHECKING

import aiosmtplib

from confession_service.core.settings import get_email_settings

from .schemas import EmailMessage, EmailResult, EmailStatus

if TYPE_CHECKING:
    from confession_service.core.settings.email import EmailSettings

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    """Raised when a send attempt fails and the caller wants retry semantics."""

    def __init__(self, message: str, error_code: str | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code

    @classmethod
    def from_result(cls, result: EmailResult) -> EmailDeliveryError:
        return cls(result.error or "Email delivery failed", error_code=result.error_code)


class BaseEmailClient(ABC):
    """Abstract base class for email clients."""

    @abstractmethod
    async def send(self, message: EmailMessage) -> EmailResult:
        """Send an email message.

        Args:
            message: The email message to send.

        Returns:
            EmailResult with delivery status.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the email backend is healthy."""
        ...


class SMTPClient(BaseEmailClient):
    """SMTP email client using aiosmtplib.

    A connection is opened per send; aiosmtplib has no pooling and the
    delivery worker's concurrency is small.
    """

    def __init__(self, settings: EmailSettings) -> None:
        self.settings = settings
        logger.info(
            "SMTP client initialized",
            extra={
                "host": settings.smtp_host,
                "port": settings.smtp_port,
                "use_tls": settings.use_tls,
                "use_ssl": settings.use_ssl,
            },
        )

    def _tls_context(self) -> ssl.SSLContext | None:
        if not (self.settings.use_tls or self.settings.use_ssl):
            return None
        tls_context = ssl.create_default_context()
        if not self.settings.validate_certs:
            tls_context.check_hostname = False
            tls_context.verify_mode = ssl.CERT_NONE
        return tls_context

    def _smtp(self, timeout: float) -> aiosmtplib.SMTP:
        return aiosmtplib.SMTP(
            hostname=self.settings.smtp_host,
            port=self.settings.smtp_port,
            use_tls=self.settings.use_ssl,  # Implicit TLS
            start_tls=self.settings.use_tls,  # STARTTLS
            tls_context=self._tls_context(),
            timeout=timeout,
        )

    async def health_check(self) -> bool:
        """Check SMTP server connectivity."""
        try:
            smtp = self._smtp(timeout=5.0)
            await smtp.connect()
            await smtp.quit()
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.warning("SMTP health check failed", extra={"error": str(e)})
            return False
        return True

    async def send(self, message: EmailMessage) -> EmailResult:
        """Send email via SMTP."""
        mime_message = self._build_mime_message(message)
        message_id = mime_message["Message-ID"]

        try:
            async with self._smtp(timeout=self.settings.timeout) as smtp:
                if self.settings.requires_auth:
                    await smtp.login(
                        self.settings.smtp_username,
                        self.settings.smtp_password.get_secret_value(),
                    )
                errors, _response = await smtp.send_message(mime_message)

        except aiosmtplib.SMTPAuthenticationError as e:
            logger.error("SMTP authentication failed", extra={"error": str(e)})
            return EmailResult.failure_result(error=str(e), error_code="AUTH_FAILED")
        except aiosmtplib.SMTPRecipientsRefused as e:
            logger.error("All recipients refused", extra={"error": str(e)})
            return EmailResult.failure_result(error=str(e), error_code="RECIPIENTS_REFUSED")
        except aiosmtplib.SMTPException as e:
            logger.error("SMTP error", extra={"error": str(e)})
            return EmailResult.failure_result(error=str(e), error_code="SMTP_ERROR")
        except OSError as e:
            logger.error("SMTP connection failed", extra={"error": str(e)})
            return EmailResult.failure_result(error=str(e), error_code="CONNECTION_ERROR")

        recipients_rejected = list(errors.keys()) if errors else []
        recipients_accepted = [r for r in message.to if r not in recipients_rejected]
        if recipients_rejected:
            logger.warning(
                "Some recipients rejected",
                extra={"message_id": message_id, "rejected": recipients_rejected},
            )

        logger.info(
            "Email sent successfully",
            extra={
                "message_id": message_id,
                "recipients": len(recipients_accepted),
                "subject": message.subject[:50],
            },
        )
        return EmailResult(
            success=len(recipients_accepted) > 0,
            message_id=message_id,
            status=EmailStatus.SENT if recipients_accepted else EmailStatus.FAILED,
            error=None if recipients_accepted else "All recipients rejected",
            recipients_accepted=recipients_accepted,
            recipients_rejected=recipients_rejected,
            backend="smtp",
        )

    def _build_mime_message(self, message: EmailMessage) -> MIMEMultipart:
        mime_msg = MIMEMultipart("alternative")

        from_email = message.from_email or self.settings.default_from_email
        from_name = message.from_name or self.settings.default_from_name
        mime_msg["From"] = f"{from_name} <{from_email}>" if from_name else from_email
        mime_msg["To"] = ", ".join(message.to)
        mime_msg["Subject"] = message.subject
        mime_msg["Message-ID"] = f"<{uuid.uuid4()}@{self.settings.smtp_host}>"
        mime_msg["Date"] = datetime.now(UTC).strftime("%a, %d %b %Y %H:%M:%S +0000")

        for key, value in message.headers.items():
            mime_msg[key] = value

        if message.body_text:
            mime_msg.attach(MIMEText(message.body_text, "plain", "utf-8"))
        if message.body_html:
            mime_msg.attach(MIMEText(message.body_html, "html", "utf-8"))

        return mime_msg


class ConsoleClient(BaseEmailClient):
    """Console email client for development.

    Prints emails to stdout instead of sending them.
    """

    def __init__(self, settings: EmailSettings) -> None:
        self.settings = settings
        logger.info("Console email client initialized (development mode)")

    async def health_check(self) -> bool:
        return True

    async def send(self, message: EmailMessage) -> EmailResult:
        message_id = f"console-{uuid.uuid4()}"

        separator = "=" * 60
        print(f"\n{separator}")
        print("EMAIL (Console Backend)")
        print(separator)
        print(
            f"From: {message.from_name or self.settings.default_from_name} "
            f"<{message.from_email or self.settings.default_from_email}>"
        )
        print(f"To: {', '.join(message.to)}")
        print(f"Subject: {message.subject}")
        print(separator)
        if message.body_text:
            print(message.body_text[:500])
        print(f"{separator}\n")

        logger.info(
            "Email logged to console",
            extra={"message_id": message_id, "to": message.to, "subject": message.subject},
        )
        return EmailResult.success_result(
            message_id=message_id,
            recipients=list(message.to),
            backend="console",
        )


class FileClient(BaseEmailClient):
    """File email client for testing.

    Writes one JSON document per email into the configured directory.
    """

    def __init__(self, settings: EmailSettings) -> None:
        self.settings = settings
        self.output_dir = Path(settings.file_path)
        logger.info("File email client initialized", extra={"output_dir": str(self.output_dir)})

    async def health_check(self) -> bool:
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            test_file = self.output_dir / ".health_check"
            test_file.touch()
            test_file.unlink()
        except OSError:
            return False
        return True

    async def send(self, message: EmailMessage) -> EmailResult:
        message_id = f"file-{uuid.uuid4()}"
        timestamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S_%f")
        filepath = self.output_dir / f"{timestamp}_{message_id}.json"

        email_data = {
            "message_id": message_id,
            "timestamp": datetime.now(UTC).isoformat(),
            "from_email": message.from_email or self.settings.default_from_email,
            "from_name": message.from_name or self.settings.default_from_name,
            "to": list(message.to),
            "subject": message.subject,
            "body_text": message.body_text,
            "body_html": message.body_html,
            "headers": message.headers,
            "metadata": message.metadata,
        }

        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            with open(filepath, "w", encoding="utf-8") as f:
                json.dump(email_data, f, indent=2, default=str)
        except OSError as e:
            logger.error("Failed to write email to file", extra={"error": str(e)})
            return EmailResult.failure_result(
                error=str(e),
                error_code="FILE_WRITE_ERROR",
                backend="file",
            )

        logger.info(
            "Email written to file",
            extra={"message_id": message_id, "filepath": str(filepath), "subject": message.subject},
        )
        return EmailResult.success_result(
            message_id=message_id,
            recipients=list(message.to),
            backend="file",
        )


class EmailClient:
    """Email client facade that delegates to the configured backend.

    Example:
        client = get_email_client()
        result = await client.send(message)
        if not result.success:
            raise EmailDeliveryError.from_result(result)
    """

    def __init__(self, settings: EmailSettings) -> None:
        self.settings = settings
        self._backend: BaseEmailClient

        if settings.backend == "smtp":
            self._backend = SMTPClient(settings)
        elif settings.backend == "console":
            self._backend = ConsoleClient(settings)
        elif settings.backend == "file":
            self._backend = FileClient(settings)
        else:
            raise ValueError(f"Unknown email backend: {settings.backend}")

    async def send(self, message: EmailMessage) -> EmailResult:
        """Send an email message through the configured backend."""
        if not self.settings.enabled:
            logger.warning("Email sending is disabled")
            return EmailResult.failure_result(
                error="Email sending is disabled",
                error_code="EMAIL_DISABLED",
                backend=self.settings.backend,
            )

        return await self._backend.send(message)

    async def health_check(self) -> bool:
        """Check if the email backend is healthy."""
        return await self._backend.health_check()


_client: EmailClient | None = None


def get_email_client() -> EmailClient:
    """Get the process-wide EmailClient built from EmailSettings."""
    global _client
    if _client is None:
        _client = EmailClient(get_email_settings())
    return _client


def reset_email_client() -> None:
    """Drop the cached client so the next call re-reads settings."""
    global _client
    _client = None
