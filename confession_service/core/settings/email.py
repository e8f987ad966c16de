"""Email transport settings.

Environment variables use EMAIL_ prefix.
Example: EMAIL_ENABLED=true, EMAIL_SMTP_HOST=smtp.example.com
"""

from __future__ import annotations

from pathlib import Path
from tempfile import gettempdir
from typing import Literal

from pydantic import EmailStr, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_EMAIL_FILE_DIR = Path(gettempdir()) / "confession_service_emails"


class EmailSettings(BaseSettings):
    """Email transport configuration.

    Supports multiple backends:
    - smtp: Standard SMTP/SMTPS delivery
    - console: Log emails to console (development)
    - file: Write emails to files (testing)
    """

    enabled: bool = Field(
        default=True,
        description="Enable email sending. When disabled every send fails and the job is retried",
    )

    backend: Literal["smtp", "console", "file"] = Field(
        default="console",
        description="Email backend: smtp (production), console (dev), file (testing)",
    )

    # SMTP Configuration
    smtp_host: str = Field(
        default="localhost",
        min_length=1,
        max_length=255,
        description="SMTP server hostname",
    )
    smtp_port: int = Field(
        default=587,
        ge=1,
        le=65535,
        description="SMTP server port (587 for TLS, 465 for SSL, 25 for plain)",
    )
    smtp_username: str | None = Field(
        default=None,
        max_length=255,
        description="SMTP authentication username",
    )
    smtp_password: SecretStr | None = Field(
        default=None,
        description="SMTP authentication password",
    )

    # TLS/SSL Configuration
    use_tls: bool = Field(
        default=True,
        description="Use STARTTLS (port 587). Set False for SSL (port 465) or plain (port 25)",
    )
    use_ssl: bool = Field(
        default=False,
        description="Use implicit SSL/TLS (port 465). Mutually exclusive with use_tls",
    )
    validate_certs: bool = Field(
        default=True,
        description="Validate SSL/TLS certificates",
    )

    # Sender Configuration
    default_from_email: EmailStr = Field(
        default="noreply@xconfess.app",
        description="Default sender email address",
    )
    default_from_name: str = Field(
        default="xConfess",
        max_length=100,
        description="Default sender display name",
    )

    timeout: float = Field(
        default=30.0,
        ge=1.0,
        le=300.0,
        description="SMTP connection timeout in seconds",
    )

    # File Backend Settings (for testing)
    file_path: str = Field(
        default=str(DEFAULT_EMAIL_FILE_DIR),
        description="Directory for file backend to write emails (development/testing only)",
    )

    @model_validator(mode="after")
    def validate_tls_ssl_exclusive(self) -> EmailSettings:
        """Ensure TLS and SSL are mutually exclusive."""
        if self.use_tls and self.use_ssl:
            msg = "use_tls and use_ssl are mutually exclusive"
            raise ValueError(msg)
        return self

    @model_validator(mode="after")
    def validate_smtp_auth(self) -> EmailSettings:
        """Require username and password together."""
        has_username = self.smtp_username is not None
        has_password = self.smtp_password is not None
        if has_username != has_password:
            msg = "Both smtp_username and smtp_password must be provided together"
            raise ValueError(msg)
        return self

    model_config = SettingsConfigDict(
        env_prefix="EMAIL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @property
    def is_configured(self) -> bool:
        """Check if email is properly configured for sending."""
        if not self.enabled:
            return False
        if self.backend == "smtp":
            return bool(self.smtp_host)
        return True

    @property
    def requires_auth(self) -> bool:
        """Check if SMTP authentication is configured."""
        return self.smtp_username is not None and self.smtp_password is not None
