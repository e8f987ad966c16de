"""Bearer token verification settings.

Tokens are issued by the platform's auth service; this service only
verifies them (HS256 JWTs signed with a shared secret).
"""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class AuthSettings(BaseSettings):
    """JWT verification settings.

    Environment variables use AUTH_ prefix.
    Example: AUTH_JWT_SECRET=change-me, AUTH_JWT_ISSUER=xconfess-auth
    """

    jwt_secret: SecretStr = Field(
        default=SecretStr("change-me-in-production"),
        description="Shared secret used to verify bearer tokens",
    )
    jwt_algorithm: str = Field(
        default="HS256",
        description="Signing algorithm accepted for bearer tokens",
    )
    jwt_issuer: str | None = Field(
        default=None,
        description="Expected 'iss' claim. None disables issuer verification.",
    )
    user_id_claim: str = Field(
        default="sub",
        min_length=1,
        description="Claim carrying the user identifier",
    )
    roles_claim: str = Field(
        default="roles",
        min_length=1,
        description="Claim carrying the list of user roles",
    )
    admin_role: str = Field(
        default="admin",
        min_length=1,
        description="Role required for the dead-letter admin endpoints",
    )
    service_token: SecretStr | None = Field(
        default=None,
        description="Static token accepted from internal services posting inbound events",
    )

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
