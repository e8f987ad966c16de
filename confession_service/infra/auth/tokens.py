"""Bearer token verification with python-jose.

Example:
    verifier = get_token_verifier()
    user = verifier.verify(token)   # raises TokenInvalidError
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from jose import ExpiredSignatureError, JWTError, jwt

from confession_service.core.exceptions import TokenInvalidError
from confession_service.core.schemas.auth import AuthUser
from confession_service.core.settings import get_auth_settings

if TYPE_CHECKING:
    from confession_service.core.settings.auth import AuthSettings

logger = logging.getLogger(__name__)


class TokenVerifier:
    """Verifies HS-signed JWTs and maps their claims to an AuthUser."""

    def __init__(self, settings: AuthSettings) -> None:
        self.settings = settings

    def decode(self, token: str) -> dict[str, Any]:
        """Decode and verify a token.

        Raises:
            TokenInvalidError: If the signature, expiry or issuer check fails.
        """
        options = {"verify_aud": False}
        try:
            return jwt.decode(
                token,
                self.settings.jwt_secret.get_secret_value(),
                algorithms=[self.settings.jwt_algorithm],
                issuer=self.settings.jwt_issuer,
                options=options,
            )
        except ExpiredSignatureError as exc:
            raise TokenInvalidError("Token has expired") from exc
        except JWTError as exc:
            logger.info("Rejected bearer token", extra={"error": str(exc)})
            raise TokenInvalidError() from exc

    def verify(self, token: str) -> AuthUser:
        """Verify a token and return the principal it identifies.

        Raises:
            TokenInvalidError: If the token is invalid or names no user.
        """
        claims = self.decode(token)

        user_id = claims.get(self.settings.user_id_claim)
        if user_id is None or str(user_id).strip() == "":
            raise TokenInvalidError("Token does not identify a user")

        roles = claims.get(self.settings.roles_claim) or []
        if isinstance(roles, str):
            roles = [roles]

        return AuthUser(user_id=str(user_id), roles=[str(role) for role in roles], claims=claims)

    def issue(self, user_id: str, *, roles: list[str] | None = None, **claims: Any) -> str:
        """Sign a token with the configured secret (tests and local tooling)."""
        payload: dict[str, Any] = {self.settings.user_id_claim: user_id, **claims}
        if roles is not None:
            payload[self.settings.roles_claim] = roles
        if self.settings.jwt_issuer and "iss" not in payload:
            payload["iss"] = self.settings.jwt_issuer
        return jwt.encode(
            payload,
            self.settings.jwt_secret.get_secret_value(),
            algorithm=self.settings.jwt_algorithm,
        )


_verifier: TokenVerifier | None = None


def get_token_verifier() -> TokenVerifier:
    """Get the TokenVerifier singleton instance."""
    global _verifier
    if _verifier is None:
        _verifier = TokenVerifier(get_auth_settings())
    return _verifier


def reset_token_verifier() -> None:
    global _verifier
    _verifier = None
