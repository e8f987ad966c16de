"""Authentication dependencies.

Bearer tokens are read from the ``Authorization`` header and verified with
the shared secret. Role checks use the token's roles claim.

Example:
    from confession_service.core.dependencies.auth import AuthUserDep, AdminUserDep

    @router.get("/notifications")
    async def list_notifications(user: AuthUserDep): ...

    @router.get("/admin/notifications/dead-letter-jobs")
    async def list_failed(admin: AdminUserDep): ...
"""

from __future__ import annotations

import hmac
from typing import Annotated

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from confession_service.core.exceptions import (
    InsufficientPermissionsError,
    MissingAuthenticationError,
    TokenInvalidError,
)
from confession_service.core.schemas.auth import AuthUser
from confession_service.core.settings import get_auth_settings
from confession_service.infra.auth import get_token_verifier

bearer_scheme = HTTPBearer(auto_error=False)


async def get_auth_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> AuthUser:
    """Verify the bearer token and return the caller.

    Raises:
        MissingAuthenticationError: No bearer token was sent.
        TokenInvalidError: The token failed verification.
    """
    if credentials is None or not credentials.credentials:
        raise MissingAuthenticationError()
    return get_token_verifier().verify(credentials.credentials)


AuthUserDep = Annotated[AuthUser, Depends(get_auth_user)]


def get_current_user_id(user: AuthUserDep) -> str:
    return user.user_id


CurrentUserIdDep = Annotated[str, Depends(get_current_user_id)]


async def require_admin(user: AuthUserDep) -> AuthUser:
    """Require the configured admin role.

    Raises:
        InsufficientPermissionsError: The caller lacks the admin role.
    """
    admin_role = get_auth_settings().admin_role
    if not user.has_role(admin_role):
        raise InsufficientPermissionsError(admin_role, user.roles)
    return user


AdminUserDep = Annotated[AuthUser, Depends(require_admin)]


async def require_service_caller(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    x_service_token: Annotated[str | None, Header()] = None,
) -> str:
    """Accept an internal service token or an admin bearer token.

    Returns:
        Identifier of the caller, ``service`` for the static service token.

    Raises:
        MissingAuthenticationError: Neither credential was sent.
        TokenInvalidError: The service token does not match.
        InsufficientPermissionsError: The bearer token lacks the admin role.
    """
    settings = get_auth_settings()
    if x_service_token is not None:
        expected = settings.service_token.get_secret_value() if settings.service_token else None
        if expected is None or not hmac.compare_digest(x_service_token, expected):
            raise TokenInvalidError("Invalid service token")
        return "service"

    user = await get_auth_user(credentials)
    return (await require_admin(user)).user_id


ServiceCallerDep = Annotated[str, Depends(require_service_caller)]

__all__ = [
    "AdminUserDep",
    "AuthUserDep",
    "CurrentUserIdDep",
    "ServiceCallerDep",
    "bearer_scheme",
    "get_auth_user",
    "get_current_user_id",
    "require_admin",
    "require_service_caller",
]
