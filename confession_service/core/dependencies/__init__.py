"""FastAPI dependencies shared across features.

Usage:
    from confession_service.core.dependencies import SessionDep, CurrentUserIdDep
"""

from confession_service.core.dependencies.auth import (
    AdminUserDep,
    AuthUserDep,
    CurrentUserIdDep,
    ServiceCallerDep,
    get_auth_user,
    get_current_user_id,
    require_admin,
    require_service_caller,
)
from confession_service.core.dependencies.database import SessionDep, get_db_session

__all__ = [
    "AdminUserDep",
    "AuthUserDep",
    "CurrentUserIdDep",
    "ServiceCallerDep",
    "SessionDep",
    "get_auth_user",
    "get_current_user_id",
    "get_db_session",
    "require_admin",
    "require_service_caller",
]
