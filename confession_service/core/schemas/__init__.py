"""Shared API schemas."""

from confession_service.core.schemas.auth import AuthUser
from confession_service.core.schemas.error import ProblemDetail, ValidationError, ValidationProblemDetail

__all__ = [
    "AuthUser",
    "ProblemDetail",
    "ValidationError",
    "ValidationProblemDetail",
]
