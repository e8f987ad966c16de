"""Custom exception classes for the application."""

from __future__ import annotations

from typing import Any


class AppException(Exception):
    """Base application exception.

    All custom exceptions should inherit from this class.
    Follows RFC 7807 Problem Details for HTTP APIs.

    Attributes:
        status_code: HTTP status code for the error.
        detail: Human-readable error message.
        type: Error type identifier (used in RFC 7807 problem details).
        title: Short, human-readable summary of the problem type.
        instance: URI reference that identifies the specific occurrence of the problem.
        extra: Additional context-specific information about the error.

    Example:
        raise AppException(
            status_code=404,
            detail="Dead-letter job abc123 not found",
            type="dead-letter-job-not-found",
            extra={"job_id": "abc123"},
        )
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        type: str = "about:blank",
        title: str | None = None,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Initialize application exception.

        Args:
            status_code: HTTP status code.
            detail: Human-readable error message.
            type: Error type identifier.
            title: Short summary of the problem type.
            instance: URI reference identifying this specific occurrence.
            extra: Additional context about the error.
        """
        self.status_code = status_code
        self.detail = detail
        self.type = type
        self.title = title or self._default_title(status_code)
        self.instance = instance
        self.extra = extra or {}
        super().__init__(detail)

    @staticmethod
    def _default_title(status_code: int) -> str:
        """Get default title for HTTP status code."""
        titles = {
            400: "Bad Request",
            401: "Unauthorized",
            403: "Forbidden",
            404: "Not Found",
            409: "Conflict",
            422: "Unprocessable Entity",
            500: "Internal Server Error",
            503: "Service Unavailable",
        }
        return titles.get(status_code, "Error")


class NotFoundException(AppException):
    """Exception raised when a resource is not found.

    Example:
        raise NotFoundException(
            detail="Notification 0190... not found",
            type="notification-not-found",
            extra={"notification_id": "0190..."},
        )
    """

    def __init__(
        self,
        detail: str,
        type: str = "not-found",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=404,
            detail=detail,
            type=type,
            title="Not Found",
            instance=instance,
            extra=extra,
        )


class ValidationException(AppException):
    """Exception raised for validation errors.

    Example:
        raise ValidationException(
            detail="failedAfter must be earlier than failedBefore",
            extra={"field": "failedAfter"},
        )
    """

    def __init__(
        self,
        detail: str,
        type: str = "validation-error",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=422,
            detail=detail,
            type=type,
            title="Validation Error",
            instance=instance,
            extra=extra,
        )


class UnauthorizedException(AppException):
    """Exception raised for authentication failures."""

    def __init__(
        self,
        detail: str,
        type: str = "unauthorized",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=401,
            detail=detail,
            type=type,
            title="Unauthorized",
            instance=instance,
            extra=extra,
        )


class ForbiddenException(AppException):
    """Exception raised for authorization failures."""

    def __init__(
        self,
        detail: str,
        type: str = "forbidden",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=403,
            detail=detail,
            type=type,
            title="Forbidden",
            instance=instance,
            extra=extra,
        )


class ConflictException(AppException):
    """Exception raised when a request conflicts with current state."""

    def __init__(
        self,
        detail: str,
        type: str = "conflict",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=409,
            detail=detail,
            type=type,
            title="Conflict",
            instance=instance,
            extra=extra,
        )


class InternalServerException(AppException):
    """Exception raised for internal server errors."""

    def __init__(
        self,
        detail: str,
        type: str = "internal-error",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=500,
            detail=detail,
            type=type,
            title="Internal Server Error",
            instance=instance,
            extra=extra,
        )


class TemplateConfigurationError(InternalServerException):
    """Raised when a template key or version is missing from the registry.

    Inside the delivery worker this is treated like any other send failure,
    so it consumes the job's retry budget before the job is dead-lettered.

    Example:
        raise TemplateConfigurationError(
            "Template version 'v99' not found for key 'new_message'",
            template_key="new_message",
            version="v99",
        )
    """

    def __init__(
        self,
        detail: str,
        template_key: str,
        version: str | None = None,
    ) -> None:
        self.template_key = template_key
        self.version = version
        extra: dict[str, Any] = {"template_key": template_key}
        if version is not None:
            extra["version"] = version
        super().__init__(detail=detail, type="template-configuration-error", extra=extra)


# ============================================================================
# Authentication Exceptions
# ============================================================================


class MissingAuthenticationError(UnauthorizedException):
    """Exception raised when authentication credentials are missing."""

    def __init__(
        self,
        detail: str = "Authentication credentials required",
        instance: str | None = None,
    ) -> None:
        super().__init__(
            detail=detail,
            type="missing-authentication",
            instance=instance,
        )


class TokenInvalidError(UnauthorizedException):
    """Exception raised when a bearer token cannot be verified."""

    def __init__(
        self,
        detail: str = "Invalid token",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            detail=detail,
            type="token-invalid",
            instance=instance,
            extra=extra,
        )


class InsufficientPermissionsError(ForbiddenException):
    """Exception raised when the caller lacks the required role.

    Example:
        raise InsufficientPermissionsError("admin", ["user"])
    """

    def __init__(self, required_role: str, user_roles: list[str] | None = None) -> None:
        super().__init__(
            detail=f"Role '{required_role}' required",
            type="insufficient-permissions",
            extra={"required_role": required_role, "user_roles": user_roles or []},
        )
