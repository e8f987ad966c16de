"""Structured logging for the confession service.

Example:
    from confession_service.infra.logging import get_logger, set_log_context

    logger = get_logger(__name__)
    set_log_context(user_id=user_id)
    logger.info("Notification created", extra={"notification_id": str(n.id)})
"""

from confession_service.infra.logging.config import (
    complete,
    configure_logging,
    setup_logging,
    shutdown,
)
from confession_service.infra.logging.context import (
    ContextBoundLogger,
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    get_logger,
    set_log_context,
)
from confession_service.infra.logging.formatters import JSONFormatter
from confession_service.infra.logging.lazy import LazyLoggerAdapter, get_lazy_logger

__all__ = [
    "ContextBoundLogger",
    "ContextInjectingFilter",
    "JSONFormatter",
    "LazyLoggerAdapter",
    "clear_log_context",
    "complete",
    "configure_logging",
    "get_lazy_logger",
    "get_log_context",
    "get_logger",
    "set_log_context",
    "setup_logging",
    "shutdown",
]
