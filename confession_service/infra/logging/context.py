"""Context propagation for structured logging.

A contextvars-backed dict is copied onto every LogRecord by
ContextInjectingFilter, so request ids, user ids and delivery job ids
show up in log output without being passed to each logging call. Each
asyncio task sees its own copy.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import Any

_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


def set_log_context(**kwargs: Any) -> None:
    """Add fields to the logging context of the current task.

    Example:
        set_log_context(job_id="0190...", notification_id="0190...")
        logger.info("Delivery attempt started")  # includes both ids
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def get_log_context() -> dict[str, Any]:
    """Return a copy of the current logging context."""
    return _log_context.get().copy()


def clear_log_context() -> None:
    """Drop every field from the current logging context.

    Long-running loops (the delivery worker) call this between jobs so one
    job's ids never leak into the next job's records.
    """
    _log_context.set({})


class ContextInjectingFilter(logging.Filter):
    """Logging filter that copies the current context onto each LogRecord.

    Attached to the root logger by configure_logging(); existing record
    attributes are never overwritten.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class ContextBoundLogger(logging.LoggerAdapter):
    """Logger adapter with permanently bound fields.

    Example:
        conn_logger = get_logger(__name__, connection_id=conn_id)
        conn_logger.info("Connection authenticated", extra={"user_id": user_id})
    """

    def __init__(self, logger: logging.Logger, **context: Any) -> None:
        super().__init__(logger, context)

    def bind(self, **context: Any) -> ContextBoundLogger:
        """Return a new logger with additional bound fields."""
        return ContextBoundLogger(self.logger, **{**self.extra, **context})

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = kwargs.get("extra", {})
        kwargs["extra"] = {**self.extra, **extra}
        return msg, kwargs


def get_logger(name: str, **context: Any) -> ContextBoundLogger:
    """Get a logger with bound context fields."""
    return ContextBoundLogger(logging.getLogger(name), **context)
