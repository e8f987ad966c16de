"""Delivery queue selection from settings."""

from __future__ import annotations

import logging
from datetime import timedelta

from confession_service.core.settings import get_notification_settings, get_redis_settings
from confession_service.infra.queue.base import DeliveryQueue, RetryPolicy
from confession_service.infra.queue.memory import InMemoryDeliveryQueue
from confession_service.infra.queue.redis import RedisDeliveryQueue

logger = logging.getLogger(__name__)

_queue: DeliveryQueue | None = None


def build_delivery_queue() -> DeliveryQueue:
    """Build the queue configured by NOTIFY_QUEUE_BACKEND."""
    settings = get_notification_settings()
    policy = RetryPolicy(
        max_attempts=settings.max_attempts,
        base_delay_ms=settings.backoff_base_delay_ms,
    )
    common = {
        "retain_completed": settings.retain_completed,
        "lease_timeout": timedelta(seconds=settings.lease_timeout_seconds),
        "dedupe_ttl": timedelta(seconds=settings.dedupe_ttl_seconds),
    }

    if settings.queue_backend == "redis":
        redis_settings = get_redis_settings()
        logger.info(
            "Using Redis delivery queue",
            extra={"queue_name": settings.queue_name},
        )
        return RedisDeliveryQueue(
            policy,
            redis_url=redis_settings.get_url(),
            key_prefix=redis_settings.get_prefixed_key(f"{settings.queue_name}:"),
            pool_kwargs=redis_settings.connection_pool_kwargs(),
            **common,
        )

    logger.info("Using in-memory delivery queue", extra={"queue_name": settings.queue_name})
    return InMemoryDeliveryQueue(policy, **common)


def get_delivery_queue() -> DeliveryQueue:
    """Get the process-wide delivery queue."""
    global _queue
    if _queue is None:
        _queue = build_delivery_queue()
    return _queue


def set_delivery_queue(queue: DeliveryQueue | None) -> None:
    """Replace the process-wide queue (tests, custom wiring)."""
    global _queue
    _queue = queue
