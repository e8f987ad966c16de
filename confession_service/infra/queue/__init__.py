"""Delivery queue: interface, in-memory and Redis implementations."""

from confession_service.infra.queue.base import (
    DEDUPE_KEY_PREFIX,
    SEND_EMAIL_JOB,
    DeadLetterEntry,
    DeadLetterFilter,
    DeliveryJob,
    DeliveryQueue,
    JobState,
    QueueStats,
    ReplayAuditEntry,
    RetryPolicy,
    dedupe_key_for,
)
from confession_service.infra.queue.factory import (
    build_delivery_queue,
    get_delivery_queue,
    set_delivery_queue,
)
from confession_service.infra.queue.memory import InMemoryDeliveryQueue
from confession_service.infra.queue.redis import RedisDeliveryQueue

__all__ = [
    "DEDUPE_KEY_PREFIX",
    "SEND_EMAIL_JOB",
    "DeadLetterEntry",
    "DeadLetterFilter",
    "DeliveryJob",
    "DeliveryQueue",
    "InMemoryDeliveryQueue",
    "JobState",
    "QueueStats",
    "RedisDeliveryQueue",
    "ReplayAuditEntry",
    "RetryPolicy",
    "build_delivery_queue",
    "dedupe_key_for",
    "get_delivery_queue",
    "set_delivery_queue",
]
