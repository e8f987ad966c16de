"""Prometheus metrics for the notification pipeline.

Usage:
    from confession_service.features.notifications.metrics import (
        notification_created_total,
        notification_delivery_attempts_total,
    )

    notification_created_total.labels(kind="new_message").inc()
    notification_delivery_attempts_total.labels(outcome="sent").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

from confession_service.infra.metrics.prometheus import REGISTRY

# =============================================================================
# Gate
# =============================================================================

notification_created_total = Counter(
    "notification_created_total",
    "Total number of notifications created",
    labelnames=["kind"],
    registry=REGISTRY,
)
"""
Labels:
    kind: new_message, message_batch, system
"""

notification_suppressed_total = Counter(
    "notification_suppressed_total",
    "Total number of inbound events dropped by the preference gate",
    labelnames=["kind", "reason"],
    registry=REGISTRY,
)
"""
Labels:
    kind: Event kind
    reason: in_app_disabled, kind_disabled, quiet_hours
"""

notification_batched_total = Counter(
    "notification_batched_total",
    "Total number of unread message notifications absorbed into a batch",
    registry=REGISTRY,
)

notification_read_total = Counter(
    "notification_read_total",
    "Total number of notifications marked as read by users",
    labelnames=["source"],
    registry=REGISTRY,
)
"""
Labels:
    source: api, websocket
"""

# =============================================================================
# Delivery
# =============================================================================

notification_enqueued_total = Counter(
    "notification_email_enqueued_total",
    "Total number of email delivery jobs enqueued",
    labelnames=["source"],
    registry=REGISTRY,
)
"""
Labels:
    source: gate, replay
"""

notification_delivery_attempts_total = Counter(
    "notification_delivery_attempts_total",
    "Delivery attempts by outcome",
    labelnames=["outcome"],
    registry=REGISTRY,
)
"""
Labels:
    outcome: sent, already_sent, dropped, failed
"""

notification_delivery_duration_seconds = Histogram(
    "notification_delivery_duration_seconds",
    "Duration of a single delivery attempt",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
    registry=REGISTRY,
)

notification_dead_lettered_total = Counter(
    "notification_dead_lettered_total",
    "Delivery jobs moved to the dead-letter store after exhausting retries",
    registry=REGISTRY,
)

notification_replayed_total = Counter(
    "notification_replayed_total",
    "Dead-letter jobs replayed by operators",
    labelnames=["mode"],
    registry=REGISTRY,
)
"""
Labels:
    mode: single, bulk
"""

notification_queue_jobs = Gauge(
    "notification_queue_jobs",
    "Delivery jobs currently held by the queue, by state",
    labelnames=["state"],
    registry=REGISTRY,
)
"""
Labels:
    state: pending, delayed, active, completed, dead_lettered
"""

# =============================================================================
# Templates and live channel
# =============================================================================

notification_template_resolved_total = Counter(
    "notification_template_resolved_total",
    "Template version resolutions by key and canary flag",
    labelnames=["template_key", "version", "is_canary"],
    registry=REGISTRY,
)

notification_pushed_total = Counter(
    "notification_pushed_total",
    "Live-channel events pushed to connected users",
    labelnames=["event"],
    registry=REGISTRY,
)
