"""Notification pipeline settings.

Covers the batching defaults applied to new preference records, the
delivery queue retry policy, the worker loop, and template rollouts.

Environment variables use NOTIFY_ prefix.
Example: NOTIFY_QUEUE_BACKEND=redis, NOTIFY_MAX_ATTEMPTS=5
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TemplateRolloutPolicy(BaseModel):
    """Rollout policy for a single template key."""

    model_config = ConfigDict(frozen=True)

    active_version: str = Field(min_length=1)
    canary_version: str | None = None
    canary_percent: float = Field(default=0, ge=0, le=100)


class NotificationSettings(BaseSettings):
    """Notification delivery and reliability configuration."""

    # ──────────────────────────────────────────────────────────────
    # Preference defaults
    # ──────────────────────────────────────────────────────────────

    default_batch_window_minutes: int = Field(
        default=5,
        ge=1,
        le=60,
        description="Batch window applied to newly created preference records",
    )

    default_batch_threshold: int = Field(
        default=3,
        ge=2,
        le=20,
        description="Batch threshold applied to newly created preference records",
    )

    # ──────────────────────────────────────────────────────────────
    # Delivery queue and retry policy
    # ──────────────────────────────────────────────────────────────

    queue_backend: Literal["redis", "memory"] = Field(
        default="memory",
        description="Delivery queue implementation (redis for production, memory for dev/tests)",
    )

    queue_name: str = Field(
        default="notifications",
        min_length=1,
        max_length=100,
        pattern=r"^[a-zA-Z0-9_-]+$",
        description="Logical queue name used in Redis keys",
    )

    max_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Attempt budget per delivery job before it is dead-lettered",
    )

    backoff_base_delay_ms: int = Field(
        default=2000,
        ge=0,
        le=600_000,
        description="Base delay for the exponential backoff between attempts",
    )

    retain_completed: int = Field(
        default=500,
        ge=0,
        le=100_000,
        description="Number of most recent completed jobs kept for observability",
    )

    lease_timeout_seconds: float = Field(
        default=300.0,
        ge=1.0,
        le=3600.0,
        description="Active jobs older than this are considered stalled and returned to the queue",
    )

    dedupe_ttl_seconds: int = Field(
        default=3600,
        ge=1,
        le=604_800,
        description="TTL of enqueue idempotency keys",
    )

    # ──────────────────────────────────────────────────────────────
    # Worker loop
    # ──────────────────────────────────────────────────────────────

    worker_in_process: bool = Field(
        default=True,
        description="Run the delivery worker loop inside the API process",
    )

    worker_poll_interval: float = Field(
        default=0.5,
        gt=0,
        le=60.0,
        description="Seconds to sleep when no delivery job is ready",
    )

    worker_concurrency: int = Field(
        default=4,
        ge=1,
        le=100,
        description="Maximum delivery jobs processed concurrently by one worker",
    )

    # ──────────────────────────────────────────────────────────────
    # Template rollouts
    # ──────────────────────────────────────────────────────────────

    template_rollouts: dict[str, TemplateRolloutPolicy] = Field(
        default_factory=dict,
        description=(
            "Rollout policy per template key (JSON). Example: "
            '{"new_message": {"active_version": "v1", "canary_version": "v2", "canary_percent": 10}}'
        ),
    )

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @model_validator(mode="after")
    def validate_canary_versions(self) -> NotificationSettings:
        """A canary percentage without a canary version is a configuration mistake."""
        for key, policy in self.template_rollouts.items():
            if policy.canary_percent > 0 and not policy.canary_version:
                msg = f"template rollout '{key}' sets canary_percent without canary_version"
                raise ValueError(msg)
        return self

    @property
    def backoff_base_delay_seconds(self) -> float:
        """Base backoff delay in seconds."""
        return self.backoff_base_delay_ms / 1000
