"""Health check response schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class ReadinessResponse(BaseModel):
    """Readiness probe response. Served with 503 when not ready."""

    ready: bool = Field(description="Overall readiness status")
    checks: dict[str, bool] = Field(default_factory=dict, description="Individual dependency checks")
    timestamp: datetime = Field(description="Check timestamp")


class LivenessResponse(BaseModel):
    alive: bool = Field(description="Liveness status")
    timestamp: datetime = Field(description="Check timestamp")
    service: str = Field(min_length=1, max_length=100, description="Service name")
