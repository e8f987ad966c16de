"""Health check API endpoints.

- Liveness probes: /health/live - Is the process alive?
- Readiness probes: /health/ready - Are the database and delivery queue reachable?
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Response, status
from sqlalchemy import text

from confession_service.core.settings import get_app_settings
from confession_service.features.health.schemas import LivenessResponse, ReadinessResponse
from confession_service.infra.database.session import engine
from confession_service.infra.queue import get_delivery_queue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


async def _check_database() -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Database readiness check failed", extra={"error": str(e)})
        return False
    return True


async def _check_queue() -> bool:
    try:
        await get_delivery_queue().stats()
    except Exception as e:
        logger.warning("Delivery queue readiness check failed", extra={"error": str(e)})
        return False
    return True


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    status_code=status.HTTP_200_OK,
    responses={503: {"description": "Service not ready to accept traffic"}},
    summary="Readiness probe (Kubernetes)",
)
async def readiness_check(response: Response) -> ReadinessResponse:
    """Report whether the database and the delivery queue are reachable.

    Returns HTTP 503 when any check fails, so the pod is taken out of
    rotation until its dependencies recover.
    """
    checks = {"database": await _check_database(), "queue": await _check_queue()}
    ready = all(checks.values())
    if not ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return ReadinessResponse(ready=ready, checks=checks, timestamp=datetime.now(UTC))


@router.get(
    "/live",
    response_model=LivenessResponse,
    summary="Liveness probe (Kubernetes)",
)
async def liveness_check() -> LivenessResponse:
    return LivenessResponse(
        alive=True,
        timestamp=datetime.now(UTC),
        service=get_app_settings().service_name,
    )
