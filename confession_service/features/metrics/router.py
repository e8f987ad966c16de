"""Prometheus metrics endpoint.

Endpoints:
    GET /metrics - Prometheus scrape endpoint

Metrics Exposed:
    - http_requests_total / http_request_duration_seconds - Request rate and latency
    - database_query_duration_seconds - Query execution time with exemplars
    - websocket_connections_total - Live notification connections
    - notification_* - Pipeline counters (created, suppressed, batched,
      delivery attempts, dead-lettered, replayed, template resolution)
    - taskiq_tasks_total - Background task execution counts
    - application_info - Service version, name, and environment labels
"""

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from confession_service.infra.metrics.prometheus import REGISTRY

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Expose the application registry in Prometheus text format."""
    data = generate_latest(REGISTRY)
    return Response(
        content=data,
        media_type=CONTENT_TYPE_LATEST,
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
    )
