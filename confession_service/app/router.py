"""Router registry and setup."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from confession_service.core.settings import get_app_settings, get_websocket_settings
from confession_service.features.health.router import router as health_router
from confession_service.features.metrics.router import router as metrics_router
from confession_service.features.notifications import admin_router as notifications_admin_router
from confession_service.features.notifications import gateway_router
from confession_service.features.notifications import router as notifications_router

if TYPE_CHECKING:
    from fastapi import FastAPI

    from confession_service.core.settings.app import AppSettings
    from confession_service.core.settings.websocket import WebSocketSettings

logger = logging.getLogger(__name__)


def setup_routers(
    app: FastAPI,
    app_settings: AppSettings | None = None,
    websocket_settings: WebSocketSettings | None = None,
) -> None:
    """Register all feature routers with the application.

    Args:
        app: FastAPI application instance.
        app_settings: Optional application settings override for the API prefix.
        websocket_settings: Optional override for the live channel toggle.
    """
    app_settings = app_settings or get_app_settings()
    websocket_settings = websocket_settings or get_websocket_settings()

    api_prefix = app_settings.api_prefix

    # Metrics endpoint (no prefix - accessible at /metrics)
    app.include_router(metrics_router)

    app.include_router(notifications_router, prefix=api_prefix)
    app.include_router(notifications_admin_router, prefix=api_prefix)
    app.include_router(health_router, prefix=api_prefix)

    if websocket_settings.enabled:
        app.include_router(gateway_router)
        logger.info("Live notification channel registered at %s", websocket_settings.path)

    logger.info(
        "Router setup complete",
        extra={"api_prefix": api_prefix, "websocket_enabled": websocket_settings.enabled},
    )
