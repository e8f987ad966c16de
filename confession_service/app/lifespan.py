"""Application lifespan management.

Startup Order:
1. Core (logging, application info metric)
2. Database (PostgreSQL, or the SQLite fallback)
3. Delivery queue (Redis or in-memory)
4. Taskiq broker - conditional on RabbitMQ configuration
5. Presence manager for the live channel - conditional on WS_ENABLED
6. In-process delivery worker - conditional on NOTIFY_WORKER_IN_PROCESS

Shutdown Order: Reverse of startup (what starts first, shuts down last)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from confession_service.core.settings import (
    get_app_settings,
    get_db_settings,
    get_logging_settings,
    get_notification_settings,
    get_websocket_settings,
)
from confession_service.infra.logging.config import setup_logging
from confession_service.infra.logging.config import shutdown as shutdown_logging
from confession_service.infra.metrics.prometheus import application_info

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

logger = logging.getLogger(__name__)


# =============================================================================
# Startup functions - organized by service
# =============================================================================


async def _startup_core() -> None:
    """Configure logging and publish the application info metric."""
    app = get_app_settings()

    setup_logging(log_settings=get_logging_settings(), force=True)
    logger.info(
        "Application starting",
        extra={"service": app.service_name, "environment": app.environment},
    )

    application_info.labels(
        version=app.version,
        service=app.service_name,
        environment=app.environment,
    ).set(1)


async def _startup_database() -> None:
    from confession_service.infra.database.session import init_database

    db = get_db_settings()
    if not db.is_configured:
        logger.warning("PostgreSQL not configured, using the SQLite fallback")
    await init_database()


async def _startup_queue() -> None:
    from confession_service.infra.queue import get_delivery_queue

    await get_delivery_queue().connect()
    logger.info("Delivery queue connected", extra={"backend": get_notification_settings().queue_backend})


async def _startup_tasks() -> None:
    from confession_service.infra.tasks import start_taskiq

    await start_taskiq()


async def _startup_websocket() -> None:
    from confession_service.infra.realtime import start_presence_manager

    if not get_websocket_settings().enabled:
        logger.info("Live notification channel disabled")
        return
    await start_presence_manager()


async def _startup_delivery_worker() -> None:
    from confession_service.features.notifications.delivery import start_delivery_worker

    if not get_notification_settings().worker_in_process:
        logger.info("In-process delivery worker disabled, expecting taskiq workers")
        return
    await start_delivery_worker()


# =============================================================================
# Shutdown functions
# =============================================================================


async def _shutdown_delivery_worker() -> None:
    from confession_service.features.notifications.delivery import stop_delivery_worker

    await stop_delivery_worker()


async def _shutdown_websocket() -> None:
    from confession_service.infra.realtime import stop_presence_manager

    await stop_presence_manager()


async def _shutdown_tasks() -> None:
    from confession_service.infra.tasks import stop_taskiq

    await stop_taskiq()


async def _shutdown_queue() -> None:
    from confession_service.infra.queue import get_delivery_queue

    await get_delivery_queue().disconnect()


async def _shutdown_database() -> None:
    from confession_service.infra.database.session import close_database

    await close_database()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start services in dependency order and stop them in reverse.

    Args:
        app: FastAPI application instance.

    Yields:
        None during application runtime.
    """
    _ = app

    await _startup_core()
    await _startup_database()
    await _startup_queue()
    await _startup_tasks()
    await _startup_websocket()
    await _startup_delivery_worker()

    app_settings = get_app_settings()
    logger.info(
        "Application startup complete - listening on %s:%s",
        app_settings.host,
        app_settings.port,
        extra={"service": app_settings.service_name, "version": app_settings.version},
    )

    try:
        yield
    finally:
        logger.info("Application shutting down")
        await _shutdown_delivery_worker()
        await _shutdown_websocket()
        await _shutdown_tasks()
        await _shutdown_queue()
        await _shutdown_database()
        logger.info("Application shutdown complete")
        shutdown_logging()
