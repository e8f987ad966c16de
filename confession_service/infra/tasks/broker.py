"""Taskiq broker configuration for out-of-process delivery workers.

The API process runs the delivery loop in-process by default
(``NOTIFY_WORKER_IN_PROCESS=true``). Deployments that scale delivery
separately disable that and run dedicated workers instead:

    taskiq worker confession_service.infra.tasks.broker:broker
    taskiq scheduler confession_service.infra.tasks.broker:scheduler

Each worker process starts a DeliveryWorker on startup, so every process
leases from the shared Redis delivery queue. The scheduler triggers stalled
job recovery and queue statistics on a cron schedule.

The broker is only created when RabbitMQ is configured; otherwise ``broker``
is ``None`` and no tasks are registered.

Middleware order matters:
1. SimpleRetryMiddleware - handles retry_on_error=True on tasks (must be first)
2. MetricsMiddleware - records Prometheus metrics for every attempt
"""

from __future__ import annotations

import logging

from taskiq import TaskiqEvents, TaskiqScheduler, TaskiqState
from taskiq.middlewares import SimpleRetryMiddleware
from taskiq.schedule_sources import LabelScheduleSource
from taskiq_aio_pika import AioPikaBroker

from confession_service.core.settings import get_notification_settings, get_rabbit_settings
from confession_service.infra.logging.config import setup_logging
from confession_service.infra.tasks.middleware import MetricsMiddleware

logger = logging.getLogger(__name__)

rabbit_settings = get_rabbit_settings()
setup_logging()

TASK_QUEUE = "delivery-tasks"

broker: AioPikaBroker | None = None
scheduler: TaskiqScheduler | None = None

if rabbit_settings.is_configured:
    broker = AioPikaBroker(
        url=rabbit_settings.get_url(),
        queue_name=rabbit_settings.get_prefixed_queue(TASK_QUEUE),
        declare_exchange=True,
        declare_queues=True,
    ).with_middlewares(
        SimpleRetryMiddleware(default_retry_count=3),
        MetricsMiddleware(),
    )
    scheduler = TaskiqScheduler(broker=broker, sources=[LabelScheduleSource(broker)])

    logger.info(
        "Taskiq broker configured",
        extra={"queue": rabbit_settings.get_prefixed_queue(TASK_QUEUE)},
    )

    @broker.on_event(TaskiqEvents.WORKER_STARTUP)
    async def _start_delivery(state: TaskiqState) -> None:
        """Connect storage and start the delivery loop in the worker process."""
        from confession_service.features.notifications.delivery import start_delivery_worker
        from confession_service.infra.database.session import init_database
        from confession_service.infra.queue import get_delivery_queue

        await init_database()
        await get_delivery_queue().connect()
        state.delivery_worker = await start_delivery_worker()
        logger.info(
            "Delivery worker started in taskiq worker",
            extra={"concurrency": get_notification_settings().worker_concurrency},
        )

    @broker.on_event(TaskiqEvents.WORKER_SHUTDOWN)
    async def _stop_delivery(state: TaskiqState) -> None:
        from confession_service.features.notifications.delivery import stop_delivery_worker
        from confession_service.infra.database.session import close_database
        from confession_service.infra.queue import get_delivery_queue

        await stop_delivery_worker()
        await get_delivery_queue().disconnect()
        await close_database()
        logger.info("Delivery worker stopped in taskiq worker")


async def start_taskiq() -> None:
    """Start the broker for enqueuing tasks from the API process.

    Raises:
        ConnectionError: If RabbitMQ cannot be reached.
    """
    if broker is None:
        logger.info("Taskiq broker not configured, skipping startup")
        return

    logger.info("Starting Taskiq broker")
    try:
        await broker.startup()
    except Exception as e:
        logger.exception("Failed to start Taskiq broker", extra={"error": str(e)})
        raise
    logger.info("Taskiq broker started successfully")


async def stop_taskiq() -> None:
    if broker is None:
        return

    logger.info("Stopping Taskiq broker")
    try:
        await broker.shutdown()
    except Exception as e:
        logger.exception("Error stopping Taskiq broker", extra={"error": str(e)})


# Register task modules so `taskiq worker` discovers them.
if broker is not None:
    import confession_service.workers.notifications.tasks  # noqa: F401
