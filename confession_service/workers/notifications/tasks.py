"""Notification delivery task definitions.

This module provides:
- On-demand draining of ready delivery jobs
- Periodic recovery of stalled jobs (expired leases)
- Periodic queue statistics logging
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from confession_service.features.notifications.dead_letter import get_dead_letter_service
from confession_service.features.notifications.delivery import get_delivery_worker
from confession_service.infra.logging import get_logger
from confession_service.infra.queue import get_delivery_queue
from confession_service.infra.tasks.broker import broker

logger = get_logger(__name__, component="notification-tasks")


if broker is not None:

    @broker.task(retry_on_error=True, max_retries=3)
    async def drain_delivery_queue(max_jobs: int = 100) -> dict[str, int]:
        """Process up to ``max_jobs`` ready delivery jobs sequentially.

        Useful to catch up after an outage without waiting for the polling
        loops of the running workers.

        Example:
            task = await drain_delivery_queue.kiq(max_jobs=500)
            result = await task.wait_result()
            # {'processed': 42}
        """
        processed = await get_delivery_worker().drain(max_jobs=max_jobs)
        logger.info("Drained delivery queue", extra={"processed": processed})
        return {"processed": processed}

    @broker.task(schedule=[{"cron": "*/5 * * * *"}])
    async def recover_stalled_deliveries() -> dict[str, int]:
        """Return jobs with expired leases to the queue.

        Scheduled: every 5 minutes.
        """
        recovered = await get_delivery_queue().recover_stalled()
        if recovered:
            logger.warning("Recovered stalled delivery jobs", extra={"count": recovered})
        return {"recovered": recovered}

    @broker.task(schedule=[{"cron": "* * * * *"}])
    async def report_queue_stats() -> dict[str, Any]:
        """Log delivery queue counts per state.

        Scheduled: every minute.
        """
        stats = asdict(await get_dead_letter_service().stats())
        logger.info("Delivery queue stats", extra=stats)
        return stats
