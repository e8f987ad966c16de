"""Taskiq middleware recording Prometheus metrics for task executions."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from taskiq import TaskiqMiddleware

from confession_service.infra.metrics.prometheus import (
    taskiq_task_duration_seconds,
    taskiq_tasks_total,
)

if TYPE_CHECKING:
    from taskiq import TaskiqMessage, TaskiqResult

logger = logging.getLogger(__name__)


class MetricsMiddleware(TaskiqMiddleware):
    """Record task counts and durations in the application registry.

    Metrics recorded:
    - taskiq_tasks_total: Counter with labels [task_name, status]
    - taskiq_task_duration_seconds: Histogram with labels [task_name]

    They are exposed on the API's /metrics endpoint; worker processes expose
    nothing on their own.
    """

    def __init__(self) -> None:
        super().__init__()
        self._start_times: dict[str, float] = {}

    async def pre_execute(self, message: TaskiqMessage) -> TaskiqMessage:
        self._start_times[message.task_id] = time.perf_counter()
        return message

    async def post_execute(self, message: TaskiqMessage, result: TaskiqResult[Any]) -> None:
        start_time = self._start_times.pop(message.task_id, None)
        duration_seconds = None
        if start_time is not None:
            duration_seconds = time.perf_counter() - start_time
            taskiq_task_duration_seconds.labels(task_name=message.task_name).observe(duration_seconds)

        status = "failure" if result.is_err else "success"
        taskiq_tasks_total.labels(task_name=message.task_name, status=status).inc()

        logger.debug(
            "Task metrics recorded",
            extra={
                "task_id": message.task_id,
                "task_name": message.task_name,
                "status": status,
                "duration_seconds": duration_seconds,
            },
        )
