"""Taskiq broker for out-of-process delivery workers."""

from confession_service.infra.tasks.broker import broker, start_taskiq, stop_taskiq

__all__ = ["broker", "start_taskiq", "stop_taskiq"]
