"""Realtime presence: per-user WebSocket connection groups."""

from confession_service.infra.realtime.manager import (
    ConnectionInfo,
    PresenceManager,
    get_presence_manager,
    start_presence_manager,
    stop_presence_manager,
)

__all__ = [
    "ConnectionInfo",
    "PresenceManager",
    "get_presence_manager",
    "start_presence_manager",
    "stop_presence_manager",
]
