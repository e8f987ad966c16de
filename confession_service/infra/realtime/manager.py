"""Per-user WebSocket presence with optional Redis PubSub fan-out.

Connections are grouped by user id. A user is online while their group is
non-empty; empty groups are removed on disconnect.

The manager supports two modes:
1. Local-only: pushes reach connections on this instance
2. Redis PubSub: pushes are published once and every instance delivers to
   its own local connections
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from confession_service.core.settings import get_redis_settings, get_websocket_settings
from confession_service.infra.metrics.prometheus import (
    websocket_connection_duration_seconds,
    websocket_connections_total,
    websocket_messages_sent_total,
)

if TYPE_CHECKING:
    from fastapi import WebSocket
    from redis.asyncio import Redis
    from redis.asyncio.client import PubSub

logger = logging.getLogger(__name__)

PUBSUB_CHANNEL = "ws:notifications"


@dataclass
class ConnectionInfo:
    """Metadata about an authenticated WebSocket connection."""

    connection_id: str
    websocket: WebSocket
    user_id: str
    connected_at: float = field(default_factory=time.time)


class PresenceManager:
    """Tracks live connections per user and pushes events to them.

    Example:
        manager = get_presence_manager()
        connection_id = await manager.connect(websocket, user_id)
        try:
            ...
        finally:
            await manager.disconnect(connection_id)

        await manager.send_to_user(user_id, {"event": "unread-count", "data": {"count": 3}})
    """

    def __init__(self, redis_client: Redis | None = None) -> None:
        self._redis = redis_client
        self._settings = get_websocket_settings()

        # connection_id -> ConnectionInfo
        self._connections: dict[str, ConnectionInfo] = {}
        # user_id -> set of connection_ids
        self._user_connections: dict[str, set[str]] = defaultdict(set)

        self._pubsub: PubSub | None = None
        self._listener_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._running = False

    async def start(self) -> None:
        """Start the PubSub listener (when Redis is configured) and heartbeat."""
        if self._running:
            return
        self._running = True

        if self._redis is not None:
            self._pubsub = self._redis.pubsub()
            await self._pubsub.subscribe(PUBSUB_CHANNEL)
            self._listener_task = asyncio.create_task(self._pubsub_listener())
            logger.info("Presence manager started with Redis PubSub")
        else:
            logger.info("Presence manager started in local-only mode")

        if self._settings.heartbeat_interval > 0:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def stop(self) -> None:
        """Stop background tasks and close all connections."""
        self._running = False

        for task in (self._heartbeat_task, self._listener_task):
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._heartbeat_task = None
        self._listener_task = None

        if self._pubsub is not None:
            await self._pubsub.unsubscribe(PUBSUB_CHANNEL)
            await self._pubsub.aclose()
            self._pubsub = None

        closed = len(self._connections)
        for conn_info in list(self._connections.values()):
            with contextlib.suppress(RuntimeError, ConnectionError):
                await conn_info.websocket.close(code=1001, reason="Server shutdown")
        self._connections.clear()
        self._user_connections.clear()
        websocket_connections_total.set(0)

        logger.info("Presence manager stopped", extra={"connections_closed": closed})

    async def connect(self, websocket: WebSocket, user_id: str) -> str:
        """Accept an authenticated connection and join it to the user's group.

        Raises:
            ConnectionRefusedError: If a global or per-user limit is reached.
        """
        if len(self._connections) >= self._settings.max_connections:
            raise ConnectionRefusedError("Maximum connections reached")
        if len(self._user_connections.get(user_id, ())) >= self._settings.max_connections_per_user:
            raise ConnectionRefusedError("Maximum connections per user reached")

        await websocket.accept()

        connection_id = str(uuid4())
        self._connections[connection_id] = ConnectionInfo(
            connection_id=connection_id,
            websocket=websocket,
            user_id=user_id,
        )
        self._user_connections[user_id].add(connection_id)
        websocket_connections_total.set(len(self._connections))

        logger.info(
            "WebSocket connected",
            extra={
                "connection_id": connection_id,
                "user_id": user_id,
                "total_connections": len(self._connections),
            },
        )
        return connection_id

    async def disconnect(self, connection_id: str) -> None:
        """Remove a connection; drop the user's group when it becomes empty."""
        conn_info = self._connections.pop(connection_id, None)
        if conn_info is None:
            return

        group = self._user_connections.get(conn_info.user_id)
        if group is not None:
            group.discard(connection_id)
            if not group:
                del self._user_connections[conn_info.user_id]

        with contextlib.suppress(RuntimeError, ConnectionError):
            await conn_info.websocket.close()

        duration = time.time() - conn_info.connected_at
        websocket_connections_total.set(len(self._connections))
        websocket_connection_duration_seconds.observe(duration)

        logger.info(
            "WebSocket disconnected",
            extra={
                "connection_id": connection_id,
                "user_id": conn_info.user_id,
                "duration_seconds": duration,
                "total_connections": len(self._connections),
            },
        )

    def is_online(self, user_id: str) -> bool:
        """Whether the user has at least one live connection on this instance."""
        return bool(self._user_connections.get(user_id))

    def user_connection_ids(self, user_id: str) -> set[str]:
        return set(self._user_connections.get(user_id, ()))

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def online_user_count(self) -> int:
        return len(self._user_connections)

    async def send_to_connection(self, connection_id: str, message: dict[str, Any]) -> bool:
        """Send to one connection. Dead connections are removed."""
        conn_info = self._connections.get(connection_id)
        if conn_info is None:
            return False

        try:
            await conn_info.websocket.send_json(message)
        except (RuntimeError, ConnectionError) as e:
            logger.warning(
                "Failed to send message to connection",
                extra={"connection_id": connection_id, "error": str(e)},
            )
            await self.disconnect(connection_id)
            return False

        websocket_messages_sent_total.labels(message_type=message.get("event", "unknown")).inc()
        return True

    async def send_to_user(self, user_id: str, message: dict[str, Any]) -> int:
        """Push a message to every connection of a user.

        With Redis configured the message is published and delivered by each
        instance's listener; the return value is then 0.

        Returns:
            Number of local connections the message was sent to.
        """
        if self._redis is not None:
            await self._redis.publish(
                PUBSUB_CHANNEL,
                json.dumps({"user_id": user_id, "message": message}, default=str),
            )
            return 0
        return await self._send_local(user_id, message)

    async def _send_local(self, user_id: str, message: dict[str, Any]) -> int:
        count = 0
        for connection_id in self.user_connection_ids(user_id):
            if await self.send_to_connection(connection_id, message):
                count += 1
        return count

    async def _pubsub_listener(self) -> None:
        """Deliver published messages to local connections."""
        assert self._pubsub is not None
        try:
            async for raw in self._pubsub.listen():
                if raw.get("type") != "message":
                    continue
                try:
                    envelope = json.loads(raw["data"])
                except (TypeError, ValueError):
                    logger.warning("Discarding malformed PubSub message")
                    continue
                await self._send_local(envelope["user_id"], envelope["message"])
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("PubSub listener error", extra={"error": str(e)})

    async def _heartbeat_loop(self) -> None:
        """Ping every connection; sends that fail remove the connection."""
        while self._running:
            await asyncio.sleep(self._settings.heartbeat_interval)
            for connection_id in list(self._connections):
                await self.send_to_connection(connection_id, {"event": "ping"})


_manager: PresenceManager | None = None


def get_presence_manager() -> PresenceManager:
    """Get the global presence manager.

    A local-only manager is created on first use when start_presence_manager()
    has not run (tests, scripts).
    """
    global _manager
    if _manager is None:
        _manager = PresenceManager()
    return _manager


async def start_presence_manager() -> PresenceManager:
    """Create and start the global manager, using Redis PubSub when configured."""
    global _manager

    redis_settings = get_redis_settings()
    redis_client = None

    if redis_settings.is_configured:
        from redis.asyncio import ConnectionPool, Redis
        from redis.exceptions import RedisError

        pool = ConnectionPool.from_url(
            redis_settings.get_url(),
            **redis_settings.connection_pool_kwargs(),
        )
        redis_client = Redis(connection_pool=pool)
        try:
            await redis_client.ping()
        except (RedisError, OSError) as e:
            logger.warning(
                "Failed to connect to Redis for presence PubSub, using local-only mode",
                extra={"error": str(e)},
            )
            await redis_client.aclose()
            redis_client = None

    _manager = PresenceManager(redis_client=redis_client)
    await _manager.start()
    return _manager


async def stop_presence_manager() -> None:
    """Stop and drop the global manager."""
    global _manager
    if _manager is not None:
        await _manager.stop()
        _manager = None
