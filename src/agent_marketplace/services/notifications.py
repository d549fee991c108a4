"""Notification Hub — best-effort WebSocket fan-out.

Every committed state change is pushed to all currently open subscriber
connections as `{"type": ..., "data": ..., "timestamp": <epoch ms>}`.
There is no queue, no retry and no replay: a subscriber that is not
connected when a notification is sent simply misses it.
"""

from __future__ import annotations

import json
import time
from typing import Any, Protocol

from starlette.websockets import WebSocketState

from agent_marketplace.domain.enums import NotificationType
from agent_marketplace.logging_config import get_logger

logger = get_logger(__name__)


class Subscriber(Protocol):
    """The slice of a Starlette WebSocket the hub relies on."""

    client_state: WebSocketState
    application_state: WebSocketState

    async def send_text(self, data: str) -> None: ...


def now_ms() -> int:
    return int(time.time() * 1000)


def build_notification(kind: NotificationType | str, data: Any) -> dict[str, Any]:
    return {"type": str(kind), "data": data, "timestamp": now_ms()}


def is_open(connection: Subscriber) -> bool:
    return (
        connection.client_state == WebSocketState.CONNECTED
        and connection.application_state == WebSocketState.CONNECTED
    )


class NotificationHub:
    """Tracks live subscriber connections and broadcasts notifications to them."""

    def __init__(self) -> None:
        self._connections: set[Subscriber] = set()

    @property
    def client_count(self) -> int:
        return len(self._connections)

    def register(self, connection: Subscriber) -> None:
        self._connections.add(connection)
        logger.info("ws.client_connected", total_clients=self.client_count)

    def unregister(self, connection: Subscriber) -> None:
        if connection in self._connections:
            self._connections.discard(connection)
            logger.info("ws.client_disconnected", total_clients=self.client_count)

    async def broadcast(self, notification: dict[str, Any]) -> int:
        """Send a notification to every open connection.

        Connections that are not open are skipped; a connection whose send
        fails is dropped from the set. Returns the number of deliveries.
        """
        payload = json.dumps(notification, default=str)
        delivered = 0

        for connection in list(self._connections):
            if not is_open(connection):
                continue
            try:
                await connection.send_text(payload)
            except Exception as exc:
                self._connections.discard(connection)
                logger.warning(
                    "ws.send_failed",
                    error=str(exc),
                    notification_type=notification.get("type"),
                )
                continue
            delivered += 1

        logger.debug(
            "ws.broadcast",
            notification_type=notification.get("type"),
            delivered=delivered,
        )
        return delivered

    async def notify(self, kind: NotificationType, data: Any) -> int:
        return await self.broadcast(build_notification(kind, data))
