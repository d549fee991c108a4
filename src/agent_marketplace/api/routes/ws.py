"""WebSocket endpoint for live marketplace notifications.

Clients receive a `connected` welcome message followed by every
notification broadcast by the hub. The only client message with meaning
is `{"type": "ping"}`, answered with `{"type": "pong", "timestamp": ...}`.
"""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from agent_marketplace.api.deps import get_notification_hub
from agent_marketplace.logging_config import get_logger
from agent_marketplace.services.notifications import NotificationHub, now_ms

router = APIRouter(tags=["WebSocket"])
logger = get_logger(__name__)


@router.websocket("/ws")
async def notifications_socket(
    websocket: WebSocket,
    hub: NotificationHub = Depends(get_notification_hub),
) -> None:
    await websocket.accept()
    hub.register(websocket)
    try:
        await websocket.send_text(
            json.dumps(
                {
                    "type": "connected",
                    "message": "Connected to Agent Marketplace WebSocket",
                    "timestamp": now_ms(),
                }
            )
        )
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                logger.warning("ws.malformed_message", size=len(raw))
                continue

            logger.debug("ws.message_received", message_type=_message_type(message))
            if _message_type(message) == "ping":
                await websocket.send_text(json.dumps({"type": "pong", "timestamp": now_ms()}))
    except WebSocketDisconnect:
        pass
    except Exception as exc:
        logger.warning("ws.connection_error", error=str(exc))
    finally:
        hub.unregister(websocket)


def _message_type(message: object) -> str | None:
    return message.get("type") if isinstance(message, dict) else None
