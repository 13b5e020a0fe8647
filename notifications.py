"""
Live order events for the admin back-office.

OrderEventHub keeps the set of connected WebSocket clients and fans each event
out to all of them. Delivery is at-most-once and best-effort: nothing is
queued, replayed or acknowledged, and a client that connects after an event
never sees it. Clients re-fetch current state over REST when they reconnect.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


class OrderEventPublisher(Protocol):
    def notify_new_order(self, order_id: str) -> None: ...

    def notify_order_update(self, order_id: str) -> None: ...


def order_event(event_type: str, order_id: str) -> Dict[str, Any]:
    return {
        "type": event_type,
        "orderId": order_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class OrderEventHub:
    """In-process publisher backed by WebSocket connections."""

    def __init__(self):
        self.clients: Dict[str, WebSocket] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def connect(self, websocket: WebSocket) -> str:
        await websocket.accept()
        self._loop = asyncio.get_running_loop()
        connection_id = uuid.uuid4().hex[:8]
        self.clients[connection_id] = websocket
        await websocket.send_json({"type": "connected", "connectionId": connection_id})
        logger.info("Order event client %s connected (%d total)", connection_id, len(self.clients))
        return connection_id

    def disconnect(self, connection_id: str) -> None:
        if self.clients.pop(connection_id, None) is not None:
            logger.info("Order event client %s disconnected", connection_id)

    async def broadcast(self, message: Dict[str, Any]) -> None:
        for connection_id, websocket in list(self.clients.items()):
            if (websocket.client_state != WebSocketState.CONNECTED
                    or websocket.application_state != WebSocketState.CONNECTED):
                continue
            try:
                await websocket.send_json(message)
            except Exception as exc:
                logger.warning("Dropping order event client %s: %s", connection_id, exc)
                self.disconnect(connection_id)

    def publish(self, message: Dict[str, Any]) -> None:
        """Schedule a broadcast from any thread without waiting for it."""
        loop = self._loop
        if not self.clients or loop is None or loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(self.broadcast(message), loop)

    def notify_new_order(self, order_id: str) -> None:
        self.publish(order_event("new_order", order_id))

    def notify_order_update(self, order_id: str) -> None:
        self.publish(order_event("order_update", order_id))
