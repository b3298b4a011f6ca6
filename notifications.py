import logging
from typing import List

from fastapi import WebSocket
from starlette.concurrency import run_in_threadpool

import orders

logger = logging.getLogger(__name__)


class NotificationHub:
    """Admin WebSocket sessions connected to this process."""

    def __init__(self):
        self.connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.connections.append(websocket)
        logger.info("Admin notification socket connected (%d open)", len(self.connections))

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self.connections:
            self.connections.remove(websocket)
            logger.info("Admin notification socket closed (%d open)", len(self.connections))

    async def broadcast(self, event: str, payload: dict) -> int:
        delivered = 0
        for websocket in list(self.connections):
            try:
                await websocket.send_json({"event": event, "data": payload})
                delivered += 1
            except Exception:
                logger.warning("Dropping admin socket after failed send of %s", event)
                self.disconnect(websocket)
        return delivered


hub = NotificationHub()


async def announce_new_order(order: dict) -> None:
    try:
        delivered = await hub.broadcast("new-order", {
            "order_id": order["id"],
            "user_email": order.get("user_email"),
            "total_amount": order.get("total_amount"),
            "created_at": order.get("created_at"),
        })
        outcome = "ok" if delivered else "skipped"
    except Exception:
        logger.exception("Failed to emit new-order event for %s", order.get("id"))
        outcome = "failed"
    try:
        await run_in_threadpool(orders.record_side_effect, order["id"], "realtime", outcome)
    except Exception:
        logger.exception("Failed to record realtime outcome for %s", order.get("id"))
