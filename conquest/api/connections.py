"""
WebSocket viewers and best-effort broadcast.
"""

import structlog
from fastapi import WebSocket

from conquest.engine.events import GameEvent

logger = structlog.get_logger(__name__)


class ConnectionManager:
    def __init__(self):
        self.active: list[WebSocket] = []

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active.append(websocket)
        logger.info("viewer_connected", viewers=len(self.active))

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self.active:
            self.active.remove(websocket)
            logger.info("viewer_disconnected", viewers=len(self.active))

    async def send(self, websocket: WebSocket, events: list[GameEvent]) -> bool:
        try:
            for event in events:
                await websocket.send_json(event.to_dict())
        except Exception as e:
            logger.info("viewer_send_failed", error=str(e))
            self.disconnect(websocket)
            return False
        return True

    async def broadcast(self, events: list[GameEvent]) -> None:
        """Send events to every viewer; viewers whose send fails are dropped, never retried."""
        if not events:
            return
        for websocket in list(self.active):
            await self.send(websocket, events)
