"""WebSocket broadcaster for session and discovery events."""

import asyncio
import json
import logging

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks UI WebSocket clients and pushes `{"event", "data"}` messages."""

    def __init__(self) -> None:
        self._connections: list[WebSocket] = []
        self._lock = asyncio.Lock()

    @property
    def client_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.append(websocket)
        logger.info(f"UI client connected. Total: {len(self._connections)}")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            if websocket in self._connections:
                self._connections.remove(websocket)
        logger.info(f"UI client disconnected. Total: {len(self._connections)}")

    async def broadcast(self, event: str, data: dict) -> None:
        """Send an event to every client, dropping the ones that fail."""
        message = json.dumps({"event": event, "data": data})
        async with self._lock:
            dead: list[WebSocket] = []
            for ws in self._connections:
                try:
                    await ws.send_text(message)
                except Exception as e:
                    logger.debug(f"Dropping UI client: {e}")
                    dead.append(ws)
            for ws in dead:
                self._connections.remove(ws)

    async def handle_event(self, event_type: str, data: dict) -> None:
        """Callback for SessionManager.on_event()."""
        await self.broadcast(event_type, data)

    async def handle_peer_event(self, event_type: str, peer) -> None:
        """Callback for DiscoveryService.on_peer_change()."""
        await self.broadcast(event_type, peer.model_dump())
