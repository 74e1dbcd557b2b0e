# ws_manager.py
import logging
from typing import List
from fastapi import WebSocket

from emissions_service.metrics import DASHBOARD_CLIENTS

logger = logging.getLogger("emissions-service.ws")


class DashboardConnections:
    """Dashboards subscribed to delivery events; mirrors the count into DASHBOARD_CLIENTS."""

    def __init__(self):
        self.active_connections: List[WebSocket] = []

    def _track(self, action: str):
        DASHBOARD_CLIENTS.set(len(self.active_connections))
        logger.info(f"[WS] Dashboard {action} ({len(self.active_connections)} active)")

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)
        self._track("connected")

    def disconnect(self, websocket: WebSocket):
        if websocket not in self.active_connections:
            return
        self.active_connections.remove(websocket)
        self._track("disconnected")

    async def broadcast(self, event: dict):
        """Push a delivery event to every dashboard; drop sockets that fail."""
        if not self.active_connections:
            return 0
        delivered = 0
        for ws in list(self.active_connections):
            try:
                await ws.send_json(event)
                delivered += 1
            except Exception as e:
                logger.warning(f"[WS] Dropping dashboard after failed {event.get('type')} push: {e}")
                self.disconnect(ws)
        return delivered


manager = DashboardConnections()
