"""
WebSocket Connection Manager for real-time notifications

Tracks each signed-in user's open sockets and pushes notification events to
that user only.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class WebSocketManager:
    """Manages per-user WebSocket connections"""

    def __init__(self):
        self.connections: Dict[int, List[WebSocket]] = {}
        self._lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        return sum(len(sockets) for sockets in self.connections.values())

    async def connect(self, websocket: WebSocket, user_id: int):
        """Accept a new WebSocket connection for a user"""
        await websocket.accept()
        async with self._lock:
            self.connections.setdefault(user_id, []).append(websocket)
        logger.info(f"WebSocket connected for user {user_id}. Total connections: {self.connection_count}")

    async def disconnect(self, websocket: WebSocket, user_id: int):
        async with self._lock:
            sockets = self.connections.get(user_id, [])
            if websocket in sockets:
                sockets.remove(websocket)
            if not sockets:
                self.connections.pop(user_id, None)
        logger.info(f"WebSocket disconnected for user {user_id}. Total connections: {self.connection_count}")

    async def send_to_user(self, user_id: int, message: dict):
        """Send a message to every socket the user has open"""
        async with self._lock:
            sockets = list(self.connections.get(user_id, []))

        if not sockets:
            return

        disconnected = []
        for connection in sockets:
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.warning(f"Failed to send message to user {user_id}: {e}")
                disconnected.append(connection)

        if disconnected:
            async with self._lock:
                remaining = [c for c in self.connections.get(user_id, []) if c not in disconnected]
                if remaining:
                    self.connections[user_id] = remaining
                else:
                    self.connections.pop(user_id, None)

    async def send_notification(self, user_id: int, notification: dict):
        message = {
            "type": "notification",
            "notification": notification,
            "timestamp": datetime.utcnow().isoformat(),
        }
        await self.send_to_user(user_id, message)


# Global singleton instance
ws_manager = WebSocketManager()
