"""
WebSocket connection manager for real-time chat delivery.

Manages active WebSocket connections per chat room and provides methods
to broadcast messages to everyone subscribed to a room.
"""

import asyncio
import json
import logging
from typing import Dict, Set, Optional, Tuple
from datetime import datetime, timedelta
from fastapi import WebSocket

from picklehub.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

# Timeout for WebSocket connections (60 seconds of inactivity)
WEBSOCKET_TIMEOUT_SECONDS = 60

ROOM_TYPES = ("event", "team")


def room_key(room_type: str, room_id: int) -> str:
    """Key of a chat room, e.g. "event:12" or "team:3"."""
    return f"{room_type}:{room_id}"


class WebSocketManager:
    """Manages WebSocket connections for chat rooms."""

    def __init__(self):
        # Room key -> set of active WebSocket connections
        self.room_connections: Dict[str, Set[WebSocket]] = {}
        # WebSocket -> (room key, user id)
        self.connection_info: Dict[WebSocket, Tuple[str, int]] = {}
        # WebSocket -> last activity timestamp
        self.connection_timestamps: Dict[WebSocket, datetime] = {}
        # Guards the three dicts above
        self._lock = asyncio.Lock()

    async def connect(self, room: str, user_id: int, websocket: WebSocket) -> bool:
        """
        Register a WebSocket connection in a room.

        Connecting an already registered socket is a no-op.

        Returns:
            True if the connection was newly registered
        """
        async with self._lock:
            if websocket in self.connection_info:
                return False
            self.room_connections.setdefault(room, set()).add(websocket)
            self.connection_info[websocket] = (room, user_id)
            self.connection_timestamps[websocket] = utcnow()
            logger.info(
                f"WebSocket connected for user {user_id} in {room} "
                f"(room connections: {len(self.room_connections[room])})"
            )
            return True

    async def disconnect(self, websocket: WebSocket) -> Optional[Tuple[str, int]]:
        """
        Remove a WebSocket connection. Always succeeds, even if already removed.

        Returns:
            (room, user_id) the connection was registered under, or None
        """
        async with self._lock:
            info = self.connection_info.pop(websocket, None)
            self.connection_timestamps.pop(websocket, None)
            if info is None:
                return None
            room, user_id = info
            connections = self.room_connections.get(room)
            if connections is not None:
                connections.discard(websocket)
                # Clean up empty sets
                if not connections:
                    del self.room_connections[room]
            logger.info(f"WebSocket disconnected for user {user_id} in {room}")
            return info

    async def broadcast(
        self,
        room: str,
        message: dict,
        exclude: Optional[WebSocket] = None,
    ) -> int:
        """
        Send a message to every connection subscribed to a room.

        Delivery is at most once: a connection that fails to receive is
        dropped and has to reconcile through chat history.

        Returns:
            Number of connections the message was sent to
        """
        async with self._lock:
            connections = list(self.room_connections.get(room, ()))

        message_json = json.dumps(message)
        sent = 0
        disconnected_connections = []

        # Send outside the lock so one slow client doesn't block the registry
        for websocket in connections:
            if websocket is exclude:
                continue
            try:
                await websocket.send_text(message_json)
                sent += 1
            except Exception as e:
                logger.warning(f"Error sending WebSocket message in {room}: {e}")
                disconnected_connections.append(websocket)

        for websocket in disconnected_connections:
            await self.disconnect(websocket)

        return sent

    async def send_personal(self, websocket: WebSocket, message: dict) -> bool:
        try:
            await websocket.send_text(json.dumps(message))
            return True
        except Exception as e:
            logger.warning(f"Error sending WebSocket message: {e}")
            return False

    async def get_connection_count(self, room: str) -> int:
        async with self._lock:
            return len(self.room_connections.get(room, ()))

    async def get_room_user_ids(self, room: str) -> Set[int]:
        """Users with at least one open connection to the room."""
        async with self._lock:
            return {
                self.connection_info[websocket][1]
                for websocket in self.room_connections.get(room, ())
            }

    async def update_activity(self, websocket: WebSocket):
        """
        Update the last activity timestamp for a WebSocket connection.
        Called when receiving ping or other messages from client.
        """
        async with self._lock:
            if websocket in self.connection_timestamps:
                self.connection_timestamps[websocket] = utcnow()

    async def cleanup_stale_connections(self) -> int:
        """
        Close and remove connections without activity within the timeout period.

        Returns:
            Number of connections removed
        """
        timeout_threshold = utcnow() - timedelta(seconds=WEBSOCKET_TIMEOUT_SECONDS)

        async with self._lock:
            stale_connections = [
                websocket
                for websocket, last_activity in self.connection_timestamps.items()
                if last_activity < timeout_threshold
            ]

        for websocket in stale_connections:
            info = await self.disconnect(websocket)
            try:
                await websocket.close(code=1000, reason="Connection timeout")
            except Exception as e:
                logger.debug(f"Stale WebSocket already closed: {e}")
            if info:
                logger.info(f"Cleaned up stale WebSocket connection for user {info[1]} in {info[0]}")

        return len(stale_connections)


# Global WebSocket manager instance
_websocket_manager: Optional[WebSocketManager] = None


def get_websocket_manager() -> WebSocketManager:
    """
    Get the global WebSocket manager instance.

    Returns:
        WebSocketManager instance
    """
    global _websocket_manager
    if _websocket_manager is None:
        _websocket_manager = WebSocketManager()
    return _websocket_manager
