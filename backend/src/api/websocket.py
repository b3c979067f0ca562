"""WebSocket support for real-time render progress notifications.

This module provides:
- WebSocketManager: Manages WebSocket connections per client session
- ProgressBroadcaster: Fire-and-forget progress, completion and error events
- Message creation helpers: Standardized message formats
"""

import logging
from typing import Any, Optional

from fastapi import WebSocket

from src.render.progress import ProgressEvent

logger = logging.getLogger(__name__)


class WebSocketManager:
    """Manages WebSocket connections for render progress updates.

    Supports multiple sockets for the same client session.
    """

    def __init__(self):
        # session_id -> list of connected websockets
        self._connections: dict[str, list[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, session_id: str) -> None:
        """Accept and register a WebSocket connection for a session."""
        await websocket.accept()
        if session_id not in self._connections:
            self._connections[session_id] = []
        self._connections[session_id].append(websocket)

    def disconnect(self, websocket: WebSocket, session_id: str) -> None:
        """Remove a WebSocket connection."""
        if session_id in self._connections:
            if websocket in self._connections[session_id]:
                self._connections[session_id].remove(websocket)
            # Clean up empty lists
            if not self._connections[session_id]:
                del self._connections[session_id]

    async def broadcast(self, session_id: str, message: dict[str, Any]) -> None:
        """Send a message to every socket of a session; dropped if none."""
        if session_id not in self._connections:
            return

        disconnected = []
        for websocket in list(self._connections[session_id]):
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.info(f"[PROGRESS] Dropping socket for session {session_id}: {e}")
                disconnected.append(websocket)

        # Clean up disconnected clients
        for ws in disconnected:
            self.disconnect(ws, session_id)

    def get_connection_count(self, session_id: str) -> int:
        """Get the number of connected sockets for a session."""
        return len(self._connections.get(session_id, []))


class ProgressBroadcaster:
    """Pushes job events to a client session. Nothing is buffered."""

    def __init__(self, manager: WebSocketManager):
        self._manager = manager

    @property
    def manager(self) -> WebSocketManager:
        return self._manager

    async def emit(self, session_id: Optional[str], event: ProgressEvent) -> None:
        """Send a progress update to all connected sockets of a session."""
        if not session_id:
            return
        await self._manager.broadcast(session_id, create_progress_message(event))

    async def emit_complete(self, session_id: Optional[str], output_url: str) -> None:
        """Send a completion notification."""
        if not session_id:
            return
        await self._manager.broadcast(session_id, create_complete_message(output_url))

    async def emit_error(
        self,
        session_id: Optional[str],
        error_message: str,
        error_code: Optional[str] = None,
    ) -> None:
        """Send an error notification."""
        if not session_id:
            return
        await self._manager.broadcast(
            session_id,
            create_error_message(error_message=error_message, error_code=error_code),
        )


def create_progress_message(event: ProgressEvent) -> dict[str, Any]:
    """Create a standardized progress message."""
    return {"type": "progress", **event.to_dict()}


def create_complete_message(output_url: str) -> dict[str, Any]:
    """Create a standardized completion message."""
    return {
        "type": "complete",
        "percent": 100,
        "url": output_url,
    }


def create_error_message(
    error_message: str,
    error_code: Optional[str] = None,
) -> dict[str, Any]:
    """Create a standardized error message."""
    return {
        "type": "error",
        "message": error_message,
        "code": error_code,
    }
