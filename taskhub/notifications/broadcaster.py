import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from fastapi import WebSocket

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Connection:
    """One live WebSocket listener."""

    websocket: WebSocket
    id: str = field(default_factory=lambda: uuid4().hex)
    attached_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Broadcaster:
    """Tracks live WebSocket connections and fans events out to all of them."""

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> Connection:
        """Accept the socket and add it to the live set."""
        await websocket.accept()
        connection = Connection(websocket=websocket)
        async with self._lock:
            self._connections[connection.id] = connection
        logger.info(
            f"Client connected: {connection.id} (total: {len(self._connections)})"
        )
        return connection

    async def disconnect(self, connection: Connection) -> None:
        async with self._lock:
            self._connections.pop(connection.id, None)
        logger.info(
            f"Client disconnected: {connection.id} (remaining: {len(self._connections)})"
        )

    async def emit(self, event_name: str, payload: Any) -> int:
        """
        Send ``payload`` under ``event_name`` to every connection attached
        right now. Sockets that fail are dropped from the live set.

        Returns:
            Number of connections the message was delivered to
        """
        message = json.dumps({"event": event_name, "data": payload}, default=str)

        async with self._lock:
            connections = list(self._connections.values())

        delivered = 0
        for connection in connections:
            try:
                await connection.websocket.send_text(message)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping connection {connection.id}: {e}")
                await self.disconnect(connection)

        logger.debug(f"Emitted {event_name} to {delivered}/{len(connections)} clients")
        return delivered

    @property
    def connection_count(self) -> int:
        """Get current number of connections."""
        return len(self._connections)
