"""Live websocket connections and the registry of who is online."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState


logger = logging.getLogger(__name__)


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Safely send JSON data through websocket, handling disconnections gracefully.

    Returns True if message was sent successfully, False otherwise.
    """
    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


@dataclass(eq=False, slots=True)
class Connection:
    """One live client link; compared and hashed by identity."""

    user_id: str
    websocket: WebSocket
    rooms: set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    async def send(self, payload: dict[str, Any]) -> bool:
        return await safe_send_json(self.websocket, payload)


@dataclass(slots=True)
class Delivery:
    """An outbound frame addressed to a specific connection."""

    connection: Connection
    payload: dict[str, Any]


class ConnectionRegistry:
    """Maps a user identity to its single active connection.

    The registry performs no locking of its own; the owning hub serialises
    every read-modify-write sequence.
    """

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}

    def register(self, connection: Connection) -> Connection | None:
        """Store *connection* for its user, returning the mapping it replaced."""

        previous = self._connections.get(connection.user_id)
        self._connections[connection.user_id] = connection
        return previous

    def lookup(self, user_id: str) -> Connection | None:
        return self._connections.get(user_id)

    def unregister(self, connection: Connection) -> bool:
        """Remove the mapping only when *connection* is still the current one."""

        current = self._connections.get(connection.user_id)
        if current is not connection:
            return False
        del self._connections[connection.user_id]
        return True

    def online_ids(self) -> list[str]:
        return sorted(self._connections)

    def connections(self) -> list[Connection]:
        return list(self._connections.values())

    def clear(self) -> None:
        self._connections.clear()

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._connections))


__all__ = [
    "Connection",
    "ConnectionRegistry",
    "Delivery",
    "safe_send_json",
]
