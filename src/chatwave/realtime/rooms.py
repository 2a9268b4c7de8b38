"""Named broadcast groups of connections."""

from __future__ import annotations

from typing import Any, Iterable

from .connections import Connection, Delivery

GROUP_ROOM_PREFIX = "group:"


def group_room_name(group_id: Any) -> str:
    """Return the room that carries events for a chat group."""

    return f"{GROUP_ROOM_PREFIX}{group_id}"


class RoomMembershipManager:
    """Many-to-many relation between connections and room names.

    Membership is mirrored on ``Connection.rooms`` so that a disconnect can
    drop everything the connection joined without scanning every room.
    """

    def __init__(self) -> None:
        self._rooms: dict[str, set[Connection]] = {}

    def join(self, connection: Connection, room_names: Iterable[str]) -> list[str]:
        """Add *connection* to each room, returning the rooms newly joined."""

        joined: list[str] = []
        for name in room_names:
            members = self._rooms.setdefault(name, set())
            if connection in members:
                continue
            members.add(connection)
            connection.rooms.add(name)
            joined.append(name)
        return joined

    def leave(self, connection: Connection, room_name: str) -> bool:
        members = self._rooms.get(room_name)
        connection.rooms.discard(room_name)
        if not members or connection not in members:
            return False
        members.discard(connection)
        if not members:
            self._rooms.pop(room_name, None)
        return True

    def drop_connection(self, connection: Connection) -> list[str]:
        """Forget every membership held by *connection*."""

        dropped = sorted(connection.rooms)
        for name in dropped:
            self.leave(connection, name)
        connection.rooms.clear()
        return dropped

    def close_room(self, room_name: str) -> list[Connection]:
        """Remove a room entirely, returning the connections it held."""

        members = self._rooms.pop(room_name, set())
        for connection in members:
            connection.rooms.discard(room_name)
        return list(members)

    def members(self, room_name: str) -> list[Connection]:
        return list(self._rooms.get(room_name, ()))

    def deliveries(
        self,
        room_name: str,
        payload: dict[str, Any],
        *,
        exclude: Iterable[Connection] | None = None,
    ) -> list[Delivery]:
        """Address *payload* once to every current member of *room_name*."""

        exclude_set = set(exclude or ())
        return [
            Delivery(connection, payload)
            for connection in self.members(room_name)
            if connection not in exclude_set
        ]

    def room_names(self) -> list[str]:
        return sorted(self._rooms)

    def clear(self) -> None:
        for members in self._rooms.values():
            for connection in members:
                connection.rooms.clear()
        self._rooms.clear()


__all__ = ["GROUP_ROOM_PREFIX", "RoomMembershipManager", "group_room_name"]
