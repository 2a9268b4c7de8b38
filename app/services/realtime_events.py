"""Helpers that let HTTP handlers push events over the realtime channel."""

from __future__ import annotations

from typing import Any, Iterable

from chatwave.realtime.managers import get_hub
from chatwave.realtime.rooms import group_room_name


def _event(event_type: str, payload: dict[str, Any] | None) -> dict[str, Any]:
    body = dict(payload or {})
    body["type"] = event_type
    return body


async def notify_user(user_id: str, event_type: str, payload: dict[str, Any] | None = None) -> bool:
    """Send an event such as ``newMessage`` to one user's current connection.

    Returns ``True`` when a local connection received the frame. When a broker
    is configured the event is also forwarded to other nodes.
    """

    return await get_hub().notify_user(str(user_id), _event(event_type, payload))


async def notify_users(
    user_ids: Iterable[str], event_type: str, payload: dict[str, Any] | None = None
) -> None:
    for user_id in dict.fromkeys(str(user_id) for user_id in user_ids):
        await notify_user(user_id, event_type, payload)


async def notify_group(
    group_id: str,
    event_type: str,
    payload: dict[str, Any] | None = None,
    *,
    exclude_user: str | None = None,
) -> None:
    """Broadcast an event such as ``newGroupMessage`` to everyone in a group room."""

    hub = get_hub()
    exclude = None
    if exclude_user is not None:
        connection = hub.registry.lookup(str(exclude_user))
        exclude = [connection] if connection is not None else None
    await hub.broadcast_to_room(group_room_name(group_id), _event(event_type, payload), exclude=exclude)


def online_users() -> list[str]:
    return get_hub().online_users()


__all__ = ["notify_group", "notify_user", "notify_users", "online_users"]
