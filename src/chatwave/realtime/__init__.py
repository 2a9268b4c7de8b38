"""Realtime helpers for presence, rooms and cross-node fan-out.

The process-wide hub lives in :mod:`chatwave.realtime.managers`.
"""

from .connections import Connection, ConnectionRegistry, Delivery, safe_send_json  # noqa: F401
from .presence import PresenceBroadcaster  # noqa: F401
from .rooms import RoomMembershipManager, group_room_name  # noqa: F401

__all__ = [
    "Connection",
    "ConnectionRegistry",
    "Delivery",
    "PresenceBroadcaster",
    "RoomMembershipManager",
    "group_room_name",
    "safe_send_json",
]
