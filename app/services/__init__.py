"""Application service helpers."""

from .realtime_events import notify_group, notify_user, notify_users, online_users

__all__ = [
    "notify_group",
    "notify_user",
    "notify_users",
    "online_users",
]
