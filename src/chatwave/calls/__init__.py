"""One-to-one call sessions and their signalling state machine."""

from .sessions import CallKind, CallSession, CallSessionTable, CallStatus
from .signaling import CallSignalingRouter, build_call_event, call_room_name

__all__ = [
    "CallKind",
    "CallSession",
    "CallSessionTable",
    "CallSignalingRouter",
    "CallStatus",
    "build_call_event",
    "call_room_name",
]
