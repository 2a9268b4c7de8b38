"""In-memory table of call attempts between two users."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterator

from app.monitoring.metrics import call_sessions_active


class CallKind(str, Enum):
    VOICE = "voice"
    VIDEO = "video"

    @classmethod
    def parse(cls, value: Any) -> "CallKind | None":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                return None
        return None


class CallStatus(str, Enum):
    RINGING = "ringing"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ENDED = "ended"


ACTIVE_STATUSES = frozenset({CallStatus.RINGING, CallStatus.ACCEPTED})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class CallSession:
    """State of one call attempt from initiation to termination."""

    call_id: str
    caller_id: str
    receiver_id: str
    kind: CallKind
    status: CallStatus = CallStatus.RINGING
    created_at: datetime = field(default_factory=_utcnow)
    accepted_at: datetime | None = None
    ended_at: datetime | None = None
    # Cancellable handle of the pending ring timeout, if any.
    timer: Any = field(default=None, repr=False, compare=False)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def involves(self, user_id: str) -> bool:
        return user_id in (self.caller_id, self.receiver_id)

    def counterpart(self, user_id: str) -> str | None:
        if user_id == self.caller_id:
            return self.receiver_id
        if user_id == self.receiver_id:
            return self.caller_id
        return None

    def cancel_timer(self) -> None:
        timer, self.timer = self.timer, None
        if timer is not None:
            timer.cancel()

    def to_public(self) -> dict[str, Any]:
        return {
            "callId": self.call_id,
            "callerId": self.caller_id,
            "receiverId": self.receiver_id,
            "callType": self.kind.value,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "acceptedAt": self.accepted_at.isoformat() if self.accepted_at else None,
            "endedAt": self.ended_at.isoformat() if self.ended_at else None,
        }


class CallSessionTable:
    """Keyed store of the call sessions that are still ringing or in progress.

    Call identifiers embed a millisecond stamp that never repeats within the
    process, so an identifier that has been removed can never come back.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = _utcnow,
        stamp: Callable[[], int] = time.time_ns,
    ) -> None:
        self._sessions: dict[str, CallSession] = {}
        self._clock = clock
        self._stamp = stamp
        self._last_stamp = 0

    def now(self) -> datetime:
        return self._clock()

    def _next_call_id(self, caller_id: str, receiver_id: str) -> str:
        millis = self._stamp() // 1_000_000
        millis = max(millis, self._last_stamp + 1)
        self._last_stamp = millis
        return f"{caller_id}_{receiver_id}_{millis}"

    def create(self, caller_id: str, receiver_id: str, kind: CallKind) -> CallSession:
        call_id = self._next_call_id(caller_id, receiver_id)
        session = CallSession(
            call_id=call_id,
            caller_id=caller_id,
            receiver_id=receiver_id,
            kind=kind,
            created_at=self._clock(),
        )
        self._sessions[call_id] = session
        call_sessions_active.set(len(self._sessions))
        return session

    def get(self, call_id: str) -> CallSession | None:
        return self._sessions.get(call_id)

    def update(
        self,
        call_id: str,
        status: CallStatus,
        *,
        accepted_at: datetime | None = None,
        ended_at: datetime | None = None,
    ) -> CallSession | None:
        session = self._sessions.get(call_id)
        if session is None:
            return None
        session.status = status
        if accepted_at is not None:
            session.accepted_at = accepted_at
        if ended_at is not None:
            session.ended_at = ended_at
        return session

    def remove(self, call_id: str) -> CallSession | None:
        """Drop a session; removing an unknown identifier is a no-op."""

        session = self._sessions.pop(call_id, None)
        if session is None:
            return None
        session.cancel_timer()
        call_sessions_active.set(len(self._sessions))
        return session

    def involving(self, user_id: str) -> list[CallSession]:
        return [session for session in self._sessions.values() if session.involves(user_id)]

    def clear(self) -> None:
        for session in self._sessions.values():
            session.cancel_timer()
        self._sessions.clear()
        call_sessions_active.set(0)

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[CallSession]:
        return iter(list(self._sessions.values()))

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._sessions


__all__ = [
    "ACTIVE_STATUSES",
    "CallKind",
    "CallSession",
    "CallSessionTable",
    "CallStatus",
]
