"""Call-control state machine and WebRTC negotiation relay.

The router is deliberately synchronous: every operation reads and mutates
the registry, room and session tables in one step and returns the frames
that must be sent as a result. The owning hub runs each operation under its
lock and performs the sends afterwards, so no operation is ever interleaved
with another one.

Requests that reference a removed call, come from the wrong participant or
target an unreachable peer are dropped without a reply. Clients resynchronise
from the terminal ``callEnded``/``callRejected`` events instead.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

from app.monitoring.metrics import call_requests_dropped_total, call_transitions_total

from ..realtime.connections import Connection, ConnectionRegistry, Delivery
from ..realtime.rooms import RoomMembershipManager
from .sessions import CallKind, CallSession, CallSessionTable, CallStatus


logger = logging.getLogger(__name__)

DEFAULT_RING_TIMEOUT_SECONDS = 30.0

RELAY_KINDS = frozenset({"offer", "answer", "iceCandidate"})

REASON_HANGUP = "hangup"
REASON_TIMEOUT = "timeout"
REASON_DISCONNECTED = "user_disconnected"

# Called with (call_id, delay_seconds); returns a handle exposing ``cancel()``.
TimerFactory = Callable[[str, float], Any]


def call_room_name(call_id: str) -> str:
    """Return the room that carries events scoped to one call."""

    return call_id


def build_call_event(event_type: str, call_id: str, **fields: Any) -> dict[str, Any]:
    """Build an outbound call-control frame."""

    body: dict[str, Any] = {"type": event_type, "callId": call_id}
    body.update(fields)
    return body


class CallSignalingRouter:
    """Validate call-control messages and route them between two parties."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        rooms: RoomMembershipManager,
        sessions: CallSessionTable,
        *,
        schedule_timeout: TimerFactory,
        ring_timeout: float = DEFAULT_RING_TIMEOUT_SECONDS,
    ) -> None:
        self._registry = registry
        self._rooms = rooms
        self._sessions = sessions
        self._schedule_timeout = schedule_timeout
        self.ring_timeout = ring_timeout

    # ------------------------------------------------------------------
    # Call control
    # ------------------------------------------------------------------
    def initiate(self, caller_id: str, receiver_id: str, call_kind: Any = CallKind.VOICE) -> list[Delivery]:
        kind = CallKind.parse(call_kind)
        if kind is None:
            return self._drop("initiate", "invalid_kind", None)
        if not receiver_id or receiver_id == caller_id:
            return self._drop("initiate", "invalid_receiver", None)

        session = self._sessions.create(caller_id, receiver_id, kind)
        session.timer = self._schedule_timeout(session.call_id, self.ring_timeout)
        call_transitions_total.labels("initiated").inc()

        outbox: list[Delivery] = []
        caller = self._registry.lookup(caller_id)
        if caller is not None:
            outbox.append(
                Delivery(caller, build_call_event("callInitiated", session.call_id, receiverId=receiver_id))
            )
        receiver = self._registry.lookup(receiver_id)
        if receiver is not None:
            outbox.append(
                Delivery(
                    receiver,
                    build_call_event(
                        "incomingCall",
                        session.call_id,
                        callerId=caller_id,
                        callType=kind.value,
                        callerInfo={"userId": caller_id},
                    ),
                )
            )
            logger.info(
                "Call %s initiated by %s to %s (%s)", session.call_id, caller_id, receiver_id, kind.value
            )
        else:
            logger.info(
                "Call %s initiated by %s to offline user %s; waiting for ring timeout",
                session.call_id,
                caller_id,
                receiver_id,
            )
        return outbox

    def accept(self, call_id: str, user_id: str) -> list[Delivery]:
        session = self._sessions.get(call_id)
        if session is None:
            return self._drop("accept", "stale", call_id)
        if session.status is not CallStatus.RINGING:
            return self._drop("accept", "invalid_state", call_id)
        if user_id != session.receiver_id:
            return self._drop("accept", "unauthorized", call_id)

        session.cancel_timer()
        self._sessions.update(call_id, CallStatus.ACCEPTED, accepted_at=self._sessions.now())
        call_transitions_total.labels("accepted").inc()
        logger.info("Call %s accepted by %s", call_id, user_id)

        room = call_room_name(call_id)
        outbox: list[Delivery] = []
        caller = self._registry.lookup(session.caller_id)
        receiver = self._registry.lookup(session.receiver_id)
        if caller is not None:
            outbox.append(Delivery(caller, build_call_event("callAccepted", call_id)))
        for party in (caller, receiver):
            if party is None:
                continue
            self._rooms.join(party, [room])
            outbox.append(Delivery(party, build_call_event("joinCallRoom", call_id)))
        return outbox

    def reject(self, call_id: str, user_id: str) -> list[Delivery]:
        session = self._sessions.get(call_id)
        if session is None:
            return self._drop("reject", "stale", call_id)
        if session.status is not CallStatus.RINGING:
            return self._drop("reject", "invalid_state", call_id)
        if user_id != session.receiver_id:
            return self._drop("reject", "unauthorized", call_id)

        self._sessions.update(call_id, CallStatus.REJECTED, ended_at=self._sessions.now())
        outbox: list[Delivery] = []
        caller = self._registry.lookup(session.caller_id)
        if caller is not None:
            outbox.append(Delivery(caller, build_call_event("callRejected", call_id)))
        self._retire(session)
        call_transitions_total.labels("rejected").inc()
        logger.info("Call %s rejected by %s", call_id, user_id)
        return outbox

    def end(self, call_id: str, user_id: str) -> list[Delivery]:
        session = self._sessions.get(call_id)
        if session is None:
            return self._drop("end", "stale", call_id)
        if not session.involves(user_id):
            return self._drop("end", "unauthorized", call_id)

        outbox = self._terminate(session, REASON_HANGUP)
        call_transitions_total.labels("ended").inc()
        logger.info("Call %s ended by %s", call_id, user_id)
        return outbox

    def relay(self, kind: str, call_id: str, sender_id: str, frame: dict[str, Any]) -> list[Delivery]:
        """Forward a negotiation frame unchanged to the other participant."""

        if kind not in RELAY_KINDS:
            return self._drop("relay", "invalid_kind", call_id)
        session = self._sessions.get(call_id)
        if session is None:
            return self._drop(kind, "stale", call_id)
        counterpart_id = session.counterpart(sender_id)
        if counterpart_id is None:
            return self._drop(kind, "unauthorized", call_id)
        target = self._registry.lookup(counterpart_id)
        if target is None:
            return self._drop(kind, "unreachable", call_id)
        return [Delivery(target, frame)]

    def expire(self, call_id: str) -> list[Delivery]:
        """Fire the ring timeout; a call that already progressed is left alone."""

        session = self._sessions.get(call_id)
        if session is None or session.status is not CallStatus.RINGING:
            logger.debug("Ring timeout for call %s ignored; call already progressed", call_id)
            return []
        # The handle has fired; nothing left to cancel.
        session.timer = None
        outbox = self._terminate(session, REASON_TIMEOUT)
        call_transitions_total.labels("timeout").inc()
        logger.info("Call %s timed out while ringing", call_id)
        return outbox

    def disconnect_cleanup(self, user_id: str) -> list[Delivery]:
        """End every live call of a user whose connection went away."""

        outbox: list[Delivery] = []
        for session in self._sessions.involving(user_id):
            if not session.is_active:
                continue
            outbox.extend(self._terminate(session, REASON_DISCONNECTED, exclude_user=user_id))
            call_transitions_total.labels("disconnected").inc()
            logger.info("Call %s ended because %s disconnected", session.call_id, user_id)
        return outbox

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _terminate(
        self, session: CallSession, reason: str, *, exclude_user: str | None = None
    ) -> list[Delivery]:
        self._sessions.update(session.call_id, CallStatus.ENDED, ended_at=self._sessions.now())
        payload = build_call_event("callEnded", session.call_id, reason=reason)
        outbox = [
            Delivery(connection, payload)
            for connection in self._party_connections(session)
            if connection.user_id != exclude_user
        ]
        self._retire(session)
        return outbox

    def _party_connections(self, session: CallSession) -> list[Connection]:
        """Members of the call room plus the current connection of each party."""

        candidates: Iterable[Connection | None] = (
            *self._rooms.members(call_room_name(session.call_id)),
            self._registry.lookup(session.caller_id),
            self._registry.lookup(session.receiver_id),
        )
        seen: list[Connection] = []
        for connection in candidates:
            if connection is not None and connection not in seen:
                seen.append(connection)
        return seen

    def _retire(self, session: CallSession) -> None:
        self._sessions.remove(session.call_id)
        self._rooms.close_room(call_room_name(session.call_id))

    def _drop(self, operation: str, reason: str, call_id: str | None) -> list[Delivery]:
        call_requests_dropped_total.labels(operation, reason).inc()
        logger.debug("Dropped %s request for call %s: %s", operation, call_id, reason)
        return []


__all__ = [
    "DEFAULT_RING_TIMEOUT_SECONDS",
    "REASON_DISCONNECTED",
    "REASON_HANGUP",
    "REASON_TIMEOUT",
    "RELAY_KINDS",
    "CallSignalingRouter",
    "TimerFactory",
    "build_call_event",
    "call_room_name",
]
