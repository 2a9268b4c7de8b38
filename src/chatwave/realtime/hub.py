"""Single coordinator owning presence, rooms and call sessions."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable

from fastapi.websockets import WebSocket

from app.monitoring.metrics import (
    realtime_connections,
    realtime_events_total,
    realtime_publish_errors_total,
    realtime_subscriptions,
)

from ..calls.sessions import CallSessionTable
from ..calls.signaling import DEFAULT_RING_TIMEOUT_SECONDS, CallSignalingRouter
from .connections import Connection, ConnectionRegistry, Delivery
from .presence import PresenceBroadcaster
from .rooms import RoomMembershipManager
from .transport import EVENTS_TOPIC, RedisNATSTransport, Subscription, TransportUnavailableError


logger = logging.getLogger(__name__)


class RealtimeHub:
    """Serialise every realtime operation over the shared in-memory state.

    Each public coroutine takes the hub lock, applies its state change through
    the registry, room manager or call router, and only then sends the
    resulting frames. Handlers therefore behave atomically even though frame
    delivery itself awaits on the network.
    """

    def __init__(
        self,
        transport: RedisNATSTransport,
        *,
        node_id: str,
        backend: str | None = None,
        ring_timeout: float = DEFAULT_RING_TIMEOUT_SECONDS,
    ) -> None:
        self._transport = transport
        self._node_id = node_id
        self._backend = backend
        self._lock = asyncio.Lock()
        self._pending: set[asyncio.Task[Any]] = set()
        self._events_subscription: Subscription | None = None
        self._events_warning_logged = False

        self.registry = ConnectionRegistry()
        self.rooms = RoomMembershipManager()
        self.sessions = CallSessionTable()
        self.presence = PresenceBroadcaster(
            self.registry, transport, node_id=node_id, backend=backend
        )
        self.router = CallSignalingRouter(
            self.registry,
            self.rooms,
            self.sessions,
            schedule_timeout=self._schedule_ring_timeout,
            ring_timeout=ring_timeout,
        )

    @property
    def node_id(self) -> str:
        return self._node_id

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        # Bind a fresh lock to the loop that is starting the service.
        self._lock = asyncio.Lock()
        await self.presence.start()
        if not self._transport.configured:
            logger.info("No realtime broker configured; running in local-only mode")
            return
        try:
            self._events_subscription = await self._transport.subscribe(
                EVENTS_TOPIC, self._handle_remote_event, backend=self._backend
            )
        except TransportUnavailableError:
            logger.warning(
                "Realtime backend unavailable; notifications will only reach local clients",
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            return
        realtime_subscriptions.labels("events", self.presence.backend_label).inc()

    async def stop(self) -> None:
        await self.presence.stop()
        if self._events_subscription is not None:
            await self._events_subscription.close()
            realtime_subscriptions.labels("events", self.presence.backend_label).dec()
            self._events_subscription = None
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()
        async with self._lock:
            self.sessions.clear()
            self.rooms.clear()
            self.registry.clear()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------
    async def connect(self, user_id: str, websocket: WebSocket) -> Connection:
        connection = Connection(user_id=user_id, websocket=websocket)
        async with self._lock:
            previous = self.registry.register(connection)
            outbox = self.presence.online_deliveries(user_id)
        if previous is not None:
            logger.info("Connection for %s replaced an earlier connection", user_id)
        realtime_connections.labels("signaling").inc()
        await self._deliver(outbox)
        await self.presence.publish("join")
        return connection

    async def disconnect(self, connection: Connection) -> None:
        async with self._lock:
            self.rooms.drop_connection(connection)
            current = self.registry.lookup(connection.user_id) is connection
            outbox: list[Delivery] = []
            if current:
                outbox.extend(self.router.disconnect_cleanup(connection.user_id))
                self.registry.unregister(connection)
                outbox.extend(self.presence.offline_deliveries(connection.user_id))
        realtime_connections.labels("signaling").dec()
        if not current:
            logger.debug("Ignoring disconnect of superseded connection for %s", connection.user_id)
            return
        await self._deliver(outbox)
        await self.presence.publish("leave")

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------
    async def join_rooms(self, connection: Connection, room_names: Iterable[str]) -> list[str]:
        async with self._lock:
            return self.rooms.join(connection, room_names)

    async def leave_room(self, connection: Connection, room_name: str) -> bool:
        async with self._lock:
            return self.rooms.leave(connection, room_name)

    async def broadcast_to_room(
        self,
        room_name: str,
        payload: dict[str, Any],
        *,
        exclude: Iterable[Connection] | None = None,
        publish: bool = True,
    ) -> None:
        async with self._lock:
            outbox = self.rooms.deliveries(room_name, payload, exclude=exclude)
        await self._deliver(outbox)
        if publish:
            await self._publish_event({"action": "room", "target": room_name, "payload": payload})

    async def notify_user(self, user_id: str, payload: dict[str, Any], *, publish: bool = True) -> bool:
        """Deliver *payload* to the user's current connection, if it is local."""

        async with self._lock:
            connection = self.registry.lookup(user_id)
        if connection is not None:
            return await connection.send(payload)
        if publish:
            await self._publish_event({"action": "user", "target": user_id, "payload": payload})
        return False

    def online_users(self) -> list[str]:
        return self.presence.online_users()

    # ------------------------------------------------------------------
    # Call signalling
    # ------------------------------------------------------------------
    async def initiate_call(self, connection: Connection, receiver_id: str, call_kind: Any) -> None:
        async with self._lock:
            outbox = self.router.initiate(connection.user_id, receiver_id, call_kind)
        await self._deliver(outbox)

    async def accept_call(self, connection: Connection, call_id: str) -> None:
        async with self._lock:
            outbox = self.router.accept(call_id, connection.user_id)
        await self._deliver(outbox)

    async def reject_call(self, connection: Connection, call_id: str) -> None:
        async with self._lock:
            outbox = self.router.reject(call_id, connection.user_id)
        await self._deliver(outbox)

    async def end_call(self, connection: Connection, call_id: str) -> None:
        async with self._lock:
            outbox = self.router.end(call_id, connection.user_id)
        await self._deliver(outbox)

    async def relay(self, connection: Connection, kind: str, call_id: str, frame: dict[str, Any]) -> None:
        async with self._lock:
            outbox = self.router.relay(kind, call_id, connection.user_id, frame)
        await self._deliver(outbox)

    def _schedule_ring_timeout(self, call_id: str, delay: float) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(delay, self._spawn_expiry, call_id)

    def _spawn_expiry(self, call_id: str) -> None:
        task = asyncio.create_task(self._expire(call_id), name=f"call-timeout-{call_id}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _expire(self, call_id: str) -> None:
        async with self._lock:
            outbox = self.router.expire(call_id)
        await self._deliver(outbox)

    # ------------------------------------------------------------------
    # Delivery helpers
    # ------------------------------------------------------------------
    async def _deliver(self, outbox: Iterable[Delivery]) -> None:
        for delivery in outbox:
            sent = await delivery.connection.send(delivery.payload)
            action = str(delivery.payload.get("type", "message"))
            realtime_events_total.labels("signaling", "out" if sent else "dropped", action).inc()

    async def _handle_remote_event(self, message: dict[str, Any]) -> None:
        if message.get("origin") == self._node_id:
            return
        payload = message.get("payload")
        target = message.get("target")
        if not isinstance(payload, dict) or not isinstance(target, str):
            return
        action = message.get("action")
        if action == "user":
            await self.notify_user(target, payload, publish=False)
        elif action == "room":
            await self.broadcast_to_room(target, payload, publish=False)
        else:
            return
        realtime_events_total.labels("events", "in", action).inc()

    async def _publish_event(self, message: dict[str, Any]) -> None:
        if not self._transport.configured:
            return
        message = {**message, "origin": self._node_id}
        try:
            await self._transport.publish(EVENTS_TOPIC, message, backend=self._backend)
        except TransportUnavailableError:
            if not self._events_warning_logged:
                logger.warning(
                    "Realtime backend unavailable while forwarding %s notification; operating in local-only mode",
                    message["action"],
                    exc_info=logger.isEnabledFor(logging.DEBUG),
                )
                self._events_warning_logged = True
            realtime_publish_errors_total.labels("events", self.presence.backend_label, "unavailable").inc()
        except Exception:
            realtime_publish_errors_total.labels("events", self.presence.backend_label, "error").inc()
            logger.exception("Unexpected error while forwarding %s notification", message["action"])
        else:
            self._events_warning_logged = False
            realtime_events_total.labels("events", "out", message["action"]).inc()


__all__ = ["RealtimeHub"]
