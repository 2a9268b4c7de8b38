"""Presence fan-out: who is online, announced to every connected client."""

from __future__ import annotations

import logging
from typing import Any

from app.monitoring.metrics import (
    realtime_events_total,
    realtime_publish_errors_total,
    realtime_subscriptions,
)

from .connections import ConnectionRegistry, Delivery
from .transport import PRESENCE_TOPIC, RedisNATSTransport, Subscription, TransportUnavailableError


logger = logging.getLogger(__name__)


class PresenceBroadcaster:
    """Turn registry mutations into presence frames for all local clients.

    Every change produces the authoritative ``getOnlineUsers`` list followed
    by an incremental ``userOnline``/``userOffline`` hint. When a broker is
    configured each node also publishes its local identity set, and the list
    sent to clients is the union of the local registry and the latest
    snapshot received from every other node.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        transport: RedisNATSTransport,
        *,
        node_id: str,
        backend: str | None = None,
    ) -> None:
        self._registry = registry
        self._transport = transport
        self._node_id = node_id
        self._backend = backend
        self._remote: dict[str, set[str]] = {}
        self._subscription: Subscription | None = None
        self._publish_warning_logged = False

    @property
    def backend_label(self) -> str:
        return self._backend or "default"

    def online_users(self) -> list[str]:
        online = set(self._registry)
        for users in self._remote.values():
            online.update(users)
        return sorted(online)

    def is_online(self, user_id: str) -> bool:
        return user_id in self._registry or any(user_id in users for users in self._remote.values())

    # ------------------------------------------------------------------
    # Local fan-out
    # ------------------------------------------------------------------
    def snapshot_deliveries(self) -> list[Delivery]:
        payload = {"type": "getOnlineUsers", "users": self.online_users()}
        return [Delivery(connection, payload) for connection in self._registry.connections()]

    def online_deliveries(self, user_id: str) -> list[Delivery]:
        # Fired on every register, even when the identity was already online.
        hint = {"type": "userOnline", "userId": user_id}
        outbox = self.snapshot_deliveries()
        outbox.extend(Delivery(connection, hint) for connection in self._registry.connections())
        return outbox

    def offline_deliveries(self, user_id: str) -> list[Delivery]:
        outbox = self.snapshot_deliveries()
        if self.is_online(user_id):
            # Still connected through another node.
            return outbox
        hint = {"type": "userOffline", "userId": user_id}
        outbox.extend(Delivery(connection, hint) for connection in self._registry.connections())
        return outbox

    # ------------------------------------------------------------------
    # Cross-node synchronisation
    # ------------------------------------------------------------------
    async def start(self) -> None:
        if not self._transport.configured:
            return
        try:
            self._subscription = await self._transport.subscribe(
                PRESENCE_TOPIC, self._handle_remote, backend=self._backend
            )
        except TransportUnavailableError:
            logger.warning(
                "Realtime backend unavailable; presence will be limited to this instance",
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            self._subscription = None
            return
        realtime_subscriptions.labels("presence", self.backend_label).inc()
        await self.publish("join")

    async def stop(self) -> None:
        if self._subscription is not None:
            await self.publish("leave", users=[])
            await self._subscription.close()
            realtime_subscriptions.labels("presence", self.backend_label).dec()
            self._subscription = None
        self._remote.clear()

    def apply_remote(self, message: dict[str, Any]) -> tuple[set[str], set[str]] | None:
        """Merge a snapshot from another node, returning (appeared, vanished)."""

        origin = message.get("origin")
        if not isinstance(origin, str) or origin == self._node_id:
            return None
        users = message.get("users")
        if not isinstance(users, list):
            return None
        before = set(self.online_users())
        if message.get("action") == "leave":
            self._remote.pop(origin, None)
        else:
            self._remote[origin] = {str(user) for user in users}
        after = set(self.online_users())
        return after - before, before - after

    async def _handle_remote(self, message: dict[str, Any]) -> None:
        changes = self.apply_remote(message)
        if changes is None:
            return
        appeared, vanished = changes
        realtime_events_total.labels("presence", "in", message.get("action", "snapshot")).inc()
        outbox = self.snapshot_deliveries()
        connections = self._registry.connections()
        for user_id in sorted(appeared):
            outbox.extend(Delivery(c, {"type": "userOnline", "userId": user_id}) for c in connections)
        for user_id in sorted(vanished):
            outbox.extend(Delivery(c, {"type": "userOffline", "userId": user_id}) for c in connections)
        for delivery in outbox:
            await delivery.connection.send(delivery.payload)
        if message.get("action") == "join":
            # Bring the newly started node up to date with our local set.
            await self.publish("snapshot")

    async def publish(self, action: str, *, users: list[str] | None = None) -> None:
        if not self._transport.configured:
            return
        payload = {
            "action": action,
            "origin": self._node_id,
            "users": self._registry.online_ids() if users is None else users,
        }
        try:
            await self._transport.publish(PRESENCE_TOPIC, payload, backend=self._backend)
        except TransportUnavailableError:
            if not self._publish_warning_logged:
                logger.warning(
                    "Realtime backend unavailable while broadcasting %s presence update; operating in local-only mode",
                    action,
                    exc_info=logger.isEnabledFor(logging.DEBUG),
                )
                self._publish_warning_logged = True
            realtime_publish_errors_total.labels("presence", self.backend_label, "unavailable").inc()
        except Exception:
            realtime_publish_errors_total.labels("presence", self.backend_label, "error").inc()
            logger.exception("Unexpected error while broadcasting %s presence update", action)
        else:
            self._publish_warning_logged = False
            realtime_events_total.labels("presence", "out", action).inc()


__all__ = ["PresenceBroadcaster"]
