"""Process-wide realtime hub and its startup/shutdown helpers."""

from __future__ import annotations

import logging
import uuid

from app.config import get_settings

from .hub import RealtimeHub
from .transport import BrokerConfig, RedisNATSTransport, TransportUnavailableError


logger = logging.getLogger(__name__)


settings = get_settings()

_node_id = settings.realtime_node_id or uuid.uuid4().hex

transport = RedisNATSTransport(
    BrokerConfig(
        redis_url=settings.realtime_redis_url,
        nats_url=settings.realtime_nats_url,
        prefix=settings.realtime_namespace,
        node_id=_node_id,
    )
)

hub = RealtimeHub(
    transport,
    node_id=_node_id,
    backend=settings.realtime_backend_preference,
    ring_timeout=float(settings.call_ring_timeout_seconds),
)


async def startup_realtime() -> None:
    if transport.configured:
        try:
            await transport.start()
        except (TransportUnavailableError, OSError):
            logger.warning(
                "Realtime backend unavailable during startup; continuing without cross-node sync",
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
    await hub.start()


async def shutdown_realtime() -> None:
    await hub.stop()
    await transport.stop()


def get_hub() -> RealtimeHub:
    return hub


__all__ = [
    "get_hub",
    "hub",
    "shutdown_realtime",
    "startup_realtime",
]
