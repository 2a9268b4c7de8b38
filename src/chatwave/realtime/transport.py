"""Cross-node pub/sub transport for presence and notification fan-out."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import nats
import redis.asyncio as redis_asyncio
from nats.errors import Error as NatsError
from redis.exceptions import RedisError

from app.monitoring.metrics import realtime_transport_restarts_total


logger = logging.getLogger(__name__)

_REDIS_ERRORS: tuple[type[BaseException], ...] = (
    RedisError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)
_NATS_ERRORS: tuple[type[BaseException], ...] = (
    NatsError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)

_REDIS_RECOVERY_BASE_DELAY = 0.5
_REDIS_RECOVERY_MAX_DELAY = 30.0

PRESENCE_TOPIC = "presence"
EVENTS_TOPIC = "events"

MessageHandler = Callable[[dict[str, Any]], Awaitable[None]]


class TransportUnavailableError(RuntimeError):
    """Raised when publishing to a broker backend that is not configured or reachable."""


@dataclass(slots=True)
class BrokerConfig:
    """Configuration used for wiring the realtime transport layer."""

    redis_url: str | None = None
    nats_url: str | None = None
    prefix: str = "chatwave.realtime"
    node_id: str | None = None


class Subscription:
    """Handle returned when subscribing to a broker topic."""

    def __init__(self, name: str, cleanup: Callable[[], Awaitable[None]]) -> None:
        self._name = name
        self._cleanup = cleanup
        self._closed = False

    @property
    def name(self) -> str:
        return self._name

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._cleanup()


@dataclass(slots=True)
class _RedisReader:
    channel: str
    handler: MessageHandler
    pubsub: Any | None = None
    task: asyncio.Task[Any] | None = None
    active: bool = True


def _decode(raw: Any, source: str) -> dict[str, Any] | None:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str):
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarded malformed realtime payload", extra={"source": source})
        return None
    return payload if isinstance(payload, dict) else None


class RedisNATSTransport:
    """Pub/sub helper built on top of Redis and optionally NATS."""

    def __init__(self, config: BrokerConfig) -> None:
        self._config = config
        self._redis: Any | None = None
        self._readers: list[_RedisReader] = []
        self._recovery_task: asyncio.Task[Any] | None = None
        self._recovery_lock = asyncio.Lock()
        self._nats: Any | None = None
        self._nats_subscriptions: list[Subscription] = []

    @property
    def node_id(self) -> str | None:
        return self._config.node_id

    @property
    def configured(self) -> bool:
        return bool(self._config.redis_url or self._config.nats_url)

    async def start(self) -> None:
        if self._config.redis_url and self._redis is None:
            await self._connect_redis()
        if self._config.nats_url and (self._nats is None or not self._nats.is_connected):
            try:
                self._nats = await nats.connect(self._config.nats_url, name=self._config.node_id)
            except Exception:  # pragma: no cover - connection errors are not deterministic
                logger.exception("Failed to connect to NATS realtime backend")
                raise

    async def stop(self) -> None:
        for reader in list(self._readers):
            await self._close_reader(reader)
        self._readers.clear()
        if self._recovery_task is not None:
            self._recovery_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._recovery_task
            self._recovery_task = None
        for subscription in list(self._nats_subscriptions):
            await subscription.close()
        self._nats_subscriptions.clear()
        if self._redis is not None:
            with contextlib.suppress(Exception):
                await self._redis.aclose()
            self._redis = None
        if self._nats is not None and self._nats.is_connected:
            await self._nats.drain()
        self._nats = None

    # ------------------------------------------------------------------
    # Publishing / subscribing
    # ------------------------------------------------------------------
    async def publish(self, topic: str, payload: dict[str, Any], *, backend: str | None = None) -> None:
        target = backend or self._default_backend()
        encoded = json.dumps(payload)
        name = self._qualified(topic)
        if target == "redis":
            if self._redis is None:
                raise TransportUnavailableError("Redis backend is not connected")
            try:
                await self._redis.publish(name, encoded)
            except _REDIS_ERRORS as exc:
                self._trigger_recovery("publish_failed")
                raise TransportUnavailableError("Redis backend is unavailable") from exc
            return
        if target == "nats":
            if self._nats is None or not self._nats.is_connected:
                raise TransportUnavailableError("NATS backend is not connected")
            try:
                await self._nats.publish(name, encoded.encode("utf-8"))
            except _NATS_ERRORS as exc:  # pragma: no cover - depends on the broker
                raise TransportUnavailableError("NATS backend is unavailable") from exc
            return
        raise TransportUnavailableError(f"Unsupported backend '{target}'")

    async def subscribe(
        self, topic: str, handler: MessageHandler, *, backend: str | None = None
    ) -> Subscription:
        target = backend or self._default_backend()
        name = self._qualified(topic)
        if target == "redis":
            if self._redis is None:
                raise TransportUnavailableError("Redis backend is not connected")
            reader = _RedisReader(channel=name, handler=handler)
            self._readers.append(reader)
            try:
                await self._attach_reader(reader)
            except TransportUnavailableError:
                await self._close_reader(reader)
                raise

            async def cleanup() -> None:
                await self._close_reader(reader)

            return Subscription(name, cleanup)

        if target == "nats":
            if self._nats is None or not self._nats.is_connected:
                raise TransportUnavailableError("NATS backend is not connected")

            async def callback(message: Any) -> None:  # pragma: no cover - depends on the broker
                payload = _decode(message.data, name)
                if payload is not None:
                    await handler(payload)

            nats_subscription = await self._nats.subscribe(name, cb=callback)

            async def cleanup() -> None:
                with contextlib.suppress(Exception):
                    await nats_subscription.unsubscribe()

            wrapper = Subscription(name, cleanup)
            self._nats_subscriptions.append(wrapper)
            return wrapper

        raise TransportUnavailableError(f"Unsupported backend '{target}'")

    # ------------------------------------------------------------------
    # Redis internals
    # ------------------------------------------------------------------
    async def _connect_redis(self) -> None:
        client = redis_asyncio.from_url(
            self._config.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        try:
            await client.ping()
        except _REDIS_ERRORS as exc:
            with contextlib.suppress(Exception):
                await client.aclose()
            raise TransportUnavailableError("Redis backend is unavailable") from exc
        self._redis = client

    async def _attach_reader(self, reader: _RedisReader) -> None:
        if self._redis is None:
            raise TransportUnavailableError("Redis backend is not connected")
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(reader.channel)
        except _REDIS_ERRORS as exc:
            with contextlib.suppress(Exception):
                await pubsub.aclose()
            raise TransportUnavailableError("Redis backend is unavailable") from exc
        reader.pubsub = pubsub

        async def listen() -> None:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                payload = _decode(message.get("data"), reader.channel)
                if payload is None:
                    continue
                try:
                    await reader.handler(payload)
                except Exception:
                    logger.exception("Realtime handler failed", extra={"channel": reader.channel})

        reader.task = asyncio.create_task(listen(), name=f"realtime-redis-{reader.channel}")
        reader.task.add_done_callback(lambda task: self._on_reader_done(reader, task))

    def _on_reader_done(self, reader: _RedisReader, task: asyncio.Task[Any]) -> None:
        reader.task = None
        if not reader.active or task.cancelled():
            return
        exc = task.exception()
        logger.warning(
            "Redis subscription reader stopped; scheduling recovery",
            exc_info=exc,
            extra={"channel": reader.channel},
        )
        self._trigger_recovery("reader_stopped")

    async def _close_reader(self, reader: _RedisReader) -> None:
        reader.active = False
        await self._pause_reader(reader)
        if reader in self._readers:
            self._readers.remove(reader)

    async def _pause_reader(self, reader: _RedisReader) -> None:
        task, reader.task = reader.task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        pubsub, reader.pubsub = reader.pubsub, None
        if pubsub is not None:
            with contextlib.suppress(Exception):
                await pubsub.unsubscribe(reader.channel)
            with contextlib.suppress(Exception):
                await pubsub.aclose()

    def _trigger_recovery(self, reason: str) -> None:
        if not self._config.redis_url:
            return
        if self._recovery_task is not None and not self._recovery_task.done():
            return
        logger.info("Scheduling Redis realtime recovery", extra={"reason": reason})
        self._recovery_task = asyncio.create_task(
            self._recover(reason), name="realtime-redis-recovery"
        )

    async def _recover(self, reason: str) -> None:
        attempt = 0
        while True:
            delay = min(_REDIS_RECOVERY_BASE_DELAY * (2**attempt), _REDIS_RECOVERY_MAX_DELAY)
            await asyncio.sleep(delay)
            try:
                await self._restart_redis()
            except Exception:
                attempt += 1
                logger.warning(
                    "Redis realtime recovery attempt failed",
                    extra={"attempt": attempt, "reason": reason},
                    exc_info=logger.isEnabledFor(logging.DEBUG),
                )
                continue
            break
        realtime_transport_restarts_total.labels("redis", reason).inc()
        logger.info(
            "Redis realtime backend recovered",
            extra={"reason": reason, "subscriptions": len(self._readers)},
        )

    async def _restart_redis(self) -> None:
        async with self._recovery_lock:
            for reader in self._readers:
                await self._pause_reader(reader)
            if self._redis is not None:
                with contextlib.suppress(Exception):
                    await self._redis.aclose()
                self._redis = None
            await self._connect_redis()
            for reader in [reader for reader in self._readers if reader.active]:
                await self._attach_reader(reader)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _qualified(self, topic: str) -> str:
        prefix = self._config.prefix.rstrip(".")
        return f"{prefix}.{topic}" if prefix else topic

    def _default_backend(self) -> str:
        if self._config.redis_url:
            return "redis"
        if self._config.nats_url:
            return "nats"
        raise TransportUnavailableError("No realtime backend is configured")


__all__ = [
    "BrokerConfig",
    "EVENTS_TOPIC",
    "MessageHandler",
    "PRESENCE_TOPIC",
    "RedisNATSTransport",
    "Subscription",
    "TransportUnavailableError",
]
