"""WebSocket endpoint for presence, group rooms and call signalling."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Dict, TypeVar

from fastapi import APIRouter, WebSocket, status
from fastapi.websockets import WebSocketDisconnect, WebSocketState
from pydantic import ValidationError

from chatwave.realtime.connections import Connection, safe_send_json
from chatwave.realtime.managers import get_hub
from chatwave.realtime.rooms import group_room_name

from app.config import get_settings
from app.monitoring.metrics import realtime_events_total
from app.schemas.signaling import (
    SUPPORTED_FRAME_TYPES,
    CallControlFrame,
    InboundFrame,
    InitiateCallFrame,
    JoinGroupsFrame,
    LeaveGroupFrame,
    parse_signaling_frame,
)

router = APIRouter(tags=["ws"])

settings = get_settings()

logger = logging.getLogger(__name__)

hub = get_hub()

T = TypeVar("T")

FrameHandler = Callable[[Connection, InboundFrame, Dict[str, Any]], Awaitable[None]]


async def iter_keepalive_messages(
    websocket: WebSocket,
    receiver: Callable[[], Awaitable[T]],
    *,
    timeout_seconds: float | int | None,
    ping_interval_seconds: float | int | None,
    ping_payload: Dict[str, Any] | None = None,
) -> AsyncIterator[T]:
    """Yield messages from *receiver* while sending keepalive pings when idle."""

    ping_payload = ping_payload or {"type": "ping"}
    timeout = float(timeout_seconds) if timeout_seconds else 0.0
    interval = float(ping_interval_seconds) if ping_interval_seconds else 0.0
    last_activity = time.monotonic()
    last_ping_sent: float | None = None

    while True:
        try:
            if timeout > 0:
                message = await asyncio.wait_for(receiver(), timeout=timeout)
            else:
                message = await receiver()
        except asyncio.TimeoutError:
            if websocket.application_state != WebSocketState.CONNECTED:
                break
            now = time.monotonic()
            idle_long_enough = now - last_activity >= interval
            ping_due = last_ping_sent is None or now - last_ping_sent >= interval
            if interval <= 0 or (idle_long_enough and ping_due):
                if not await safe_send_json(websocket, ping_payload):
                    break
                last_ping_sent = now
            continue
        except (RuntimeError, WebSocketDisconnect):
            break
        else:
            last_activity = time.monotonic()
            last_ping_sent = None
            yield message


async def _send_error(websocket: WebSocket, detail: str) -> None:
    await safe_send_json(websocket, {"type": "error", "detail": detail})


async def _join_groups(connection: Connection, frame: JoinGroupsFrame, _: Dict[str, Any]) -> None:
    await hub.join_rooms(connection, [group_room_name(group_id) for group_id in frame.groups])


async def _leave_group(connection: Connection, frame: LeaveGroupFrame, _: Dict[str, Any]) -> None:
    await hub.leave_room(connection, group_room_name(frame.group))


async def _initiate_call(connection: Connection, frame: InitiateCallFrame, _: Dict[str, Any]) -> None:
    await hub.initiate_call(connection, frame.receiver_id, frame.call_type)


async def _call_control(connection: Connection, frame: CallControlFrame, _: Dict[str, Any]) -> None:
    if frame.type == "acceptCall":
        await hub.accept_call(connection, frame.call_id)
    elif frame.type == "rejectCall":
        await hub.reject_call(connection, frame.call_id)
    else:
        await hub.end_call(connection, frame.call_id)


async def _relay(connection: Connection, frame: Any, raw: Dict[str, Any]) -> None:
    # The original frame is forwarded untouched to the other participant.
    await hub.relay(connection, frame.type, frame.call_id, raw)


FRAME_HANDLERS: dict[str, FrameHandler] = {
    "joinGroups": _join_groups,
    "leaveGroupRoom": _leave_group,
    "initiateCall": _initiate_call,
    "acceptCall": _call_control,
    "rejectCall": _call_control,
    "endCall": _call_control,
    "offer": _relay,
    "answer": _relay,
    "iceCandidate": _relay,
}


async def handle_frame(connection: Connection, raw_message: str) -> None:
    """Decode one text frame and dispatch it to the hub."""

    websocket = connection.websocket
    if not raw_message:
        return
    if raw_message.strip().lower() == "ping":
        await safe_send_json(websocket, {"type": "pong"})
        return
    try:
        payload = json.loads(raw_message)
    except ValueError:
        # JSONDecodeError, or an integer beyond the interpreter digit limit.
        await _send_error(websocket, "Invalid payload")
        return
    if not isinstance(payload, dict):
        await _send_error(websocket, "Invalid payload")
        return

    message_type = payload.get("type")
    if message_type == "ping":
        await safe_send_json(websocket, {"type": "pong"})
        return
    if message_type == "pong":
        return
    if not isinstance(message_type, str) or message_type not in SUPPORTED_FRAME_TYPES:
        await _send_error(websocket, "Unsupported message type")
        return

    try:
        frame = parse_signaling_frame(payload)
    except ValidationError as exc:
        # Malformed call-control is dropped like any other invalid request.
        logger.debug(
            "Dropped malformed %s frame from %s: %s",
            message_type,
            connection.user_id,
            exc.errors(include_url=False),
        )
        realtime_events_total.labels("signaling", "in", "invalid").inc()
        return

    realtime_events_total.labels("signaling", "in", message_type).inc()
    await FRAME_HANDLERS[message_type](connection, frame, payload)


@router.websocket("/ws")
async def websocket_realtime(websocket: WebSocket) -> None:
    """Single realtime channel per client, identified by the ``userId`` query parameter."""

    user_id = (websocket.query_params.get("userId") or "").strip()
    if not user_id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Missing user identity")
        return

    await websocket.accept()
    connection = await hub.connect(user_id, websocket)
    logger.info("User %s connected", user_id)
    try:
        async for raw_message in iter_keepalive_messages(
            websocket,
            websocket.receive_text,
            timeout_seconds=settings.websocket_keepalive_timeout_seconds,
            ping_interval_seconds=settings.websocket_keepalive_ping_interval_seconds,
        ):
            await handle_frame(connection, raw_message)
    finally:
        await hub.disconnect(connection)
        logger.info("User %s disconnected", user_id)
