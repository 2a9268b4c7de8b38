"""Configuration endpoints for exposing runtime options to the frontend."""

from __future__ import annotations

from fastapi import APIRouter

from app.config import get_settings

router = APIRouter(prefix="/config", tags=["config"])


@router.get("/webrtc")
def read_webrtc_config() -> dict[str, object]:
    """Expose ICE servers and call timing so clients do not hardcode them."""

    settings = get_settings()
    return {
        "iceServers": settings.webrtc_ice_servers_payload,
        "ringTimeoutSeconds": settings.call_ring_timeout_seconds,
        "incomingCallTimeoutSeconds": settings.call_incoming_timeout_seconds,
    }
