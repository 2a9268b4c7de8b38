"""Presence snapshot endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from app.services.realtime_events import online_users

router = APIRouter(prefix="/presence", tags=["presence"])


@router.get("")
def read_online_users() -> dict[str, list[str]]:
    return {"users": online_users()}
