"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Iterator

import pytest
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketState

ROOT_DIR = Path(__file__).resolve().parents[1]
for path in (ROOT_DIR, ROOT_DIR / "src"):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from app.main import app


class DummyWebSocket:
    """In-memory stand-in for a connected client socket."""

    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []

    async def send_json(self, payload: dict[str, Any]) -> None:
        if self.application_state != WebSocketState.CONNECTED:
            raise RuntimeError("socket closed")
        self.sent.append(payload)

    def close(self) -> None:
        self.application_state = WebSocketState.DISCONNECTED

    def of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [payload for payload in self.sent if payload.get("type") == message_type]

    def types(self) -> list[str]:
        return [str(payload.get("type")) for payload in self.sent]


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def make_socket():
    """Factory for dummy websockets."""

    return DummyWebSocket


@pytest.fixture()
def client() -> Iterator[TestClient]:
    """Yield a FastAPI TestClient running the app lifespan."""

    with TestClient(app) as test_client:
        yield test_client
