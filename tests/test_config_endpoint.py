from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.config import Settings, get_settings


def test_webrtc_config_exposes_turn_credentials_and_call_timing(client: TestClient) -> None:
    settings = get_settings()
    original_servers = settings.webrtc_turn_servers
    original_username = settings.webrtc_turn_username
    original_credential = settings.webrtc_turn_credential
    settings.webrtc_turn_servers = ["turn:voice.example:3478"]
    settings.webrtc_turn_username = "voice-user"
    settings.webrtc_turn_credential = "temporary-secret"
    try:
        response = client.get("/api/config/webrtc")
    finally:
        settings.webrtc_turn_servers = original_servers
        settings.webrtc_turn_username = original_username
        settings.webrtc_turn_credential = original_credential

    assert response.status_code == 200, response.text
    payload = response.json()

    assert {
        "urls": ["turn:voice.example:3478"],
        "username": "voice-user",
        "credential": "temporary-secret",
    } in payload["iceServers"]
    assert payload["ringTimeoutSeconds"] == settings.call_ring_timeout_seconds
    assert payload["incomingCallTimeoutSeconds"] == settings.call_incoming_timeout_seconds


def test_webrtc_config_defaults_to_public_stun() -> None:
    settings = Settings(_env_file=None)

    assert settings.webrtc_ice_servers_payload == [
        {"urls": ["stun:stun.l.google.com:19302", "stun:stun1.l.google.com:19302"]}
    ]
    assert settings.call_ring_timeout_seconds == 30
    assert settings.call_incoming_timeout_seconds == 45


def test_settings_parse_comma_separated_environment(monkeypatch) -> None:
    monkeypatch.setenv("WEBRTC_STUN_SERVERS", "stun:a.example:3478, stun:b.example:3478")
    monkeypatch.setenv("WEBRTC_ICE_SERVERS", '["stun:c.example", {"urls": "turn:d.example", "username": "u"}]')
    monkeypatch.setenv("CORS_ORIGINS", "http://one.example,http://two.example")
    monkeypatch.setenv("REALTIME_BACKEND_PREFERENCE", "NATS")

    settings = Settings(_env_file=None)

    assert settings.webrtc_ice_servers_payload == [
        {"urls": ["stun:c.example"]},
        {"urls": ["turn:d.example"], "username": "u"},
        {"urls": ["stun:a.example:3478", "stun:b.example:3478"]},
    ]
    assert [str(origin).rstrip("/") for origin in settings.cors_origins] == [
        "http://one.example",
        "http://two.example",
    ]
    assert settings.realtime_backend_preference == "nats"


def test_settings_reject_unknown_backend(monkeypatch) -> None:
    monkeypatch.setenv("REALTIME_BACKEND_PREFERENCE", "kafka")

    with pytest.raises(ValueError):
        Settings(_env_file=None)


def test_health_and_presence_endpoints(client: TestClient) -> None:
    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "ok"

    presence = client.get("/api/presence")
    assert presence.status_code == 200
    assert presence.json() == {"users": []}
