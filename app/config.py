import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Iterable, List

from pydantic import AnyHttpUrl, BaseModel, Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class IceServer(BaseModel):
    """Representation of a WebRTC ICE server configuration."""

    urls: list[str] = Field(default_factory=list, description="ICE server URLs")
    username: str | None = Field(default=None, description="Optional TURN username")
    credential: str | None = Field(default=None, description="Optional TURN credential")

    @field_validator("urls", mode="before")
    @classmethod
    def ensure_list(cls, value: Any) -> list[str]:
        if isinstance(value, str):
            return [value]
        if isinstance(value, (list, tuple, set)):
            return [str(item) for item in value]
        return [] if value is None else [str(value)]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="Chatwave Realtime", description="Human readable service name")
    environment: str = Field(default="development", description="Deployment environment name")
    debug: bool = Field(default=True, description="Enable debug mode")

    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
        description="List of allowed CORS origins",
    )
    cors_allow_origin_regex: str | None = Field(
        default=None,
        description="Optional regular expression that matches allowed CORS origins",
    )

    websocket_keepalive_timeout_seconds: float = Field(
        default=30,
        description="Idle receive timeout after which the server considers sending a ping.",
    )
    websocket_keepalive_ping_interval_seconds: float = Field(
        default=25,
        description="Minimum interval between two server-initiated pings.",
    )

    call_ring_timeout_seconds: float = Field(
        default=30,
        description="How long a call may ring before the server ends it with reason 'timeout'.",
    )
    call_incoming_timeout_seconds: float = Field(
        default=45,
        description="Client-side auto-reject window for incoming calls; advertised, not enforced.",
    )

    webrtc_ice_servers: Annotated[list[IceServer], NoDecode] = Field(
        default_factory=list,
        description="List of ICE (STUN/TURN) servers available to WebRTC peers.",
    )
    webrtc_stun_servers: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Additional STUN endpoints exposed to clients.",
    )
    webrtc_turn_servers: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="TURN endpoints exposed to clients.",
    )
    webrtc_turn_username: str | None = Field(default=None, description="Optional TURN username.")
    webrtc_turn_credential: str | None = Field(default=None, description="Optional TURN credential.")

    realtime_redis_url: str | None = Field(
        default=None,
        description="Redis URL used to share presence and notifications between nodes.",
    )
    realtime_nats_url: str | None = Field(
        default=None,
        description="NATS URL used as an alternative cross-node broker.",
    )
    realtime_namespace: str = Field(
        default="chatwave.realtime",
        description="Prefix applied to broker channels and subjects.",
    )
    realtime_node_id: str | None = Field(
        default=None,
        description="Stable identifier of this node; generated when omitted.",
    )
    realtime_backend_preference: str | None = Field(
        default=None,
        description="Preferred broker backend ('redis' or 'nats').",
    )

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[1] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):  # type: ignore[override]
        if v in (None, ""):
            return []
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, (list, tuple, set)):
            return list(v)
        return v

    @field_validator(
        "webrtc_ice_servers",
        "webrtc_stun_servers",
        "webrtc_turn_servers",
        mode="before",
    )
    @classmethod
    def parse_iterable_field(cls, value: Any, info: ValidationInfo) -> list[Any]:
        if value in (None, ""):
            return []
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
            except json.JSONDecodeError:
                items: list[Any] = [item.strip() for item in value.split(",") if item.strip()]
            else:
                items = parsed if isinstance(parsed, list) else [parsed]
        elif isinstance(value, (list, tuple, set)):
            items = list(value)
        else:
            items = [value]
        if info.field_name == "webrtc_ice_servers":
            # Bare URLs are shorthand for a server entry without credentials.
            return [{"urls": item} if isinstance(item, str) else item for item in items]
        return items

    @field_validator("realtime_backend_preference", mode="before")
    @classmethod
    def normalise_backend(cls, value: Any) -> str | None:
        if value in (None, ""):
            return None
        lowered = str(value).strip().lower()
        if lowered not in {"redis", "nats"}:
            raise ValueError("realtime_backend_preference must be 'redis' or 'nats'")
        return lowered

    def _aggregate_ice_servers(self) -> list[IceServer]:
        def coerce_server(entry: Any) -> IceServer | None:
            if isinstance(entry, IceServer):
                return entry
            if isinstance(entry, dict):
                return IceServer.model_validate(entry)
            if isinstance(entry, str):
                return IceServer(urls=[entry])
            if isinstance(entry, Iterable):
                return IceServer(urls=[str(item) for item in entry])
            return None

        servers: list[IceServer] = []
        for item in self.webrtc_ice_servers:
            server = coerce_server(item)
            if server is not None:
                servers.append(server)

        if self.webrtc_stun_servers:
            servers.append(IceServer(urls=[str(url) for url in self.webrtc_stun_servers]))

        if self.webrtc_turn_servers:
            servers.append(
                IceServer(
                    urls=[str(url) for url in self.webrtc_turn_servers],
                    username=self.webrtc_turn_username,
                    credential=self.webrtc_turn_credential,
                )
            )

        if not servers:
            servers.append(
                IceServer(urls=["stun:stun.l.google.com:19302", "stun:stun1.l.google.com:19302"])
            )

        return servers

    @property
    def webrtc_ice_servers_payload(self) -> list[dict[str, Any]]:
        return [
            server.model_dump(mode="json", exclude_none=True)
            for server in self._aggregate_ice_servers()
        ]


@lru_cache
def get_settings() -> Settings:
    return Settings()
