"""Schemas for frames received on the realtime websocket."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, StringConstraints, TypeAdapter

from chatwave.calls.sessions import CallKind


def _coerce_identifier(value: Any) -> Any:
    # Clients send document ids as strings and numeric ids as numbers.
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, str):
        return value.strip()
    return value


Identifier = Annotated[
    str,
    BeforeValidator(_coerce_identifier),
    StringConstraints(min_length=1, max_length=256),
]


def _normalise_call_kind(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


CallKindField = Annotated[CallKind, BeforeValidator(_normalise_call_kind)]


class InboundFrame(BaseModel):
    """Base class for client frames; unknown fields are kept for relaying."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class JoinGroupsFrame(InboundFrame):
    type: Literal["joinGroups"]
    groups: list[Identifier] = Field(default_factory=list, description="Group ids to subscribe to")


class LeaveGroupFrame(InboundFrame):
    type: Literal["leaveGroupRoom"]
    group: Identifier


class InitiateCallFrame(InboundFrame):
    type: Literal["initiateCall"]
    receiver_id: Identifier = Field(alias="receiverId")
    call_type: CallKindField = Field(default=CallKind.VOICE, alias="callType")


class CallControlFrame(InboundFrame):
    type: Literal["acceptCall", "rejectCall", "endCall"]
    call_id: Identifier = Field(alias="callId")


class OfferFrame(InboundFrame):
    type: Literal["offer"]
    call_id: Identifier = Field(alias="callId")
    offer: Any = None


class AnswerFrame(InboundFrame):
    type: Literal["answer"]
    call_id: Identifier = Field(alias="callId")
    answer: Any = None


class IceCandidateFrame(InboundFrame):
    type: Literal["iceCandidate"]
    call_id: Identifier = Field(alias="callId")
    candidate: Any = None


SignalingFrame = Annotated[
    Union[
        JoinGroupsFrame,
        LeaveGroupFrame,
        InitiateCallFrame,
        CallControlFrame,
        OfferFrame,
        AnswerFrame,
        IceCandidateFrame,
    ],
    Field(discriminator="type"),
]

signaling_frame_adapter: TypeAdapter[Any] = TypeAdapter(SignalingFrame)

SUPPORTED_FRAME_TYPES = frozenset(
    {
        "joinGroups",
        "leaveGroupRoom",
        "initiateCall",
        "acceptCall",
        "rejectCall",
        "endCall",
        "offer",
        "answer",
        "iceCandidate",
    }
)


def parse_signaling_frame(payload: dict[str, Any]) -> InboundFrame:
    """Validate a decoded client frame; raises ``pydantic.ValidationError``."""

    return signaling_frame_adapter.validate_python(payload)


__all__ = [
    "AnswerFrame",
    "CallControlFrame",
    "IceCandidateFrame",
    "InboundFrame",
    "InitiateCallFrame",
    "JoinGroupsFrame",
    "LeaveGroupFrame",
    "OfferFrame",
    "SUPPORTED_FRAME_TYPES",
    "SignalingFrame",
    "parse_signaling_frame",
]
