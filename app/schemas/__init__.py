"""Pydantic schemas for realtime payloads."""

from .signaling import (
    AnswerFrame,
    CallControlFrame,
    IceCandidateFrame,
    InboundFrame,
    InitiateCallFrame,
    JoinGroupsFrame,
    LeaveGroupFrame,
    OfferFrame,
    SUPPORTED_FRAME_TYPES,
    parse_signaling_frame,
)

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
    "parse_signaling_frame",
]
