"""Metric definitions for the realtime signalling service."""

from __future__ import annotations

from .registry import registry


realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of active websocket connections handled locally.",
    label_names=("scope",),
)

realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of realtime messages processed by the websocket hub.",
    label_names=("topic", "direction", "action"),
)

realtime_publish_errors_total = registry.counter(
    "realtime_publish_errors_total",
    "Number of failed attempts to publish realtime events to the broker.",
    label_names=("topic", "backend", "reason"),
)

realtime_subscriptions = registry.gauge(
    "realtime_pubsub_subscriptions",
    "Number of active broker subscriptions.",
    label_names=("topic", "backend"),
)

realtime_transport_restarts_total = registry.counter(
    "realtime_transport_restarts_total",
    "Number of times the broker transport reconnected after a failure.",
    label_names=("backend", "reason"),
)

call_sessions_active = registry.gauge(
    "call_sessions_active",
    "Number of call sessions currently ringing or in progress.",
)

call_transitions_total = registry.counter(
    "call_transitions_total",
    "Call lifecycle transitions applied by the signalling router.",
    label_names=("event",),
)

call_requests_dropped_total = registry.counter(
    "call_requests_dropped_total",
    "Call-control and relay requests ignored by the signalling router.",
    label_names=("operation", "reason"),
)
