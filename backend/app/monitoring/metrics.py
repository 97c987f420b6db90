"""Metric definitions for the realtime layer."""

from __future__ import annotations

from .registry import registry

realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of open websocket connections handled locally.",
    label_names=("scope",),
)

realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of realtime events received from or sent to clients.",
    label_names=("event", "direction"),
)

realtime_delivery_failures_total = registry.counter(
    "realtime_delivery_failures_total",
    "Number of per-connection sends that failed and were skipped.",
    label_names=("scope",),
)

realtime_presence_transitions_total = registry.counter(
    "realtime_presence_transitions_total",
    "Number of users going online or offline.",
    label_names=("state",),
)

realtime_ack_failures_total = registry.counter(
    "realtime_ack_failures_total",
    "Number of event acknowledgments resolved with an error.",
    label_names=("event", "reason"),
)
