"""Prometheus metrics for the outbox relay.

Everything registers on the dedicated ``REGISTRY`` so the admin app can
expose exactly these series and tests can read them back.
"""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

REGISTRY = CollectorRegistry()

# Covers broker round-trips from 1ms to 10s
PUBLISH_LATENCY_BUCKETS = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

# ============================================================================
# Outbox lifecycle
# ============================================================================

outbox_events_enqueued_total = Counter(
    "outbox_events_enqueued_total",
    "Events written to the outbox by producers (counted at enqueue, before commit).",
    ["topic", "event_type"],
    registry=REGISTRY,
)

outbox_events_claimed_total = Counter(
    "outbox_events_claimed_total",
    "Events claimed by a dispatcher (pending -> processing).",
    registry=REGISTRY,
)

outbox_events_published_total = Counter(
    "outbox_events_published_total",
    "Events acknowledged as published.",
    ["topic"],
    registry=REGISTRY,
)

outbox_publish_failures_total = Counter(
    "outbox_publish_failures_total",
    "Failed publish attempts, by failure kind (error, timeout).",
    ["topic", "reason"],
    registry=REGISTRY,
)

outbox_events_dead_lettered_total = Counter(
    "outbox_events_dead_lettered_total",
    "Events moved to failed after exhausting their retries.",
    ["topic"],
    registry=REGISTRY,
)

outbox_stale_released_total = Counter(
    "outbox_stale_released_total",
    "Processing events released back to pending after their claim went stale.",
    registry=REGISTRY,
)

outbox_events_swept_total = Counter(
    "outbox_events_swept_total",
    "Published events deleted by the retention sweeper.",
    registry=REGISTRY,
)

outbox_events_replayed_total = Counter(
    "outbox_events_replayed_total",
    "Failed events reset to pending by an operator.",
    registry=REGISTRY,
)

outbox_publish_duration_seconds = Histogram(
    "outbox_publish_duration_seconds",
    "Duration of one publish attempt in seconds.",
    ["topic"],
    buckets=PUBLISH_LATENCY_BUCKETS,
    registry=REGISTRY,
)

outbox_retry_delay_seconds = Histogram(
    "outbox_retry_delay_seconds",
    "Backoff applied before an event becomes eligible again.",
    buckets=(0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0),
    registry=REGISTRY,
)

outbox_dispatch_iterations_total = Counter(
    "outbox_dispatch_iterations_total",
    "Dispatcher loop iterations, by outcome (work, idle, error).",
    ["outcome"],
    registry=REGISTRY,
)

outbox_events_by_status = Gauge(
    "outbox_events_by_status",
    "Rows currently in the outbox, by status (refreshed by the stats endpoint and sweeper).",
    ["status"],
    registry=REGISTRY,
)

# ============================================================================
# Database
# ============================================================================

database_query_duration_seconds = Histogram(
    "database_query_duration_seconds",
    "Database statement duration in seconds.",
    ["operation"],
    buckets=PUBLISH_LATENCY_BUCKETS,
    registry=REGISTRY,
)

__all__ = [
    "REGISTRY",
    "database_query_duration_seconds",
    "outbox_dispatch_iterations_total",
    "outbox_events_by_status",
    "outbox_events_claimed_total",
    "outbox_events_dead_lettered_total",
    "outbox_events_enqueued_total",
    "outbox_events_published_total",
    "outbox_events_replayed_total",
    "outbox_events_swept_total",
    "outbox_publish_duration_seconds",
    "outbox_publish_failures_total",
    "outbox_retry_delay_seconds",
    "outbox_stale_released_total",
]
