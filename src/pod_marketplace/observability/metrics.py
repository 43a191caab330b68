"""Prometheus metrics for the event bus and deferred workers."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    start_http_server,
)

# ---------------------------------------------------------------------------
# System metrics
# ---------------------------------------------------------------------------

SYSTEM_INFO = Info("pod_marketplace", "Marketplace process information")

# ---------------------------------------------------------------------------
# Event bus metrics
# ---------------------------------------------------------------------------

EVENTS_PUBLISHED = Counter(
    "pod_events_published_total",
    "Domain events published",
    ["event_name"],
)

DEFERRED_TASKS_ENQUEUED = Counter(
    "pod_deferred_tasks_enqueued_total",
    "Deferred handler tasks enqueued",
    ["event_name"],
)

HANDLER_FAILURES = Counter(
    "pod_handler_failures_total",
    "Event handler failures",
    ["event_name", "handler_id", "mode"],
)

DEFERRED_TASKS_PROCESSED = Counter(
    "pod_deferred_tasks_processed_total",
    "Deferred handler tasks completed successfully",
    ["event_name", "handler_id"],
)

DEAD_LETTERS = Counter(
    "pod_dead_letters_total",
    "Deferred tasks that exhausted their retry budget",
    ["event_name", "handler_id"],
)

DEFERRED_HANDLER_SECONDS = Histogram(
    "pod_deferred_handler_seconds",
    "Deferred handler execution time",
    ["handler_id"],
)


def start_metrics_server(port: int = 9090, role: str = "unknown") -> None:
    """Start Prometheus metrics HTTP server in a background thread."""
    SYSTEM_INFO.info({
        "version": "0.1.0",
        "role": role,
    })
    start_http_server(port)


# ---------------------------------------------------------------------------
# Convenience helpers
# ---------------------------------------------------------------------------


def record_published(event_name: str) -> None:
    EVENTS_PUBLISHED.labels(event_name=event_name).inc()


def record_enqueued(event_name: str, count: int) -> None:
    if count:
        DEFERRED_TASKS_ENQUEUED.labels(event_name=event_name).inc(count)


def record_handler_failure(event_name: str, handler_id: str, mode: str) -> None:
    HANDLER_FAILURES.labels(
        event_name=event_name, handler_id=handler_id, mode=mode,
    ).inc()


def record_task_processed(event_name: str, handler_id: str, seconds: float) -> None:
    DEFERRED_TASKS_PROCESSED.labels(event_name=event_name, handler_id=handler_id).inc()
    DEFERRED_HANDLER_SECONDS.labels(handler_id=handler_id).observe(seconds)


def record_dead_letter(event_name: str, handler_id: str) -> None:
    """Record a deferred task moved to the dead-letter store."""
    DEAD_LETTERS.labels(event_name=event_name, handler_id=handler_id).inc()
