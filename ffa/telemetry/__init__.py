"""
Telemetry Module

Prometheus metrics for feed ingestion, identity resolution and refresh runs.
"""

from ffa.telemetry.metrics import (
    feed_requests_total,
    feed_errors_total,
    feed_latency_ms,
    feed_coalesced_total,
    feed_stale_served_total,
    identifier_mismatch_total,
    refresh_runs_total,
    refresh_duration_ms,
    record_feed_request,
    record_feed_error,
    record_coalesced_fetch,
    record_stale_served,
    record_identifier_mismatch,
    record_refresh_run,
    get_metrics_text,
)

__all__ = [
    "feed_requests_total",
    "feed_errors_total",
    "feed_latency_ms",
    "feed_coalesced_total",
    "feed_stale_served_total",
    "identifier_mismatch_total",
    "refresh_runs_total",
    "refresh_duration_ms",
    "record_feed_request",
    "record_feed_error",
    "record_coalesced_fetch",
    "record_stale_served",
    "record_identifier_mismatch",
    "record_refresh_run",
    "get_metrics_text",
]
