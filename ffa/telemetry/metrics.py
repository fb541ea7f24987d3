"""
Prometheus metrics for the league engine.

Design principles:
- Low cardinality (controlled labels)
- Best-effort (never block main flow)

ALLOWED LABELS (bounded sets):
- endpoint:     "bootstrap", "league_details", "live", "picks"
- status_code:  "200", "404", "429", "500", "0"
- error_code:   "timeout", "rate_limit", "http_5xx", "http_4xx", "transport"
- namespace:    "entry", "league_entry", "manager", "player"
- status:       "ok", "provider_unavailable", "rate_limited", "error"

FORBIDDEN AS LABELS: manager names, entry ids, player ids, periods.
Use logs for those.
"""

import logging

from prometheus_client import (
    Counter,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY,
)

logger = logging.getLogger(__name__)

# =============================================================================
# FEED METRICS
# =============================================================================

feed_requests_total = Counter(
    "ffa_feed_requests_total",
    "Total requests to the live feed provider",
    ["endpoint", "status_code"],
)

feed_errors_total = Counter(
    "ffa_feed_errors_total",
    "Total errors from the live feed provider",
    ["endpoint", "error_code"],
)

feed_latency_ms = Histogram(
    "ffa_feed_latency_ms",
    "Feed request latency in milliseconds",
    ["endpoint"],
    buckets=[10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000],
)

feed_coalesced_total = Counter(
    "ffa_feed_coalesced_total",
    "Period fetches that joined an in-flight request instead of starting one",
)

feed_stale_served_total = Counter(
    "ffa_feed_stale_served_total",
    "Times last-known-good data was served because the provider was unavailable",
    ["reason"],
)

identifier_mismatch_total = Counter(
    "ffa_identifier_mismatch_total",
    "References excluded because they could not be resolved",
    ["namespace"],
)

# =============================================================================
# REFRESH METRICS
# =============================================================================

refresh_runs_total = Counter(
    "ffa_refresh_runs_total",
    "Refresh trigger runs by outcome",
    ["status"],
)

refresh_duration_ms = Histogram(
    "ffa_refresh_duration_ms",
    "Refresh trigger duration in milliseconds",
    buckets=[50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000],
)


def record_feed_request(endpoint: str, status_code: int, latency_ms: float) -> None:
    """Record a feed request with its latency."""
    try:
        feed_requests_total.labels(endpoint=endpoint, status_code=str(status_code)).inc()
        feed_latency_ms.labels(endpoint=endpoint).observe(latency_ms)
    except Exception as e:
        logger.warning(f"Failed to record feed request metric: {e}")


def record_feed_error(endpoint: str, error_code: str) -> None:
    """Record a feed error."""
    try:
        feed_errors_total.labels(endpoint=endpoint, error_code=error_code).inc()
    except Exception as e:
        logger.warning(f"Failed to record feed error metric: {e}")


def record_coalesced_fetch() -> None:
    try:
        feed_coalesced_total.inc()
    except Exception as e:
        logger.warning(f"Failed to record coalesced fetch metric: {e}")


def record_stale_served(reason: str) -> None:
    try:
        feed_stale_served_total.labels(reason=reason).inc()
    except Exception as e:
        logger.warning(f"Failed to record stale serve metric: {e}")


def record_identifier_mismatch(namespace: str) -> None:
    try:
        identifier_mismatch_total.labels(namespace=namespace).inc()
    except Exception as e:
        logger.warning(f"Failed to record identifier mismatch metric: {e}")


def record_refresh_run(status: str, duration_ms: float) -> None:
    """Record a refresh trigger outcome."""
    try:
        refresh_runs_total.labels(status=status).inc()
        refresh_duration_ms.observe(duration_ms)
    except Exception as e:
        logger.warning(f"Failed to record refresh metric: {e}")


def get_metrics_text() -> tuple[str, str]:
    """
    Generate Prometheus metrics text output.

    Returns:
        Tuple of (content, content_type)
    """
    return generate_latest(REGISTRY).decode("utf-8"), CONTENT_TYPE_LATEST
