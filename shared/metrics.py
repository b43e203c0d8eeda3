"""Prometheus metrics for sync and view observability.

Counters and histograms at each sync stage.
Exposed via /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, make_asgi_app

# Sync counters
sync_samples_total = Counter(
    "sync_samples_total",
    "Total samples processed by the sync orchestrator",
    ["metric", "status"],  # status: inserted, updated, dropped
)

sync_failures_total = Counter(
    "sync_failures_total",
    "Total provider calls that failed during sync",
    ["metric", "reason"],  # reason: not_authenticated, transient
)

view_recomputations_total = Counter(
    "view_recomputations_total",
    "Total derived view recomputations published",
    ["view"],
)

# API counters
api_requests_total = Counter(
    "api_requests_total",
    "Total API requests",
    ["endpoint", "method", "status_code"],
)

# Histograms
provider_call_duration_seconds = Histogram(
    "provider_call_duration_seconds",
    "Duration of provider API calls",
    ["metric"],
)

sync_duration_seconds = Histogram(
    "sync_duration_seconds",
    "Duration of one metric sync (fetch + merge + upsert)",
    ["metric"],
)

api_response_duration_seconds = Histogram(
    "api_response_duration_seconds",
    "Duration of API responses",
    ["endpoint"],
)


def create_metrics_app():
    """Create ASGI app for /metrics endpoint."""
    return make_asgi_app()
