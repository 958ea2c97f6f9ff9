"""
VidSync Prometheus metrics, exposed at /metrics via prometheus_client.make_asgi_app().
"""
from __future__ import annotations

from prometheus_client import Counter, Histogram

SYNC_RUNS = Counter(
    "vidsync_sync_runs_total",
    "Playlist reconciliation runs by outcome",
    ["status", "trigger"],
)

SYNC_DURATION = Histogram(
    "vidsync_sync_duration_seconds",
    "Playlist reconciliation wall time",
)

LEASE_DENIED = Counter(
    "vidsync_lease_denied_total",
    "Sync attempts skipped because another worker holds the playlist lease",
)

INVALIDATION_FAILURES = Counter(
    "vidsync_invalidation_failures_total",
    "Cache invalidation failures per layer",
    ["layer"],
)

WEBHOOK_REQUESTS = Counter(
    "vidsync_webhook_requests_total",
    "WebSub notifications by outcome",
    ["state"],
)

YOUTUBE_RETRIES = Counter(
    "vidsync_youtube_retries_total",
    "Retried YouTube Data API requests",
    ["status"],
)
