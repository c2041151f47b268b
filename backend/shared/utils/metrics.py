"""
Lightweight metrics collection for the Telelistings aggregator.
Wraps prometheus_client with async-safe patterns.
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from prometheus_client import Counter, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
SOURCE_REQUESTS = Counter(
    "tl_source_requests_total",
    "Total upstream HTTP requests made by source adapters",
    ["source", "status"],
)
SOURCE_RESULTS = Counter(
    "tl_source_results_total",
    "Adapter outcomes at the never-raise boundary",
    ["source", "outcome"],
)
SOURCE_CANDIDATES = Counter(
    "tl_source_candidates_total",
    "Candidates returned by source adapters",
    ["source"],
)
CACHE_LOOKUPS = Counter(
    "tl_cache_lookups_total",
    "Cache lookups by outcome (fresh, refreshed, stale_fallback, miss_failed)",
    ["outcome"],
)
BATCH_ABORTS = Counter(
    "tl_batch_aborts_total",
    "Rate-limited batches stopped early on HTTP 429",
    ["batch"],
)
AGGREGATIONS = Counter(
    "tl_aggregations_total",
    "Completed aggregate() calls by whether any source contributed",
    ["result"],
)

# ── Histograms ──────────────────────────────────────────────────────────
SOURCE_LATENCY = Histogram(
    "tl_source_latency_seconds",
    "Adapter fetch latency in seconds",
    ["source"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)


@asynccontextmanager
async def atrack_latency(histogram: Histogram, **labels: str) -> AsyncIterator[None]:
    """Async context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        histogram.labels(**labels).observe(elapsed)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
