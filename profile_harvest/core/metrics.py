from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ---------------------------------------------------------------------------
# Scrape operations (search / profile)
# ---------------------------------------------------------------------------
scrape_operations_total = Counter(
    "scrape_operations_total",
    "Total scrape operations by operation and outcome",
    ["operation", "status"],
)
scrape_duration_seconds = Histogram(
    "scrape_duration_seconds",
    "End-to-end duration of a scrape operation, including queueing",
    ["operation"],
    buckets=[0.5, 1, 2, 5, 10, 20, 30, 60, 120],
)
extracted_records_total = Counter(
    "extracted_records_total",
    "Records returned by the extraction pipeline",
    ["operation"],
)

# ---------------------------------------------------------------------------
# Admission gate
# ---------------------------------------------------------------------------
admission_slots_in_use = Gauge(
    "admission_slots_in_use",
    "Number of admission slots currently held",
)
admission_waiters = Gauge(
    "admission_waiters",
    "Number of requests queued for an admission slot",
)
admission_timeouts_total = Counter(
    "admission_timeouts_total",
    "Requests that hit their deadline while still queued for a slot",
)

# ---------------------------------------------------------------------------
# Browser engine
# ---------------------------------------------------------------------------
engine_launches_total = Counter(
    "engine_launches_total",
    "Browser engine launch attempts by outcome",
    ["status"],
)
active_browser_contexts = Gauge(
    "active_browser_contexts",
    "Number of currently open browser contexts",
)
readiness_probe_misses_total = Counter(
    "readiness_probe_misses_total",
    "Readiness probes that ended without any acceptance marker",
    ["operation"],
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
