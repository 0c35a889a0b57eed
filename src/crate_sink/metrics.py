"""
Prometheus collectors for the shipping pipelines.
Registered in the global REGISTRY on import.
"""

from prometheus_client import Counter, Gauge, Histogram

ROWS_BUFFERED_TOTAL = Counter(
    "crate_sink_rows_buffered_total",
    "Rows appended to the pipeline buffer",
    ["pipeline"],
)

RECORDS_SKIPPED_TOTAL = Counter(
    "crate_sink_records_skipped_total",
    "Records or metric lines skipped as malformed",
    ["pipeline"],
)

FLUSH_TOTAL = Counter(
    "crate_sink_flush_total",
    "Flush attempts by outcome",
    ["pipeline", "outcome"],
)

ROWS_DROPPED_TOTAL = Counter(
    "crate_sink_rows_dropped_total",
    "Buffered rows discarded after the retry budget was exhausted or shutdown failed",
    ["pipeline"],
)

FLUSH_LATENCY_SECONDS = Histogram(
    "crate_sink_flush_latency_seconds",
    "Bulk write round trip in seconds",
    ["pipeline"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10],
)

BUFFER_ROWS = Gauge(
    "crate_sink_buffer_rows",
    "Rows currently held in the pipeline buffer",
    ["pipeline"],
)


class MetricsRegistry:
    """Groups the pipeline collectors so components can take them as one object."""

    rows_buffered_total = ROWS_BUFFERED_TOTAL
    records_skipped_total = RECORDS_SKIPPED_TOTAL
    flush_total = FLUSH_TOTAL
    rows_dropped_total = ROWS_DROPPED_TOTAL
    flush_latency_seconds = FLUSH_LATENCY_SECONDS
    buffer_rows = BUFFER_ROWS


# Singleton instance
metrics_registry = MetricsRegistry()
