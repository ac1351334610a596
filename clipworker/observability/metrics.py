"""
Prometheus metrics collection.

Counters are process-local; every worker exposes its own endpoint.
"""

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
    start_http_server,
)

from clipworker.constants import (
    METRIC_CLAIM_ERRORS,
    METRIC_CLAIMS,
    METRIC_HEARTBEAT_FAILURES,
    METRIC_RECORD_DURATION,
    METRIC_RECORDS_FINISHED,
    METRIC_RETRIES,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for a worker process.

    Collects metrics for:
    - Successful claims and claim errors per queue
    - Finished records and processing duration per queue and outcome
    - Retries per queue
    - Heartbeat failures
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.claims = Counter(
            METRIC_CLAIMS,
            "Total number of records claimed",
            ["queue"],
            registry=self._registry,
        )

        self.claim_errors = Counter(
            METRIC_CLAIM_ERRORS,
            "Total number of claim attempts that failed on store errors",
            ["queue"],
            registry=self._registry,
        )

        self.records_finished = Counter(
            METRIC_RECORDS_FINISHED,
            "Total number of records that left PROCESSING",
            ["queue", "status"],
            registry=self._registry,
        )

        self.record_duration = Histogram(
            METRIC_RECORD_DURATION,
            "Record processing duration in seconds",
            ["queue", "status"],
            buckets=(1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0),
            registry=self._registry,
        )

        self.retries = Counter(
            METRIC_RETRIES,
            "Total number of records requeued for retry",
            ["queue"],
            registry=self._registry,
        )

        self.heartbeat_failures = Counter(
            METRIC_HEARTBEAT_FAILURES,
            "Total number of failed heartbeat writes",
            registry=self._registry,
        )

    def record_claim(self, queue: str) -> None:
        self.claims.labels(queue=queue).inc()

    def record_claim_error(self, queue: str) -> None:
        self.claim_errors.labels(queue=queue).inc()

    def record_finished(self, queue: str, status: str, duration_seconds: float) -> None:
        """Record a record leaving PROCESSING with its final status for this run."""
        self.records_finished.labels(queue=queue, status=status).inc()
        self.record_duration.labels(queue=queue, status=status).observe(duration_seconds)

    def record_retry(self, queue: str) -> None:
        self.retries.labels(queue=queue).inc()

    def record_heartbeat_failure(self) -> None:
        self.heartbeat_failures.inc()

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)


def setup_metrics(port: int | None = None) -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Args:
        port: When given, also serve the metrics over HTTP on this port.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    if port is not None:
        start_http_server(port)
    return _metrics


def get_metrics() -> MetricsCollector:
    """Get the metrics collector instance, creating it on first use."""
    if _metrics is None:
        return setup_metrics()
    return _metrics
