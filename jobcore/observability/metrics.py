"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from jobcore.constants import (
    METRIC_API_LATENCY,
    METRIC_API_REQUESTS,
    METRIC_JOB_DURATION,
    METRIC_JOB_RETRIES,
    METRIC_JOBS_ENQUEUED,
    METRIC_JOBS_FINISHED,
    METRIC_LEASE_ACQUIRED,
    METRIC_LEASE_LOST,
    METRIC_LEASE_RACE_LOST,
    METRIC_LEASE_RECLAIMED,
    METRIC_POLL_ERRORS,
    METRIC_PROCESSING_JOBS,
    METRIC_QUEUE_DEPTH,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job core.

    Collects metrics for:
    - Queue depth and processing occupancy per queue
    - Enqueues, retries and terminal outcomes
    - Handler execution duration
    - Lease claims, race losses, reclamations and lost leases
    - Poll loop errors (storage unavailable and similar)
    - Admin API requests
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of pending jobs in the queue",
            ["queue"],
            registry=self._registry,
        )

        self.processing_jobs = Gauge(
            METRIC_PROCESSING_JOBS,
            "Number of jobs holding a lease in the queue",
            ["queue"],
            registry=self._registry,
        )

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            ["queue", "job_type"],
            registry=self._registry,
        )

        self.jobs_finished = Counter(
            METRIC_JOBS_FINISHED,
            "Total number of jobs that reached a terminal state",
            ["queue", "job_type", "status"],
            registry=self._registry,
        )

        self.job_retries = Counter(
            METRIC_JOB_RETRIES,
            "Total number of retries scheduled",
            ["queue", "job_type"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Handler execution duration in seconds",
            ["queue", "status"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
            registry=self._registry,
        )

        self.lease_acquired = Counter(
            METRIC_LEASE_ACQUIRED,
            "Total number of leases acquired",
            ["queue", "worker_id"],
            registry=self._registry,
        )

        self.lease_race_lost = Counter(
            METRIC_LEASE_RACE_LOST,
            "Claims that lost the race to another worker or hit the queue cap",
            ["queue"],
            registry=self._registry,
        )

        self.lease_reclaimed = Counter(
            METRIC_LEASE_RECLAIMED,
            "Leases taken over after going stale",
            ["queue"],
            registry=self._registry,
        )

        self.lease_lost = Counter(
            METRIC_LEASE_LOST,
            "Outcome write-backs rejected because the lease was no longer held",
            ["queue"],
            registry=self._registry,
        )

        self.poll_errors = Counter(
            METRIC_POLL_ERRORS,
            "Poll ticks that failed, usually because storage was unavailable",
            ["queue"],
            registry=self._registry,
        )

        self.api_requests = Counter(
            METRIC_API_REQUESTS,
            "Total number of API requests",
            ["method", "endpoint", "status"],
            registry=self._registry,
        )

        self.api_latency = Histogram(
            METRIC_API_LATENCY,
            "API request latency in seconds",
            ["method", "endpoint"],
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
            registry=self._registry,
        )

    def record_job_enqueued(self, queue: str, job_type: str) -> None:
        """Record a job enqueue."""
        self.jobs_enqueued.labels(queue=queue, job_type=job_type).inc()

    def record_job_finished(self, queue: str, job_type: str, status: str) -> None:
        """Record a job reaching COMPLETED or FAILED."""
        self.jobs_finished.labels(queue=queue, job_type=job_type, status=status).inc()

    def record_job_retry(self, queue: str, job_type: str) -> None:
        """Record a retry being scheduled."""
        self.job_retries.labels(queue=queue, job_type=job_type).inc()

    def record_job_duration(self, queue: str, status: str, duration_seconds: float) -> None:
        """Record how long a handler ran."""
        self.job_duration.labels(queue=queue, status=status).observe(duration_seconds)

    def record_lease_acquired(self, queue: str, worker_id: str, count: int = 1) -> None:
        """Record lease acquisition."""
        self.lease_acquired.labels(queue=queue, worker_id=worker_id).inc(count)

    def record_lease_race_lost(self, queue: str) -> None:
        self.lease_race_lost.labels(queue=queue).inc()

    def record_lease_reclaimed(self, queue: str) -> None:
        self.lease_reclaimed.labels(queue=queue).inc()

    def record_lease_lost(self, queue: str) -> None:
        self.lease_lost.labels(queue=queue).inc()

    def record_poll_error(self, queue: str) -> None:
        self.poll_errors.labels(queue=queue).inc()

    def update_queue_occupancy(self, queue: str, pending: int, processing: int) -> None:
        """Update depth and processing gauges for a queue."""
        self.queue_depth.labels(queue=queue).set(pending)
        self.processing_jobs.labels(queue=queue).set(processing)

    def record_api_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration_seconds: float,
    ) -> None:
        """Record an API request."""
        self.api_requests.labels(
            method=method,
            endpoint=endpoint,
            status=str(status),
        ).inc()
        self.api_latency.labels(method=method, endpoint=endpoint).observe(
            duration_seconds
        )

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
