"""
Logging, Prometheus metrics and OpenTelemetry tracing for jobcore processes.

Both entry points call setup_logging(), setup_metrics() and setup_tracing()
before anything else; library code only needs the getters.
"""

from jobcore.observability.logging import bind_context, setup_logging
from jobcore.observability.metrics import MetricsCollector, get_metrics, setup_metrics
from jobcore.observability.tracing import get_tracer, setup_tracing

__all__ = [
    "MetricsCollector",
    "bind_context",
    "get_metrics",
    "get_tracer",
    "setup_logging",
    "setup_metrics",
    "setup_tracing",
]
