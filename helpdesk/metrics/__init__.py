"""In-process metrics served on ``/metrics`` in Prometheus text format."""
from .definitions import HELPDESK_METRICS, MetricDefinition, MetricKind
from .exporters import PrometheusExporter
from .primitives import Counter, Histogram
from .registry import MetricsRegistry

# Process-wide registry used by the service and the /metrics route.
metrics_registry = MetricsRegistry(HELPDESK_METRICS)

__all__ = [
    "Counter",
    "HELPDESK_METRICS",
    "Histogram",
    "MetricDefinition",
    "MetricKind",
    "MetricsRegistry",
    "PrometheusExporter",
    "metrics_registry",
]
