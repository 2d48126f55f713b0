"""chainwatch -- Observability package (Prometheus metrics)."""

from chainwatch.observability.metrics import MetricsCollector, get_metrics

__all__: list[str] = [
    "MetricsCollector",
    "get_metrics",
]
