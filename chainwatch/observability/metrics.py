"""Prometheus metrics for the event watcher.

- poll cycles by outcome (ok / skipped / error)
- events dispatched per event name
- listener failures per event name
- per-event cursor and chain head gauges
- watcher state gauge
"""

import logging
from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Info,
    start_http_server,
)

logger = logging.getLogger(__name__)


class MetricsCollector:
    """Centralized Prometheus metrics collector."""

    def __init__(self, port: int = 8000, registry: CollectorRegistry = REGISTRY):
        self._port = port
        self._registry = registry
        self._started = False

        # === Poll loop ===
        self.poll_cycles = Counter(
            'chainwatch_poll_cycles_total',
            'Poll cycles by outcome',
            ['outcome'],
            registry=registry,
        )

        self.watcher_state = Gauge(
            'chainwatch_watcher_state',
            'Watcher state (0=idle, 1=running, 2=stopped)',
            registry=registry,
        )

        # === Chain ===
        self.chain_head = Gauge(
            'chainwatch_chain_head_block',
            'Latest block number reported by the node',
            registry=registry,
        )

        self.cutoff_block = Gauge(
            'chainwatch_cutoff_block',
            'Highest block treated as final in the last cycle',
            registry=registry,
        )

        # === Events ===
        self.event_cursor = Gauge(
            'chainwatch_event_cursor_block',
            'Last block checked per event',
            ['event'],
            registry=registry,
        )

        self.events_dispatched = Counter(
            'chainwatch_events_dispatched_total',
            'New events delivered to listeners',
            ['event'],
            registry=registry,
        )

        self.listener_errors = Counter(
            'chainwatch_listener_errors_total',
            'Listener callbacks that raised',
            ['event'],
            registry=registry,
        )

        # === Build Info ===
        self.build_info = Info(
            'chainwatch_build',
            'Build information',
            registry=registry,
        )

    def start_server(self):
        """Start Prometheus HTTP server."""
        if self._started:
            return
        try:
            start_http_server(self._port, registry=self._registry)
            self._started = True
            logger.info(f"Prometheus metrics server started on port {self._port}")
        except Exception as e:
            logger.error(f"Failed to start metrics server: {e}")

    def set_build_info(self, version: str, instance_id: str, environment: str):
        """Set build information."""
        self.build_info.info({
            'version': version,
            'instance_id': instance_id,
            'environment': environment,
        })


# Singleton
_metrics: Optional[MetricsCollector] = None

def get_metrics(port: int = 8000) -> MetricsCollector:
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector(port)
    return _metrics
