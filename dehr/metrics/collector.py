"""
Prometheus metrics integration for dehr.

Counts permission requests, status changes and access decisions, and
measures decision latency. Each collector owns a private registry so that
several instances (for example one per test) never clash.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest


logger = logging.getLogger(__name__)


@dataclass
class MetricConfig:
    """Configuration for metrics collection."""

    enabled: bool = True
    namespace: str = "dehr"


class MetricsCollector:
    """Metrics collector for the permission core."""

    def __init__(self, config: Optional[MetricConfig] = None):
        """
        Initialize metrics collector.

        Args:
            config: Metrics configuration
        """
        self.config = config or MetricConfig()
        self.registry = CollectorRegistry()
        self._metrics_cache: Dict[str, int] = {}

        if not self.config.enabled:
            logger.info("Metrics collection disabled")
            return

        self._init_prometheus_metrics()
        logger.info("Metrics collector initialized")

    def _init_prometheus_metrics(self):
        """Initialize all Prometheus metrics."""
        ns = self.config.namespace

        self.permission_requests = Counter(
            f'{ns}_permission_requests_total',
            'Total number of submitted permission requests',
            registry=self.registry
        )

        self.status_changes = Counter(
            f'{ns}_permission_status_changes_total',
            'Total number of permission status changes',
            ['status', 'outcome'],
            registry=self.registry
        )

        self.access_decisions = Counter(
            f'{ns}_access_decisions_total',
            'Total number of record access decisions',
            ['mode', 'allowed'],
            registry=self.registry
        )

        self.decision_latency = Histogram(
            f'{ns}_access_decision_duration_seconds',
            'Record access decision duration in seconds',
            ['mode'],
            buckets=[0.0001, 0.0002, 0.0005, 0.001, 0.002, 0.005, 0.01, 0.02, 0.05, 0.1],
            registry=self.registry
        )

        self.update_conflicts = Counter(
            f'{ns}_grant_update_conflicts_total',
            'Total number of optimistic update conflicts on professionals',
            registry=self.registry
        )

    def _count(self, key: str) -> None:
        self._metrics_cache[key] = self._metrics_cache.get(key, 0) + 1

    def record_permission_request(self) -> None:
        """Record a submitted permission request."""
        if not self.config.enabled:
            return

        self._count("permission_requests")
        self.permission_requests.inc()

    def record_status_change(self, status: str, outcome: str) -> None:
        """Record a permission status change and its grant outcome."""
        if not self.config.enabled:
            return

        self._count(f"status_changes_{status}_{outcome}")
        self.status_changes.labels(status=status, outcome=outcome).inc()
        logger.debug(f"Recorded status change: {status} -> {outcome}")

    def record_access_decision(self, mode: str, allowed: bool, duration: float) -> None:
        """Record an access decision and how long it took."""
        if not self.config.enabled:
            return

        allowed_str = "true" if allowed else "false"
        self._count(f"access_decisions_{mode}_{allowed_str}")
        self.access_decisions.labels(mode=mode, allowed=allowed_str).inc()
        self.decision_latency.labels(mode=mode).observe(duration)

    def record_update_conflict(self) -> None:
        """Record an optimistic update conflict."""
        if not self.config.enabled:
            return

        self._count("update_conflicts")
        self.update_conflicts.inc()

    def export_prometheus_metrics(self) -> str:
        """Export metrics in the Prometheus text exposition format."""
        return generate_latest(self.registry).decode('utf-8')

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Get a summary of counted events."""
        return {
            'enabled': self.config.enabled,
            'namespace': self.config.namespace,
            'counters': dict(self._metrics_cache),
        }


def create_metrics_collector(enabled: bool = True, namespace: str = "dehr") -> MetricsCollector:
    """Create a metrics collector."""
    return MetricsCollector(MetricConfig(enabled=enabled, namespace=namespace))
