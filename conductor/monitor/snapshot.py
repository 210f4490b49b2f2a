from __future__ import annotations

import logging
import threading

from conductor.models import HealthStatus, PerformanceMetrics, SystemHealth

logger = logging.getLogger(__name__)


class MonitorError(Exception):
    """Raised when a health or metrics probe cannot produce a reading."""


class SystemMonitor:
    """Holds the latest health and performance snapshots.

    Readers get a point-in-time snapshot; refreshers replace the whole
    snapshot by reference under a lock, so a reader never sees a mix of an
    old and a new reading.
    """

    def __init__(
        self,
        health: SystemHealth | None = None,
        metrics: PerformanceMetrics | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._health = health or SystemHealth()
        self._metrics = metrics or PerformanceMetrics()

    def get_system_health(self) -> SystemHealth:
        with self._lock:
            return self._health

    def get_performance_metrics(self) -> PerformanceMetrics:
        with self._lock:
            return self._metrics

    def update_health(self, health: SystemHealth) -> None:
        with self._lock:
            previous = self._health.status
            self._health = health
        if previous != health.status:
            logger.info("System health changed: %s -> %s", previous.value, health.status.value)

    def update_metrics(self, metrics: PerformanceMetrics) -> None:
        with self._lock:
            self._metrics = metrics


def overall_status(services: dict[str, HealthStatus]) -> HealthStatus:
    """Fold per-service statuses into one system status."""
    if not services:
        return HealthStatus.UNKNOWN
    statuses = set(services.values())
    if statuses == {HealthStatus.HEALTHY}:
        return HealthStatus.HEALTHY
    if statuses == {HealthStatus.UNHEALTHY}:
        return HealthStatus.UNHEALTHY
    return HealthStatus.DEGRADED
