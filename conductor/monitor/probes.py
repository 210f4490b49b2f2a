from __future__ import annotations

import asyncio
import logging
import time as _time
from datetime import datetime, timezone
from typing import Any

import aiohttp
import psutil

from conductor.models import HealthStatus, PerformanceMetrics, SystemHealth
from conductor.monitor.snapshot import MonitorError, SystemMonitor, overall_status

logger = logging.getLogger(__name__)

# Spring Boot actuator status -> HealthStatus
_STATUS_MAP: dict[str, HealthStatus] = {
    "UP": HealthStatus.HEALTHY,
    "DOWN": HealthStatus.UNHEALTHY,
    "OUT_OF_SERVICE": HealthStatus.UNHEALTHY,
    "DEGRADED": HealthStatus.DEGRADED,
}


def sample_host_metrics() -> PerformanceMetrics:
    """Read CPU and memory utilisation of the local host."""
    try:
        return PerformanceMetrics(
            cpu_usage=psutil.cpu_percent(interval=None),
            memory_usage=psutil.virtual_memory().percent,
            sampled_at=datetime.now(timezone.utc),
        )
    except (psutil.Error, OSError) as exc:
        raise MonitorError(f"Could not sample host metrics: {exc}") from exc


class HostMetricsSampler:
    """Refreshes a SystemMonitor's performance metrics from psutil."""

    def __init__(self, monitor: SystemMonitor) -> None:
        self._monitor = monitor

    def refresh(self) -> PerformanceMetrics | None:
        try:
            metrics = sample_host_metrics()
        except MonitorError as exc:
            logger.warning("%s; keeping previous metrics", exc)
            return None
        self._monitor.update_metrics(metrics)
        logger.debug(
            "Host metrics: cpu=%.1f%% memory=%.1f%%",
            metrics.cpu_usage,
            metrics.memory_usage,
        )
        return metrics


class CircuitBreaker:
    """Skips an endpoint after repeated failures until a cooldown passes."""

    def __init__(self, threshold: int = 3, cooldown_seconds: float = 60.0) -> None:
        self._threshold = threshold
        self._cooldown = cooldown_seconds
        self._failure_count = 0
        self._opened_at: float = 0.0

    @property
    def is_open(self) -> bool:
        if self._failure_count < self._threshold:
            return False
        return _time.monotonic() - self._opened_at < self._cooldown

    def record_success(self) -> None:
        self._failure_count = 0

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._failure_count >= self._threshold:
            self._opened_at = _time.monotonic()


class HealthPoller:
    """Polls service health endpoints with aiohttp and updates a SystemMonitor.

    Each request is bounded by ``timeout_seconds``. An unreachable or failing
    endpoint counts as UNHEALTHY. Endpoints that keep failing are skipped
    (reported UNHEALTHY) until their breaker cooldown passes.
    """

    def __init__(
        self,
        monitor: SystemMonitor,
        endpoints: dict[str, str],
        timeout_seconds: float = 5.0,
        breaker_threshold: int = 3,
        breaker_cooldown_seconds: float = 60.0,
    ) -> None:
        self._monitor = monitor
        self._endpoints = dict(endpoints)
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._breakers = {
            name: CircuitBreaker(breaker_threshold, breaker_cooldown_seconds)
            for name in self._endpoints
        }

    async def _fetch_status(self, session: aiohttp.ClientSession, url: str) -> HealthStatus:
        try:
            async with session.get(url) as resp:
                if resp.status >= 500:
                    raise MonitorError(f"{url} returned HTTP {resp.status}")
                try:
                    body: Any = await resp.json(content_type=None)
                except ValueError:
                    body = {}
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise MonitorError(f"{url} unreachable: {exc}") from exc

        status = str(body.get("status", "")).upper() if isinstance(body, dict) else ""
        if not status:
            return HealthStatus.HEALTHY if resp.status < 400 else HealthStatus.UNHEALTHY
        return _STATUS_MAP.get(status, HealthStatus.DEGRADED)

    async def _check(self, session: aiohttp.ClientSession, name: str, url: str) -> HealthStatus:
        breaker = self._breakers[name]
        if breaker.is_open:
            return HealthStatus.UNHEALTHY
        try:
            status = await self._fetch_status(session, url)
        except MonitorError as exc:
            breaker.record_failure()
            logger.warning("Health check failed for %s: %s", name, exc)
            return HealthStatus.UNHEALTHY
        breaker.record_success()
        return status

    async def poll_once(self) -> SystemHealth | None:
        """Check every endpoint concurrently and publish the result."""
        if not self._endpoints:
            return None
        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            names = list(self._endpoints)
            statuses = await asyncio.gather(
                *(self._check(session, n, self._endpoints[n]) for n in names)
            )
        services = dict(zip(names, statuses))
        health = SystemHealth(
            status=overall_status(services),
            services=services,
            checked_at=datetime.now(timezone.utc),
        )
        self._monitor.update_health(health)
        return health

    def refresh(self) -> SystemHealth | None:
        """Blocking wrapper for use from the background scheduler thread."""
        return asyncio.run(self.poll_once())
