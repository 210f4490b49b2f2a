from __future__ import annotations

import logging
from collections import deque
from types import MappingProxyType
from typing import Iterable, Mapping, Sequence

from conductor.config import ConductorConfig
from conductor.models import DependencyInfo, RiskLevel, TestType

logger = logging.getLogger(__name__)

# service -> services/resources it depends on
DEFAULT_DEPENDENCY_GRAPH: Mapping[str, tuple[str, ...]] = MappingProxyType({
    "gateway-service": (
        "user-service",
        "product-service",
        "order-service",
        "notification-service",
    ),
    "user-service": ("users-db",),
    "product-service": ("products-db",),
    "order-service": (
        "orders-db",
        "user-service",
        "product-service",
        "notification-service",
    ),
    "notification-service": ("notifications-db",),
})

ENTRY_POINT: str = "gateway-service"
CRITICAL_SERVICES: frozenset[str] = frozenset(
    {"gateway-service", "user-service", "order-service"}
)
ISOLATABLE_SERVICES: frozenset[str] = frozenset(
    {"product-service", "notification-service"}
)

_HIGH_BLAST_RADIUS: int = 5
_MEDIUM_BLAST_RADIUS: int = 3

_TEST_TYPE_RISK_FACTORS: Mapping[TestType, str] = MappingProxyType({
    TestType.CHAOS_TEST: "Chaos experiments can cascade into dependent services",
    TestType.PERFORMANCE_TEST: "Load generation competes for shared resources",
    TestType.SECURITY_TEST: "Security scans can trigger rate limits or lockouts",
    TestType.PENETRATION_TEST: "Penetration tests exercise destructive payloads",
    TestType.INTEGRATION_TEST: "Integration tests depend on databases and external services",
    TestType.END_TO_END_TEST: "End-to-end flows span every dependent service",
})


class DependencyAnalyzer:
    """Blast-radius analysis over a static service dependency graph."""

    def __init__(
        self,
        graph: Mapping[str, Sequence[str]] | None = None,
        config: ConductorConfig | None = None,
    ) -> None:
        self._config = config or ConductorConfig()
        source = DEFAULT_DEPENDENCY_GRAPH if graph is None else graph
        self._graph: Mapping[str, tuple[str, ...]] = MappingProxyType(
            {k: tuple(v) for k, v in source.items()}
        )
        reverse: dict[str, list[str]] = {}
        for service, deps in self._graph.items():
            for dep in deps:
                reverse.setdefault(dep, []).append(service)
        self._dependents: Mapping[str, tuple[str, ...]] = MappingProxyType(
            {k: tuple(v) for k, v in reverse.items()}
        )

    def dependencies_of(self, service: str) -> tuple[str, ...]:
        return self._graph.get(service, ())

    def dependents_of(self, service: str) -> tuple[str, ...]:
        return self._dependents.get(service, ())

    def closure(self, services: Iterable[str], hop_limit: int | None = None) -> list[str]:
        """Nodes reachable from ``services`` along edges in either direction.

        Breadth-first, bounded by ``hop_limit`` hops. The targets themselves
        are included, in input order, followed by nodes in discovery order.
        """
        limit = self._config.dependency_hop_limit if hop_limit is None else hop_limit
        seen: list[str] = []
        queue: deque[tuple[str, int]] = deque()
        for service in services:
            if service not in seen:
                seen.append(service)
                queue.append((service, 0))

        while queue:
            node, depth = queue.popleft()
            if depth >= limit:
                continue
            for neighbour in self.dependencies_of(node) + self.dependents_of(node):
                if neighbour not in seen:
                    seen.append(neighbour)
                    queue.append((neighbour, depth + 1))
        return seen

    def analyze(
        self, services: Sequence[str], test_types: Sequence[TestType] = ()
    ) -> DependencyInfo:
        affected = self.closure(services)
        radius = len(affected)
        severity = self._severity(radius, test_types)

        risk_factors = [
            factor
            for test_type, factor in _TEST_TYPE_RISK_FACTORS.items()
            if test_type in test_types
        ]
        if severity == RiskLevel.HIGH and radius >= _HIGH_BLAST_RADIUS:
            risk_factors.append(f"Wide blast radius: {radius} services affected")

        info = DependencyInfo(
            affected_services=tuple(affected),
            blast_radius=radius,
            severity_level=severity,
            critical_path=tuple(self._critical_path(services)),
            isolation_points=tuple(s for s in services if s in ISOLATABLE_SERVICES),
            risk_factors=tuple(risk_factors),
        )
        logger.debug(
            "Dependency analysis for %s: radius=%d severity=%s",
            list(services),
            radius,
            severity.value,
        )
        return info

    def _severity(self, radius: int, test_types: Sequence[TestType]) -> RiskLevel:
        if radius >= _HIGH_BLAST_RADIUS or TestType.CHAOS_TEST in test_types:
            return RiskLevel.HIGH
        if radius >= _MEDIUM_BLAST_RADIUS:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def _critical_path(self, services: Sequence[str]) -> list[str]:
        """Entry point, then critical targets, then their direct dependencies."""
        path: list[str] = []
        critical = [s for s in services if s in CRITICAL_SERVICES]
        if critical and ENTRY_POINT in self._graph:
            path.append(ENTRY_POINT)
        for service in critical:
            if service not in path:
                path.append(service)
        for service in critical:
            for dep in self.dependencies_of(service):
                if dep not in path:
                    path.append(dep)
        return path
