from __future__ import annotations

from collections import Counter, defaultdict
from typing import Sequence

from conductor.memory.models import Impact, Optimization, TestFailure, TestResult
from conductor.models import PerformanceMetrics

_FAST_TEST_SECONDS: float = 5.0
_FAST_TEST_SHARE: float = 0.3
_SLOW_TEST_SECONDS: float = 30.0
_SLOW_TEST_SHARE: float = 0.2
_HIGH_CPU: float = 80.0
_HIGH_MEMORY: float = 85.0
_FAILURE_LIMIT: int = 5
_SLOW_SERVICE_SECONDS: float = 20.0


def evaluate_optimizations(
    results: Sequence[TestResult],
    failures: Sequence[TestFailure],
    metrics: PerformanceMetrics,
) -> list[Optimization]:
    """Apply the optimization rules to current results, failures and load."""
    found: list[Optimization] = []

    if results:
        fast = sum(1 for r in results if r.duration < _FAST_TEST_SECONDS) / len(results)
        if fast > _FAST_TEST_SHARE:
            found.append(Optimization(
                name="parallel_fast_tests",
                description=f"Run fast tests in parallel ({fast:.0%} finish under 5s)",
                impact=Impact.HIGH,
                confidence=0.8,
            ))
        slow = sum(1 for r in results if r.duration > _SLOW_TEST_SECONDS) / len(results)
        if slow > _SLOW_TEST_SHARE:
            found.append(Optimization(
                name="sequential_slow_tests",
                description=f"Run slow tests sequentially ({slow:.0%} take over 30s)",
                impact=Impact.MEDIUM,
                confidence=0.7,
            ))

    if metrics.cpu_usage > _HIGH_CPU:
        found.append(Optimization(
            name="reduce_parallelism",
            description=f"Reduce test parallelism, CPU at {metrics.cpu_usage:.0f}%",
            impact=Impact.HIGH,
            confidence=0.9,
        ))
    if metrics.memory_usage > _HIGH_MEMORY:
        found.append(Optimization(
            name="memory_optimization",
            description=f"Reduce memory footprint, memory at {metrics.memory_usage:.0f}%",
            impact=Impact.HIGH,
            confidence=0.8,
        ))

    if len(failures) > _FAILURE_LIMIT:
        failure_type, count = Counter(f.failure_type for f in failures).most_common(1)[0]
        found.append(Optimization(
            name=f"failure_pattern_{failure_type.value.upper()}",
            description=(
                f"Investigate recurring {failure_type.value} failures "
                f"({count} of {len(failures)})"
            ),
            impact=Impact.HIGH,
            confidence=0.8,
        ))

    durations: dict[str, list[float]] = defaultdict(list)
    for r in results:
        durations[r.service_name].append(r.duration)
    for service in sorted(durations):
        avg = sum(durations[service]) / len(durations[service])
        if avg > _SLOW_SERVICE_SECONDS:
            found.append(Optimization(
                name=f"optimize_{service}",
                description=f"Optimize tests for {service} (average {avg:.1f}s)",
                impact=Impact.MEDIUM,
                confidence=0.7,
            ))

    return found
