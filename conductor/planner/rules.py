"""Ordered decision rules.

Each table is a sequence of (name, predicate, result) evaluated top to
bottom; the first matching predicate wins. Precedence between rules is the
table order and nothing else.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Mapping, Sequence, TypeVar

from conductor.models import (
    ActionType,
    AnalysisSummary,
    ExecutionStrategy,
    IntentType,
    ParsedCommand,
    PerformanceMetrics,
    RiskLevel,
    TestType,
)

T = TypeVar("T")


@dataclass(frozen=True)
class RuleInputs:
    command: ParsedCommand
    analysis: AnalysisSummary
    metrics: PerformanceMetrics

    @property
    def risk(self) -> RiskLevel:
        return self.analysis.risk_assessment.level

    def has(self, *test_types: TestType) -> bool:
        return any(t in self.command.test_types for t in test_types)


Rule = tuple[str, Callable[[RuleInputs], bool], T]


def first_match(rules: Sequence[Rule[T]], inputs: RuleInputs, default: T) -> tuple[str, T]:
    """Return (rule name, result) of the first rule whose predicate holds."""
    for name, predicate, result in rules:
        if predicate(inputs):
            return name, result
    return "default", default


INTENT_ACTIONS: Mapping[IntentType, ActionType] = MappingProxyType({
    IntentType.RUN_TESTS: ActionType.RUN_TESTS,
    IntentType.ANALYZE_FAILURES: ActionType.ANALYZE_FAILURES,
    IntentType.GENERATE_TESTS: ActionType.GENERATE_TESTS,
    IntentType.OPTIMIZE_TESTS: ActionType.OPTIMIZE_TESTS,
    IntentType.HEALTH_CHECK: ActionType.HEALTH_CHECK,
    IntentType.GET_STATUS: ActionType.MONITOR_SYSTEM,
    IntentType.HELP: ActionType.GENERATE_REPORT,
    IntentType.UNKNOWN: ActionType.UNKNOWN,
})

# Refinement of a RUN_TESTS intent.
RUN_TEST_RULES: tuple[Rule[ActionType], ...] = (
    (
        "high_risk_chaos_or_performance",
        lambda i: i.risk == RiskLevel.HIGH
        and i.has(TestType.CHAOS_TEST, TestType.PERFORMANCE_TEST),
        ActionType.RUN_ISOLATED_TESTS,
    ),
    ("chaos", lambda i: i.has(TestType.CHAOS_TEST), ActionType.RUN_CHAOS_TESTS),
    ("performance", lambda i: i.has(TestType.PERFORMANCE_TEST), ActionType.RUN_PERFORMANCE_TESTS),
    (
        "security",
        lambda i: i.has(TestType.SECURITY_TEST, TestType.PENETRATION_TEST),
        ActionType.RUN_SECURITY_TESTS,
    ),
    ("integration", lambda i: i.has(TestType.INTEGRATION_TEST), ActionType.RUN_INTEGRATION_TESTS),
)

_PARALLEL_MIN_SERVICES: int = 2
_PARALLEL_MIN_MINUTES: float = 20.0
_HIGH_CPU: float = 80.0

# High risk precedes chaos isolation.
STRATEGY_RULES: tuple[Rule[ExecutionStrategy], ...] = (
    (
        "many_services_long_run",
        lambda i: len(i.command.services) > _PARALLEL_MIN_SERVICES
        and i.analysis.performance_prediction.estimated_minutes > _PARALLEL_MIN_MINUTES,
        ExecutionStrategy.PARALLEL,
    ),
    ("high_risk", lambda i: i.risk == RiskLevel.HIGH, ExecutionStrategy.SEQUENTIAL),
    ("chaos", lambda i: i.has(TestType.CHAOS_TEST), ExecutionStrategy.ISOLATED),
    ("high_cpu", lambda i: i.metrics.cpu_usage > _HIGH_CPU, ExecutionStrategy.SEQUENTIAL),
)
DEFAULT_STRATEGY: ExecutionStrategy = ExecutionStrategy.ADAPTIVE

ACTION_PHRASES: Mapping[ActionType, str] = MappingProxyType({
    ActionType.RUN_TESTS: "Executing test suite",
    ActionType.RUN_PERFORMANCE_TESTS: "Running performance tests",
    ActionType.RUN_SECURITY_TESTS: "Executing security tests",
    ActionType.RUN_INTEGRATION_TESTS: "Running integration tests",
    ActionType.RUN_ISOLATED_TESTS: "Executing tests in isolated environment",
    ActionType.RUN_CHAOS_TESTS: "Running chaos experiments",
    ActionType.ANALYZE_FAILURES: "Analyzing recent test failures",
    ActionType.GENERATE_TESTS: "Generating new test cases",
    ActionType.OPTIMIZE_TESTS: "Optimizing test suite",
    ActionType.HEALTH_CHECK: "Performing system health check",
    ActionType.MONITOR_SYSTEM: "Monitoring system performance",
    ActionType.GENERATE_REPORT: "Generating comprehensive report",
})
DEFAULT_PHRASE: str = "Processing request"
