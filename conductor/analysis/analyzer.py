from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Mapping

from conductor.analysis.dependency import DependencyAnalyzer
from conductor.memory.store import MemoryStore
from conductor.models import (
    AnalysisSummary,
    DependencyInfo,
    HealthStatus,
    ParsedCommand,
    PerformancePrediction,
    RiskAssessment,
    RiskLevel,
    TestType,
)
from conductor.monitor.snapshot import SystemMonitor
from conductor.utils import clamp

logger = logging.getLogger(__name__)

_BASELINE_RISK: Mapping[TestType, float] = MappingProxyType({
    TestType.CHAOS_TEST: 0.9,
    TestType.PENETRATION_TEST: 0.6,
    TestType.PERFORMANCE_TEST: 0.5,
    TestType.SECURITY_TEST: 0.5,
    TestType.INTEGRATION_TEST: 0.4,
    TestType.END_TO_END_TEST: 0.4,
    TestType.API_TEST: 0.3,
    TestType.CONTRACT_TEST: 0.3,
    TestType.UNIT_TEST: 0.1,
    TestType.SMOKE_TEST: 0.1,
})
_DEFAULT_BASELINE_RISK: float = 0.2

_SEVERITY_BUMP: Mapping[RiskLevel, float] = MappingProxyType({
    RiskLevel.HIGH: 0.1,
    RiskLevel.MEDIUM: 0.05,
    RiskLevel.LOW: 0.0,
})
_UNHEALTHY_SYSTEM_RISK: float = 0.3
_RECENT_FAILURE_RISK: float = 0.2
_RECENT_FAILURE_LIMIT: int = 5

_HIGH_RISK_SCORE: float = 0.7
_MEDIUM_RISK_SCORE: float = 0.4

_MITIGATIONS: Mapping[RiskLevel, tuple[str, ...]] = MappingProxyType({
    RiskLevel.HIGH: (
        "Run in an isolated environment",
        "Enable monitoring and automatic rollback",
        "Limit retries and parallelism",
    ),
    RiskLevel.MEDIUM: (
        "Monitor dependent services during the run",
        "Run during low-traffic hours",
    ),
    RiskLevel.LOW: ("Standard monitoring",),
})

# Estimated wall-clock minutes per test type
_BASE_MINUTES: Mapping[TestType, float] = MappingProxyType({
    TestType.UNIT_TEST: 2.0,
    TestType.SMOKE_TEST: 2.0,
    TestType.API_TEST: 5.0,
    TestType.CONTRACT_TEST: 5.0,
    TestType.INTEGRATION_TEST: 15.0,
    TestType.REGRESSION_TEST: 20.0,
    TestType.SECURITY_TEST: 20.0,
    TestType.CHAOS_TEST: 20.0,
    TestType.END_TO_END_TEST: 25.0,
    TestType.PERFORMANCE_TEST: 30.0,
    TestType.PENETRATION_TEST: 45.0,
})
_DEFAULT_MINUTES: float = 10.0
_PER_EXTRA_SERVICE: float = 0.2
_HIGH_CPU: float = 80.0
_HIGH_CPU_SLOWDOWN: float = 1.5

_BASE_PREDICTION_CONFIDENCE: float = 0.7

_FALLBACK_CONFIDENCE: float = 0.3


class ContextAnalyzer:
    """Builds the AnalysisSummary the decision engine consumes.

    Combines dependency blast radius, test-type baseline risk, current system
    health and recent failures into a risk assessment; predicts duration from
    static tables blended with stored results; and scores how much the
    pipeline trusts its own understanding of the command.
    """

    def __init__(
        self,
        dependencies: DependencyAnalyzer,
        monitor: SystemMonitor,
        memory: MemoryStore,
    ) -> None:
        self._dependencies = dependencies
        self._monitor = monitor
        self._memory = memory

    def analyze(self, command: ParsedCommand) -> AnalysisSummary:
        try:
            return self._analyze(command)
        except Exception as exc:
            logger.error("Context analysis failed for %r: %s", command.original_text, exc)
            return AnalysisSummary(
                confidence=_FALLBACK_CONFIDENCE,
                insights=(f"Analysis unavailable: {exc}",),
            )

    def _analyze(self, command: ParsedCommand) -> AnalysisSummary:
        deps = self._dependencies.analyze(command.services, command.test_types)
        risk = self.assess_risk(command, deps)
        prediction = self.predict_performance(command, risk)
        confidence = self.score_confidence(command, risk, prediction)

        insights = [
            f"Blast radius {deps.blast_radius} ({deps.severity_level.value})",
            f"Risk {risk.level.value} (score {risk.score:.2f})",
            f"Estimated {prediction.estimated_minutes:.0f} minutes",
        ]
        if command.defaulted:
            insights.append("Assumed defaults for: " + ", ".join(sorted(command.defaulted)))

        return AnalysisSummary(
            risk_assessment=risk,
            performance_prediction=prediction,
            dependency_info=deps,
            confidence=confidence,
            insights=tuple(insights),
        )

    def assess_risk(self, command: ParsedCommand, deps: DependencyInfo) -> RiskAssessment:
        factors = list(deps.risk_factors)
        score = max(
            (_BASELINE_RISK.get(t, _DEFAULT_BASELINE_RISK) for t in command.test_types),
            default=_DEFAULT_BASELINE_RISK,
        )
        score += _SEVERITY_BUMP[deps.severity_level]

        health = self._monitor.get_system_health()
        if health.status in (HealthStatus.DEGRADED, HealthStatus.UNHEALTHY):
            score += _UNHEALTHY_SYSTEM_RISK
            factors.append(f"System health is {health.status.value}")

        failures = len(self._memory.get_recent_failures())
        if failures > _RECENT_FAILURE_LIMIT:
            score += _RECENT_FAILURE_RISK
            factors.append(f"{failures} recent test failures")

        score = clamp(score)
        if score >= _HIGH_RISK_SCORE:
            level = RiskLevel.HIGH
        elif score >= _MEDIUM_RISK_SCORE:
            level = RiskLevel.MEDIUM
        else:
            level = RiskLevel.LOW

        return RiskAssessment(
            level=level,
            score=round(score, 4),
            risk_factors=tuple(factors),
            mitigation=_MITIGATIONS[level],
        )

    def predict_performance(
        self, command: ParsedCommand, risk: RiskAssessment
    ) -> PerformancePrediction:
        minutes = sum(_BASE_MINUTES.get(t, _DEFAULT_MINUTES) for t in command.test_types)
        if not command.test_types:
            minutes = _DEFAULT_MINUTES
        minutes *= 1 + max(len(command.services) - 1, 0) * _PER_EXTRA_SERVICE

        confidence = _BASE_PREDICTION_CONFIDENCE
        bottlenecks: list[str] = []

        metrics = self._monitor.get_performance_metrics()
        if metrics.cpu_usage > _HIGH_CPU:
            minutes *= _HIGH_CPU_SLOWDOWN
            confidence -= 0.1
            bottlenecks.append(f"High CPU usage ({metrics.cpu_usage:.0f}%)")
        if len(command.services) > 3:
            bottlenecks.append("Many services under test at once")

        history = [
            r
            for r in self._memory.get_test_results()
            if r.test_type in command.test_types and r.service_name in command.services
        ]
        if history:
            historical_minutes = sum(r.duration for r in history) / len(history) / 60.0
            minutes = (minutes + historical_minutes) / 2
            success_probability = sum(1 for r in history if r.passed) / len(history)
            confidence += 0.1
        else:
            success_probability = 0.9 - 0.3 * risk.score

        return PerformancePrediction(
            estimated_minutes=round(minutes, 2),
            success_probability=round(clamp(success_probability), 4),
            bottlenecks=tuple(bottlenecks),
            confidence=round(clamp(confidence), 4),
        )

    def score_confidence(
        self,
        command: ParsedCommand,
        risk: RiskAssessment,
        prediction: PerformancePrediction,
    ) -> float:
        """Overall trust in the interpretation, discounted per default-filled field."""
        score = 0.3 + 0.4 * command.confidence
        if "intents" not in command.defaulted and self._has_learned_patterns(command):
            score += 0.1
        if len(risk.risk_factors) < 3:
            score += 0.1
        score += 0.1 * prediction.confidence
        score -= 0.1 * len(command.defaulted)
        return round(clamp(score), 4)

    def _has_learned_patterns(self, command: ParsedCommand) -> bool:
        prefix = f"{command.primary_intent.value}_"
        return any(p.name.startswith(prefix) for p in self._memory.get_all_patterns())
