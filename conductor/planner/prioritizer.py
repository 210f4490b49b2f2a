from __future__ import annotations

from conductor.models import (
    AnalysisSummary,
    HealthStatus,
    ParsedCommand,
    Priority,
    RiskLevel,
    SystemHealth,
)

_RISK_WEIGHTS: dict[RiskLevel, float] = {
    RiskLevel.HIGH: 0.4,
    RiskLevel.MEDIUM: 0.2,
    RiskLevel.LOW: 0.1,
}

_POOR_HEALTH_WEIGHT: float = 0.3
_POOR_HEALTH: frozenset[HealthStatus] = frozenset(
    {HealthStatus.DEGRADED, HealthStatus.UNHEALTHY}
)

_RECENT_FAILURES_WEIGHT: float = 0.2
_RECENT_FAILURES_LIMIT: int = 3

_URGENCY_WEIGHT: float = 0.3
_FULL_SCOPE_WEIGHT: float = 0.1

_HIGH_PRIORITY: float = 0.7
_MEDIUM_PRIORITY: float = 0.4


def priority_score(
    command: ParsedCommand,
    analysis: AnalysisSummary,
    health: SystemHealth,
    recent_failures: int,
) -> float:
    """Weighted priority score in [0, 1].

    score = risk (0.4/0.2/0.1) + poor health 0.3 + >3 recent failures 0.2
            + urgent 0.3 + full/comprehensive scope 0.1, clamped to 1.0
    """
    score = _RISK_WEIGHTS[analysis.risk_assessment.level]
    if health.status in _POOR_HEALTH:
        score += _POOR_HEALTH_WEIGHT
    if recent_failures > _RECENT_FAILURES_LIMIT:
        score += _RECENT_FAILURES_WEIGHT
    if command.context.urgency == "HIGH":
        score += _URGENCY_WEIGHT
    if command.context.scope == "COMPREHENSIVE" or command.parameters.get("scope") == "FULL":
        score += _FULL_SCOPE_WEIGHT
    return min(score, 1.0)


def to_priority(score: float) -> Priority:
    if score >= _HIGH_PRIORITY:
        return Priority.HIGH
    if score >= _MEDIUM_PRIORITY:
        return Priority.MEDIUM
    return Priority.LOW
