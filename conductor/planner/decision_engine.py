from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from conductor.config import ConductorConfig
from conductor.memory.store import MemoryStore
from conductor.models import (
    RUN_ACTIONS,
    ActionType,
    AnalysisSummary,
    DecisionAction,
    ExecutionStrategy,
    ParsedCommand,
    Priority,
    RiskLevel,
    TestType,
)
from conductor.monitor.snapshot import SystemMonitor
from conductor.planner import rules
from conductor.planner.prioritizer import priority_score, to_priority

logger = logging.getLogger(__name__)

_MAX_CPU: float = 90.0
_MAX_MEMORY: float = 85.0
# Test types that must not overlap with a chaos experiment
_CHAOS_CONFLICTS: frozenset[TestType] = frozenset(
    {TestType.INTEGRATION_TEST, TestType.PERFORMANCE_TEST}
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_estimated_time(minutes: float) -> str:
    """Render a duration in minutes as e.g. "45 minutes" or "2 hours 5 minutes"."""
    if minutes < 1:
        return "Less than 1 minute"
    hours, rest = divmod(int(round(minutes)), 60)
    parts = []
    if hours:
        parts.append(_plural(hours, "hour"))
    if rest or not hours:
        parts.append(_plural(rest, "minute"))
    return " ".join(parts)


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}" if count == 1 else f"{count} {unit}s"


class DecisionEngine:
    """Turns a parsed command and its analysis into one prioritized action.

    Sequence (each step may short-circuit):
    1. confidence gate -> REQUEST_CLARIFICATION
    2. intent -> action type, RUN_TESTS refined by ``rules.RUN_TEST_RULES``
    3. priority score
    4. execution strategy by ``rules.STRATEGY_RULES``
    5. resource check -> QUEUE_ACTION
    6. derived execution parameters
    7. build the action

    ``decide`` never raises; internal errors produce a fixed fallback action.
    """

    def __init__(
        self,
        memory: MemoryStore,
        monitor: SystemMonitor,
        config: ConductorConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._memory = memory
        self._monitor = monitor
        self._config = config or ConductorConfig()
        self._clock = clock

    def decide(self, command: ParsedCommand, analysis: AnalysisSummary) -> DecisionAction:
        try:
            return self._decide(command, analysis)
        except Exception as exc:
            logger.error("Decision failed for %r: %s", command.original_text, exc)
            return self._fallback(str(exc))

    def _decide(self, command: ParsedCommand, analysis: AnalysisSummary) -> DecisionAction:
        # 1. Confidence gate
        if analysis.confidence < self._config.confidence_threshold:
            logger.info(
                "Confidence %.2f below threshold %.2f, requesting clarification",
                analysis.confidence,
                self._config.confidence_threshold,
            )
            return self._clarification(command, analysis)

        metrics = self._monitor.get_performance_metrics()
        health = self._monitor.get_system_health()
        inputs = rules.RuleInputs(command=command, analysis=analysis, metrics=metrics)

        # 2. Action type
        action_type = self.map_action_type(inputs)

        # 3. Priority
        score = priority_score(
            command, analysis, health, len(self._memory.get_recent_failures())
        )
        priority = to_priority(score)

        # 4. Strategy
        rule_name, strategy = rules.first_match(
            rules.STRATEGY_RULES, inputs, rules.DEFAULT_STRATEGY
        )
        logger.debug("Strategy %s selected by rule %s", strategy.value, rule_name)

        # 5. Resources
        reason = self.check_resources(action_type, command)
        if reason is not None:
            logger.info("Queuing %s: %s", action_type.value, reason)
            return self._queued(command, analysis, action_type, priority, strategy, reason)

        # 6. Parameters
        parameters = self.derive_parameters(command, analysis, strategy)

        # 7. Build
        action = DecisionAction(
            action_type=action_type,
            priority=priority,
            execution_strategy=strategy,
            parameters=parameters,
            estimated_time=parameters["estimated_time"],
            confidence=analysis.confidence,
            timestamp=self._clock(),
            description=self.describe(action_type, command, analysis),
        )
        logger.info(
            "Decision: %s priority=%s strategy=%s (score %.2f)",
            action.action_type.value,
            action.priority.value,
            strategy.value,
            score,
        )
        return action

    def map_action_type(self, inputs: rules.RuleInputs) -> ActionType:
        action_type = rules.INTENT_ACTIONS.get(
            inputs.command.primary_intent, ActionType.UNKNOWN
        )
        if action_type != ActionType.RUN_TESTS:
            return action_type
        _, refined = rules.first_match(rules.RUN_TEST_RULES, inputs, ActionType.RUN_TESTS)
        return refined

    def check_resources(self, action_type: ActionType, command: ParsedCommand) -> str | None:
        """Return why the action cannot run now, or None if resources allow it."""
        active = self._memory.get_active_tests()
        if len(active) >= self._config.max_parallel_actions:
            return (
                f"{len(active)} active tests at the limit of "
                f"{self._config.max_parallel_actions}"
            )

        metrics = self._monitor.get_performance_metrics()
        if metrics.cpu_usage > _MAX_CPU:
            return f"CPU usage {metrics.cpu_usage:.0f}% above {_MAX_CPU:.0f}%"
        if metrics.memory_usage > _MAX_MEMORY:
            return f"memory usage {metrics.memory_usage:.0f}% above {_MAX_MEMORY:.0f}%"

        is_chaos = action_type == ActionType.RUN_CHAOS_TESTS or (
            action_type in RUN_ACTIONS and TestType.CHAOS_TEST in command.test_types
        )
        if is_chaos and any(t.test_type in _CHAOS_CONFLICTS for t in active):
            return "chaos experiment conflicts with an active integration or performance test"
        return None

    def derive_parameters(
        self,
        command: ParsedCommand,
        analysis: AnalysisSummary,
        strategy: ExecutionStrategy,
    ) -> dict[str, Any]:
        high_risk = analysis.risk_assessment.level == RiskLevel.HIGH
        minutes = analysis.performance_prediction.estimated_minutes

        if high_risk:
            parallelism = 1
        elif command.services:
            parallelism = min(len(command.services), 3)
        else:
            parallelism = 2

        parameters: dict[str, Any] = dict(command.parameters)
        parameters.update({
            "services": list(command.services),
            "test_types": [t.value for t in command.test_types],
            "execution_strategy": strategy.value,
            "max_retries": 1 if high_risk else 3,
            "timeout": int(minutes * 1.5 * 60),
            "parallelism": parallelism,
            "alert_threshold": 0.1 if high_risk else 0.2,
            "risk_level": analysis.risk_assessment.level.value,
            "estimated_time": format_estimated_time(minutes),
            "confidence": analysis.confidence,
            "enable_monitoring": True,
        })
        return parameters

    def describe(
        self, action_type: ActionType, command: ParsedCommand, analysis: AnalysisSummary
    ) -> str:
        text = rules.ACTION_PHRASES.get(action_type, rules.DEFAULT_PHRASE)
        if command.services:
            text += " for " + ", ".join(command.services)
        if analysis.risk_assessment.level == RiskLevel.HIGH:
            text += " (high-risk operation)"
        return text

    def _clarification(
        self, command: ParsedCommand, analysis: AnalysisSummary
    ) -> DecisionAction:
        return DecisionAction(
            action_type=ActionType.REQUEST_CLARIFICATION,
            priority=Priority.LOW,
            parameters={
                "original_text": command.original_text,
                "confidence": analysis.confidence,
                "threshold": self._config.confidence_threshold,
                "assumed_defaults": sorted(command.defaulted),
            },
            confidence=analysis.confidence,
            timestamp=self._clock(),
            description="Requesting clarification due to low confidence in understanding",
        )

    def _queued(
        self,
        command: ParsedCommand,
        analysis: AnalysisSummary,
        action_type: ActionType,
        priority: Priority,
        strategy: ExecutionStrategy,
        reason: str,
    ) -> DecisionAction:
        return DecisionAction(
            action_type=ActionType.QUEUE_ACTION,
            priority=priority,
            execution_strategy=strategy,
            parameters={
                "queued_action": action_type.value,
                "reason": reason,
                "services": list(command.services),
                "test_types": [t.value for t in command.test_types],
            },
            estimated_time=format_estimated_time(
                analysis.performance_prediction.estimated_minutes
            ),
            confidence=analysis.confidence,
            timestamp=self._clock(),
            description=f"Queuing action due to insufficient resources: {reason}",
        )

    def _fallback(self, error: str) -> DecisionAction:
        return DecisionAction(
            action_type=ActionType.UNKNOWN,
            priority=Priority.LOW,
            parameters={"error": error},
            confidence=0.1,
            timestamp=_utcnow(),
            description="Fallback action due to decision engine error",
        )
