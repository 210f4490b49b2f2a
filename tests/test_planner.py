from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from conductor.config import ConductorConfig
from conductor.ingest.parser import CommandParser
from conductor.memory.models import ActiveTest, FailureType, TestFailure
from conductor.memory.store import MemoryStore
from conductor.models import (
    ActionType,
    AnalysisSummary,
    DependencyInfo,
    ExecutionStrategy,
    HealthStatus,
    IntentType,
    ParsedCommand,
    PerformanceMetrics,
    PerformancePrediction,
    Priority,
    RiskAssessment,
    RiskLevel,
    SituationalContext,
    SystemHealth,
    TestType,
)
from conductor.monitor.snapshot import SystemMonitor
from conductor.planner.decision_engine import DecisionEngine, format_estimated_time
from conductor.planner.prioritizer import priority_score, to_priority

_NOW = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


def _make_engine(
    cpu: float = 10.0,
    memory_usage: float = 30.0,
    health: HealthStatus = HealthStatus.HEALTHY,
    **overrides,
) -> tuple[DecisionEngine, MemoryStore]:
    config = ConductorConfig(**overrides)
    store = MemoryStore(config, clock=lambda: _NOW)
    monitor = SystemMonitor(
        health=SystemHealth(status=health),
        metrics=PerformanceMetrics(cpu_usage=cpu, memory_usage=memory_usage),
    )
    return DecisionEngine(store, monitor, config, clock=lambda: _NOW), store


def _make_command(
    intent: IntentType = IntentType.RUN_TESTS,
    services: tuple[str, ...] = ("user-service",),
    test_types: tuple[TestType, ...] = (TestType.UNIT_TEST,),
    urgency: str = "NORMAL",
    scope: str = "DEFAULT",
) -> ParsedCommand:
    return ParsedCommand(
        original_text="test command",
        intents=(intent,),
        services=services,
        test_types=test_types,
        parameters={"priority": "NORMAL", "scope": "DEFAULT", "environment": "DEFAULT"},
        context=SituationalContext(urgency=urgency, scope=scope),
        confidence=1.0,
    )


def _make_analysis(
    risk: RiskLevel = RiskLevel.LOW,
    confidence: float = 0.9,
    minutes: float = 10.0,
) -> AnalysisSummary:
    return AnalysisSummary(
        risk_assessment=RiskAssessment(level=risk, score=0.5),
        performance_prediction=PerformancePrediction(estimated_minutes=minutes),
        dependency_info=DependencyInfo(),
        confidence=confidence,
    )


def _add_active(store: MemoryStore, n: int, test_type: TestType = TestType.UNIT_TEST) -> None:
    for i in range(n):
        store.add_active_test(ActiveTest(
            test_id=f"{test_type.value}-{i}", service_name="user-service", test_type=test_type,
        ))


class TestConfidenceGate:
    @pytest.mark.parametrize("confidence", [0.0, 0.3, 0.59])
    def test_low_confidence_requests_clarification(self, confidence: float) -> None:
        engine, store = _make_engine()
        _add_active(store, 20)  # resource check must not run
        action = engine.decide(
            _make_command(test_types=(TestType.CHAOS_TEST,)),
            _make_analysis(risk=RiskLevel.HIGH, confidence=confidence),
        )
        assert action.action_type == ActionType.REQUEST_CLARIFICATION
        assert action.priority == Priority.LOW
        assert action.execution_strategy is None

    def test_threshold_is_hot_read(self) -> None:
        engine, _ = _make_engine()
        analysis = _make_analysis(confidence=0.65)
        assert engine.decide(_make_command(), analysis).action_type == ActionType.RUN_TESTS
        engine._config.confidence_threshold = 0.7
        assert engine.decide(_make_command(), analysis).action_type == ActionType.REQUEST_CLARIFICATION


class TestActionMapping:
    @pytest.mark.parametrize(
        "intent,expected",
        [
            (IntentType.ANALYZE_FAILURES, ActionType.ANALYZE_FAILURES),
            (IntentType.GENERATE_TESTS, ActionType.GENERATE_TESTS),
            (IntentType.OPTIMIZE_TESTS, ActionType.OPTIMIZE_TESTS),
            (IntentType.HEALTH_CHECK, ActionType.HEALTH_CHECK),
            (IntentType.GET_STATUS, ActionType.MONITOR_SYSTEM),
            (IntentType.HELP, ActionType.GENERATE_REPORT),
            (IntentType.UNKNOWN, ActionType.UNKNOWN),
        ],
    )
    def test_intent_mapping(self, intent: IntentType, expected: ActionType) -> None:
        engine, _ = _make_engine()
        action = engine.decide(_make_command(intent=intent), _make_analysis())
        assert action.action_type == expected

    @pytest.mark.parametrize(
        "risk,test_types,expected",
        [
            (RiskLevel.HIGH, (TestType.CHAOS_TEST,), ActionType.RUN_ISOLATED_TESTS),
            (RiskLevel.HIGH, (TestType.PERFORMANCE_TEST,), ActionType.RUN_ISOLATED_TESTS),
            (RiskLevel.MEDIUM, (TestType.CHAOS_TEST,), ActionType.RUN_CHAOS_TESTS),
            (RiskLevel.MEDIUM, (TestType.PERFORMANCE_TEST,), ActionType.RUN_PERFORMANCE_TESTS),
            (RiskLevel.MEDIUM, (TestType.SECURITY_TEST,), ActionType.RUN_SECURITY_TESTS),
            (RiskLevel.LOW, (TestType.PENETRATION_TEST,), ActionType.RUN_SECURITY_TESTS),
            (RiskLevel.LOW, (TestType.INTEGRATION_TEST,), ActionType.RUN_INTEGRATION_TESTS),
            (
                RiskLevel.LOW,
                (TestType.SECURITY_TEST, TestType.INTEGRATION_TEST),
                ActionType.RUN_SECURITY_TESTS,
            ),
            (RiskLevel.LOW, (TestType.UNIT_TEST,), ActionType.RUN_TESTS),
        ],
    )
    def test_run_tests_refinement_order(self, risk, test_types, expected) -> None:
        engine, _ = _make_engine()
        action = engine.decide(_make_command(test_types=test_types), _make_analysis(risk=risk))
        assert action.action_type == expected


class TestPriority:
    def test_monotonic_in_risk(self) -> None:
        health = SystemHealth()
        cmd = _make_command()
        scores = [
            priority_score(cmd, _make_analysis(risk=level), health, 0)
            for level in (RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH)
        ]
        assert scores == sorted(scores)
        priorities = [to_priority(s) for s in scores]
        order = [Priority.LOW, Priority.MEDIUM, Priority.HIGH]
        assert [order.index(p) for p in priorities] == sorted(order.index(p) for p in priorities)

    def test_weights(self) -> None:
        cmd = _make_command(urgency="HIGH", scope="COMPREHENSIVE")
        health = SystemHealth(status=HealthStatus.DEGRADED)
        score = priority_score(cmd, _make_analysis(risk=RiskLevel.LOW), health, 4)
        # 0.1 + 0.3 + 0.2 + 0.3 + 0.1, clamped
        assert score == 1.0

    def test_three_failures_do_not_count(self) -> None:
        cmd = _make_command()
        base = priority_score(cmd, _make_analysis(), SystemHealth(), 3)
        assert base == pytest.approx(0.1)

    def test_priority_keyword_is_not_urgency(self) -> None:
        parser = CommandParser()
        plain = parser.parse("Run unit tests for user service")
        flagged = parser.parse("Run unit tests for user service, high priority")
        assert flagged.parameters["priority"] == "HIGH"
        assert flagged.context.urgency == "NORMAL"
        analysis, health = _make_analysis(), SystemHealth()
        assert priority_score(flagged, analysis, health, 0) == priority_score(plain, analysis, health, 0)

    @pytest.mark.parametrize("suffix", ["immediate", "immediately", "urgent", "asap"])
    def test_urgent_time_constraint_raises_priority(self, suffix: str) -> None:
        command = CommandParser().parse(f"Run unit tests for user service, {suffix}")
        assert command.context.urgency == "HIGH"
        score = priority_score(command, _make_analysis(), SystemHealth(), 0)
        assert score == pytest.approx(0.4)

    def test_thresholds(self) -> None:
        assert to_priority(0.7) == Priority.HIGH
        assert to_priority(0.69) == Priority.MEDIUM
        assert to_priority(0.4) == Priority.MEDIUM
        assert to_priority(0.39) == Priority.LOW

    def test_recent_failures_raise_decided_priority(self) -> None:
        engine, store = _make_engine()
        cmd, analysis = _make_command(), _make_analysis(risk=RiskLevel.MEDIUM)
        assert engine.decide(cmd, analysis).priority == Priority.LOW
        for i in range(4):
            store.add_test_failure(TestFailure(
                test_id=f"f{i}", service_name="user-service",
                test_type=TestType.UNIT_TEST, failure_type=FailureType.ASSERTION,
            ))
        assert engine.decide(cmd, analysis).priority == Priority.MEDIUM


class TestStrategy:
    def test_many_services_long_run_is_parallel(self) -> None:
        engine, _ = _make_engine()
        cmd = _make_command(services=("a", "b", "c"), test_types=(TestType.CHAOS_TEST,))
        action = engine.decide(cmd, _make_analysis(risk=RiskLevel.HIGH, minutes=30))
        assert action.execution_strategy == ExecutionStrategy.PARALLEL

    def test_high_risk_chaos_is_sequential_not_isolated(self) -> None:
        engine, _ = _make_engine()
        cmd = _make_command(test_types=(TestType.CHAOS_TEST,))
        action = engine.decide(cmd, _make_analysis(risk=RiskLevel.HIGH))
        assert action.execution_strategy == ExecutionStrategy.SEQUENTIAL

    def test_chaos_without_high_risk_is_isolated(self) -> None:
        engine, _ = _make_engine()
        cmd = _make_command(test_types=(TestType.CHAOS_TEST,))
        action = engine.decide(cmd, _make_analysis(risk=RiskLevel.MEDIUM))
        assert action.execution_strategy == ExecutionStrategy.ISOLATED

    def test_high_cpu_is_sequential(self) -> None:
        engine, _ = _make_engine(cpu=85.0)
        action = engine.decide(_make_command(), _make_analysis())
        assert action.execution_strategy == ExecutionStrategy.SEQUENTIAL

    def test_default_is_adaptive(self) -> None:
        engine, _ = _make_engine()
        action = engine.decide(_make_command(), _make_analysis())
        assert action.execution_strategy == ExecutionStrategy.ADAPTIVE


class TestResourceCheck:
    @pytest.mark.parametrize(
        "intent", [IntentType.RUN_TESTS, IntentType.HELP, IntentType.HEALTH_CHECK]
    )
    def test_active_test_limit_queues_any_action(self, intent: IntentType) -> None:
        engine, store = _make_engine()
        _add_active(store, 5)
        action = engine.decide(_make_command(intent=intent), _make_analysis())
        assert action.action_type == ActionType.QUEUE_ACTION

    def test_fifteen_active_tests_queue(self) -> None:
        engine, store = _make_engine(max_parallel_actions=5)
        _add_active(store, 15)
        action = engine.decide(_make_command(), _make_analysis(risk=RiskLevel.HIGH))
        assert action.action_type == ActionType.QUEUE_ACTION
        assert action.priority == Priority.MEDIUM
        assert action.parameters["queued_action"] == ActionType.RUN_TESTS.value

    def test_below_limit_runs(self) -> None:
        engine, store = _make_engine()
        _add_active(store, 4)
        assert engine.decide(_make_command(), _make_analysis()).action_type == ActionType.RUN_TESTS

    def test_cpu_and_memory_limits(self) -> None:
        engine, _ = _make_engine(cpu=91.0)
        assert engine.decide(_make_command(), _make_analysis()).action_type == ActionType.QUEUE_ACTION
        engine, _ = _make_engine(memory_usage=86.0)
        assert engine.decide(_make_command(), _make_analysis()).action_type == ActionType.QUEUE_ACTION

    @pytest.mark.parametrize("active_type", [TestType.INTEGRATION_TEST, TestType.PERFORMANCE_TEST])
    def test_chaos_conflicts_with_active_tests(self, active_type: TestType) -> None:
        engine, store = _make_engine()
        _add_active(store, 1, active_type)
        cmd = _make_command(test_types=(TestType.CHAOS_TEST,))
        action = engine.decide(cmd, _make_analysis(risk=RiskLevel.HIGH))
        assert action.action_type == ActionType.QUEUE_ACTION
        assert "chaos" in action.parameters["reason"]

    def test_chaos_does_not_conflict_with_unit_tests(self) -> None:
        engine, store = _make_engine()
        _add_active(store, 1, TestType.UNIT_TEST)
        cmd = _make_command(test_types=(TestType.CHAOS_TEST,))
        action = engine.decide(cmd, _make_analysis(risk=RiskLevel.HIGH))
        assert action.action_type == ActionType.RUN_ISOLATED_TESTS


class TestDerivedParameters:
    def test_high_risk(self) -> None:
        engine, _ = _make_engine()
        cmd = _make_command(services=("a", "b"), test_types=(TestType.CHAOS_TEST,))
        action = engine.decide(cmd, _make_analysis(risk=RiskLevel.HIGH, minutes=20))
        params = action.parameters
        assert params["max_retries"] == 1
        assert params["parallelism"] == 1
        assert params["alert_threshold"] == 0.1
        assert params["timeout"] == 1800
        assert params["risk_level"] == "high"
        assert params["enable_monitoring"] is True
        assert params["estimated_time"] == "20 minutes"
        assert action.description.endswith("(high-risk operation)")

    def test_low_risk(self) -> None:
        engine, _ = _make_engine()
        cmd = _make_command(services=("a", "b", "c", "d"))
        params = engine.decide(cmd, _make_analysis(minutes=5)).parameters
        assert params["max_retries"] == 3
        assert params["parallelism"] == 3
        assert params["alert_threshold"] == 0.2
        assert params["environment"] == "DEFAULT"

    def test_no_services_uses_default_parallelism(self) -> None:
        engine, _ = _make_engine()
        params = engine.decide(_make_command(services=()), _make_analysis()).parameters
        assert params["parallelism"] == 2

    def test_action_is_stamped_and_described(self) -> None:
        engine, _ = _make_engine()
        action = engine.decide(
            _make_command(services=("user-service", "order-service")), _make_analysis()
        )
        assert action.timestamp == _NOW
        assert action.description == "Executing test suite for user-service, order-service"
        assert action.confidence == pytest.approx(0.9)

    @pytest.mark.parametrize(
        "minutes,expected",
        [
            (0.5, "Less than 1 minute"),
            (1, "1 minute"),
            (45, "45 minutes"),
            (60, "1 hour"),
            (61, "1 hour 1 minute"),
            (121, "2 hours 1 minute"),
            (125, "2 hours 5 minutes"),
        ],
    )
    def test_estimated_time_format(self, minutes: float, expected: str) -> None:
        assert format_estimated_time(minutes) == expected


class TestFallback:
    def test_internal_error_returns_fallback(self) -> None:
        engine, _ = _make_engine()
        with patch.object(engine, "map_action_type", side_effect=RuntimeError("boom")):
            action = engine.decide(_make_command(), _make_analysis())
        assert action.action_type == ActionType.UNKNOWN
        assert action.priority == Priority.LOW
        assert action.confidence == pytest.approx(0.1)
        assert action.description == "Fallback action due to decision engine error"


class TestScenarios:
    def test_chaos_on_order_service_with_high_risk(self) -> None:
        engine, _ = _make_engine()
        cmd = CommandParser().parse("Run chaos tests on order service")
        action = engine.decide(cmd, _make_analysis(risk=RiskLevel.HIGH))
        assert action.action_type in (ActionType.RUN_ISOLATED_TESTS, ActionType.RUN_CHAOS_TESTS)
        assert action.execution_strategy == ExecutionStrategy.SEQUENTIAL
        assert action.parameters["max_retries"] == 1

    def test_empty_input_with_low_confidence_is_gated(self) -> None:
        engine, _ = _make_engine()
        cmd = CommandParser().parse("")
        assert cmd.intents and cmd.services and cmd.test_types
        action = engine.decide(cmd, _make_analysis(confidence=0.2))
        assert action.action_type == ActionType.REQUEST_CLARIFICATION
