from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class IntentType(str, Enum):
    RUN_TESTS = "run_tests"
    ANALYZE_FAILURES = "analyze_failures"
    GENERATE_TESTS = "generate_tests"
    OPTIMIZE_TESTS = "optimize_tests"
    HEALTH_CHECK = "health_check"
    GET_STATUS = "get_status"
    HELP = "help"
    UNKNOWN = "unknown"


class TestType(str, Enum):
    __test__ = False

    UNIT_TEST = "unit_test"
    INTEGRATION_TEST = "integration_test"
    API_TEST = "api_test"
    PERFORMANCE_TEST = "performance_test"
    SECURITY_TEST = "security_test"
    PENETRATION_TEST = "penetration_test"
    CHAOS_TEST = "chaos_test"
    CONTRACT_TEST = "contract_test"
    END_TO_END_TEST = "end_to_end_test"
    SMOKE_TEST = "smoke_test"
    REGRESSION_TEST = "regression_test"
    EXPLORATORY_TEST = "exploratory_test"
    ACCESSIBILITY_TEST = "accessibility_test"
    COMPATIBILITY_TEST = "compatibility_test"
    LOCALIZATION_TEST = "localization_test"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ExecutionStrategy(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    ISOLATED = "isolated"
    ADAPTIVE = "adaptive"


class ActionType(str, Enum):
    RUN_TESTS = "run_tests"
    RUN_PERFORMANCE_TESTS = "run_performance_tests"
    RUN_SECURITY_TESTS = "run_security_tests"
    RUN_INTEGRATION_TESTS = "run_integration_tests"
    RUN_ISOLATED_TESTS = "run_isolated_tests"
    RUN_CHAOS_TESTS = "run_chaos_tests"
    ANALYZE_FAILURES = "analyze_failures"
    GENERATE_TESTS = "generate_tests"
    OPTIMIZE_TESTS = "optimize_tests"
    HEALTH_CHECK = "health_check"
    MONITOR_SYSTEM = "monitor_system"
    GENERATE_REPORT = "generate_report"
    REQUEST_CLARIFICATION = "request_clarification"
    QUEUE_ACTION = "queue_action"
    SELF_HEAL = "self_heal"
    SCALE_RESOURCES = "scale_resources"
    UNKNOWN = "unknown"


RUN_ACTIONS: frozenset[ActionType] = frozenset({
    ActionType.RUN_TESTS,
    ActionType.RUN_PERFORMANCE_TESTS,
    ActionType.RUN_SECURITY_TESTS,
    ActionType.RUN_INTEGRATION_TESTS,
    ActionType.RUN_ISOLATED_TESTS,
    ActionType.RUN_CHAOS_TESTS,
})


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


# --- Parsed command ---


class SituationalContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    urgency: str = "NORMAL"  # HIGH | NORMAL | LOW
    scope: str = "DEFAULT"  # COMPREHENSIVE | TARGETED | DEFAULT
    priority: str = "NORMAL"  # HIGH | NORMAL | LOW
    timing: str = "IMMEDIATE"  # IMMEDIATE | SCHEDULED
    constraints: tuple[str, ...] = ()
    execution_mode: str = "STANDARD"  # DRY_RUN | PRODUCTION | STANDARD


class ParsedCommand(BaseModel):
    model_config = ConfigDict(frozen=True)

    original_text: str = ""
    intents: tuple[IntentType, ...] = ()
    services: tuple[str, ...] = ()
    test_types: tuple[TestType, ...] = ()
    parameters: dict[str, Any] = Field(default_factory=dict)
    context: SituationalContext = Field(default_factory=SituationalContext)
    confidence: float = 0.0
    # Fields that were filled from defaults rather than matched in the text
    defaulted: frozenset[str] = frozenset()

    @property
    def primary_intent(self) -> IntentType:
        return self.intents[0] if self.intents else IntentType.UNKNOWN

    @property
    def is_error(self) -> bool:
        return "error" in self.parameters


# --- Analysis ---


class RiskAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: RiskLevel = RiskLevel.LOW
    score: float = 0.0
    risk_factors: tuple[str, ...] = ()
    mitigation: tuple[str, ...] = ()


class PerformancePrediction(BaseModel):
    model_config = ConfigDict(frozen=True)

    estimated_minutes: float = 10.0
    success_probability: float = 0.9
    bottlenecks: tuple[str, ...] = ()
    confidence: float = 0.5


class DependencyInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    affected_services: tuple[str, ...] = ()
    blast_radius: int = 0
    severity_level: RiskLevel = RiskLevel.LOW
    critical_path: tuple[str, ...] = ()
    isolation_points: tuple[str, ...] = ()
    risk_factors: tuple[str, ...] = ()


class AnalysisSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    risk_assessment: RiskAssessment = Field(default_factory=RiskAssessment)
    performance_prediction: PerformancePrediction = Field(
        default_factory=PerformancePrediction
    )
    dependency_info: DependencyInfo = Field(default_factory=DependencyInfo)
    confidence: float = 0.0
    insights: tuple[str, ...] = ()


# --- Decision ---


class DecisionAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    action_type: ActionType
    priority: Priority = Priority.LOW
    execution_strategy: ExecutionStrategy | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    estimated_time: str = ""
    confidence: float = 0.0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    description: str = ""


# --- Monitoring snapshots ---


class SystemHealth(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: HealthStatus = HealthStatus.HEALTHY
    services: dict[str, HealthStatus] = Field(default_factory=dict)
    checked_at: datetime | None = None

    @property
    def is_healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY


class PerformanceMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    cpu_usage: float = 0.0
    memory_usage: float = 0.0
    sampled_at: datetime | None = None
