from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from conductor.models import ActionType, TestType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    """Naive values are read as local time; everything is stored in UTC."""
    return value.astimezone(timezone.utc)


# Every stored timestamp is compared against the store's UTC clock
Timestamp = Annotated[datetime, AfterValidator(_as_utc)]


class MemoryType(str, Enum):
    COMMAND = "command"
    INTERACTION = "interaction"
    TEST_RESULT = "test_result"
    TEST_FAILURE = "test_failure"
    LEARNING_DATA = "learning_data"
    PATTERN = "pattern"
    SYSTEM_EVENT = "system_event"


class TestStatus(str, Enum):
    __test__ = False

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    ERROR = "error"
    TIMEOUT = "timeout"


class FailureType(str, Enum):
    ASSERTION = "assertion"
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    ENVIRONMENT = "environment"
    DATA = "data"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class LearningDataType(str, Enum):
    INTERACTION = "interaction"
    SERVICE_USAGE = "service_usage"
    PATTERN_RECOGNITION = "pattern_recognition"
    PERFORMANCE = "performance"
    FAILURE_ANALYSIS = "failure_analysis"


class TrendDirection(str, Enum):
    IMPROVING = "improving"
    DEGRADING = "degrading"


class Impact(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MemoryEntry(BaseModel):
    key: str
    value: dict[str, Any] = Field(default_factory=dict)
    timestamp: Timestamp = Field(default_factory=_utcnow)
    ttl: timedelta | None = None
    memory_type: MemoryType

    def expired(self, now: datetime, retention_cutoff: datetime) -> bool:
        if self.timestamp < retention_cutoff:
            return True
        return self.ttl is not None and self.timestamp + self.ttl < now


class ActiveTest(BaseModel):
    test_id: str
    service_name: str
    test_type: TestType
    start_time: Timestamp = Field(default_factory=_utcnow)
    action_type: ActionType = ActionType.RUN_TESTS


class TestResult(BaseModel):
    __test__ = False

    test_id: str
    service_name: str
    test_type: TestType
    status: TestStatus
    duration: float = 0.0  # seconds
    timestamp: Timestamp = Field(default_factory=_utcnow)
    error_message: str | None = None

    @property
    def passed(self) -> bool:
        return self.status == TestStatus.PASSED


class TestFailure(BaseModel):
    __test__ = False

    test_id: str
    service_name: str
    test_type: TestType
    failure_type: FailureType = FailureType.UNKNOWN
    message: str = ""
    timestamp: Timestamp = Field(default_factory=_utcnow)


class LearningData(BaseModel):
    data_type: LearningDataType
    data: dict[str, Any] = Field(default_factory=dict)
    insights: str = ""
    timestamp: Timestamp = Field(default_factory=_utcnow)


class Pattern(BaseModel):
    name: str
    frequency: int = 1
    confidence: float = 0.0
    description: str = ""


class Trend(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    current_value: float
    previous_value: float
    direction: TrendDirection
    confidence: float = 0.0


class Optimization(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    impact: Impact
    confidence: float = 0.0


class LearningInsights(BaseModel):
    """Published, immutable snapshot of everything the learning engine knows."""

    model_config = ConfigDict(frozen=True)

    insights: tuple[str, ...] = ()
    patterns: tuple[Pattern, ...] = ()
    trends: tuple[Trend, ...] = ()
    optimizations: tuple[Optimization, ...] = ()
    timestamp: Timestamp = Field(default_factory=_utcnow)
