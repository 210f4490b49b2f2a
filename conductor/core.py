from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Mapping, Sequence

from pydantic import BaseModel, ConfigDict

from conductor.analysis.analyzer import ContextAnalyzer
from conductor.analysis.dependency import DependencyAnalyzer
from conductor.config import ConductorConfig
from conductor.ingest.parser import CommandParser
from conductor.learning.engine import LearningEngine
from conductor.memory.models import ActiveTest, LearningInsights, TestFailure, TestResult
from conductor.memory.store import MemoryStore
from conductor.models import AnalysisSummary, DecisionAction, ParsedCommand
from conductor.monitor.probes import HealthPoller, HostMetricsSampler
from conductor.monitor.snapshot import SystemMonitor
from conductor.planner.decision_engine import DecisionEngine
from conductor.scheduler import MaintenanceScheduler

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Interpretation(BaseModel):
    """The three objects produced while interpreting one command."""

    model_config = ConfigDict(frozen=True)

    command: ParsedCommand
    analysis: AnalysisSummary
    action: DecisionAction


class ConductorCore:
    """Entry point: text -> parse -> analyze -> decide, plus the feedback loop.

    The executor reports back through ``record_outcome``,
    ``record_active_test`` and ``remove_active_test``; callers pass each
    interpretation to ``learn_from_interaction`` right after deciding.
    """

    def __init__(
        self,
        config: ConductorConfig | None = None,
        monitor: SystemMonitor | None = None,
        dependency_graph: Mapping[str, Sequence[str]] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config or ConductorConfig()
        self.monitor = monitor or SystemMonitor()
        self.memory = MemoryStore(self.config, clock=clock)
        self.parser = CommandParser(self.config)
        self.dependencies = DependencyAnalyzer(dependency_graph, self.config)
        self.analyzer = ContextAnalyzer(self.dependencies, self.monitor, self.memory)
        self.decisions = DecisionEngine(self.memory, self.monitor, self.config, clock=clock)
        self.learning = LearningEngine(self.memory, self.monitor, self.config)
        self.scheduler = MaintenanceScheduler(self.memory, self.learning, self.config)
        self._register_refreshers()

    def _register_refreshers(self) -> None:
        interval = self.config.monitor_refresh_seconds
        if self.config.monitor_host_metrics:
            sampler = HostMetricsSampler(self.monitor)
            self.scheduler.add_refresher("host_metrics", sampler.refresh, interval)
        endpoints = self.config.health_endpoints
        if endpoints:
            poller = HealthPoller(
                self.monitor,
                endpoints,
                timeout_seconds=self.config.health_check_timeout_seconds,
            )
            self.scheduler.add_refresher("service_health", poller.refresh, interval)

    # --- Inbound ---

    def interpret_full(self, text: str | None) -> Interpretation:
        command = self.parser.parse(text)
        analysis = self.analyzer.analyze(command)
        action = self.decisions.decide(command, analysis)
        return Interpretation(command=command, analysis=analysis, action=action)

    def interpret(self, text: str | None) -> DecisionAction:
        return self.interpret_full(text).action

    # --- Feedback ---

    def record_outcome(self, outcome: TestResult | TestFailure) -> None:
        if isinstance(outcome, TestResult):
            self.memory.add_test_result(outcome)
        elif isinstance(outcome, TestFailure):
            self.memory.add_test_failure(outcome)
        else:
            raise TypeError(f"Unsupported outcome type: {type(outcome).__name__}")

    def record_active_test(self, test: ActiveTest) -> None:
        self.memory.add_active_test(test)

    def remove_active_test(self, test_id: str) -> ActiveTest | None:
        return self.memory.remove_active_test(test_id)

    def learn_from_interaction(
        self,
        command: ParsedCommand,
        analysis: AnalysisSummary,
        action: DecisionAction,
    ) -> LearningInsights | None:
        return self.learning.learn_from_interaction(command, analysis, action)

    def insights(self) -> LearningInsights:
        return self.learning.insights()

    # --- Lifecycle ---

    def start(self) -> None:
        self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()

    def __enter__(self) -> ConductorCore:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
