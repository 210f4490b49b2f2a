from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable

from conductor.config import ConductorConfig
from conductor.learning.optimizations import evaluate_optimizations
from conductor.learning.trends import compute_trends, service_usage
from conductor.memory.models import (
    LearningData,
    LearningDataType,
    LearningInsights,
    Optimization,
    Pattern,
    Trend,
)
from conductor.memory.store import MemoryStore
from conductor.models import AnalysisSummary, DecisionAction, ParsedCommand
from conductor.monitor.snapshot import SystemMonitor

logger = logging.getLogger(__name__)

EMA_ALPHA: float = 0.3


def ema(observed: float, previous: float | None, alpha: float = EMA_ALPHA) -> float:
    """Exponential moving average; the first observation seeds the value."""
    if previous is None:
        return observed
    return alpha * observed + (1 - alpha) * previous


def pattern_keys(
    command: ParsedCommand, analysis: AnalysisSummary, action: DecisionAction
) -> list[str]:
    action_name = action.action_type.value
    keys = [
        f"{command.primary_intent.value}_{action_name}",
        f"risk_{analysis.risk_assessment.level.value}",
    ]
    keys.extend(f"service_{s}_{action_name}" for s in command.services)
    keys.extend(f"testtype_{t.value}_{action_name}" for t in command.test_types)
    return keys


class LearningEngine:
    """Heuristic learning loop over the memory store.

    Both entry points run the same stages: record, update patterns,
    recompute trends, evaluate optimizations, then publish a new
    ``LearningInsights`` snapshot by reference swap. A failed cycle leaves
    the previous snapshot in place.

    ``recompute`` is single-flight: if a cycle is already running it returns
    immediately. ``learn_from_interaction`` waits for the running cycle so no
    observation is lost.
    """

    def __init__(
        self,
        memory: MemoryStore,
        monitor: SystemMonitor,
        config: ConductorConfig | None = None,
    ) -> None:
        self._memory = memory
        self._monitor = monitor
        self._config = config or ConductorConfig()

        self._cycle_lock = threading.Lock()
        self._patterns: dict[str, Pattern] = {}
        self._trends: dict[str, Trend] = {}
        self._optimizations: dict[str, Optimization] = {}
        self._insights = LearningInsights(timestamp=memory.now())

    def insights(self) -> LearningInsights:
        return self._insights

    def pattern(self, key: str) -> Pattern | None:
        with self._cycle_lock:
            found = self._patterns.get(key)
            return found.model_copy() if found else None

    def learn_from_interaction(
        self,
        command: ParsedCommand,
        analysis: AnalysisSummary,
        action: DecisionAction,
    ) -> LearningInsights | None:
        with self._cycle_lock:
            return self._run_cycle(
                lambda now: self._record_interaction(command, analysis, action, now),
                lambda: self._update_patterns(
                    pattern_keys(command, analysis, action), analysis.confidence
                ),
            )

    def recompute(self) -> LearningInsights | None:
        if not self._cycle_lock.acquire(blocking=False):
            logger.info("Learning cycle already running, skipping")
            return None
        try:
            return self._run_cycle(self._record_service_usage, self._promote_patterns)
        finally:
            self._cycle_lock.release()

    def reset(self) -> None:
        """Forget all learned patterns, trends and optimizations."""
        with self._cycle_lock:
            self._patterns.clear()
            self._trends.clear()
            self._optimizations.clear()
            self._insights = LearningInsights(timestamp=self._memory.now())

    # --- Stages ---

    def _run_cycle(
        self,
        record: Callable[[datetime], None],
        update_patterns: Callable[[], None],
    ) -> LearningInsights | None:
        now = self._memory.now()
        try:
            record(now)
            update_patterns()
            self._update_trends(now)
            self._update_optimizations()
            snapshot = self._render(now)
        except Exception as exc:
            logger.error("Learning cycle failed, keeping previous insights: %s", exc)
            return None
        self._insights = snapshot
        logger.debug(
            "Published insights: %d patterns, %d trends, %d optimizations",
            len(snapshot.patterns),
            len(snapshot.trends),
            len(snapshot.optimizations),
        )
        return snapshot

    def _record_interaction(
        self,
        command: ParsedCommand,
        analysis: AnalysisSummary,
        action: DecisionAction,
        now: datetime,
    ) -> None:
        self._memory.add_learning_data(LearningData(
            data_type=LearningDataType.INTERACTION,
            data={
                "command": command.original_text,
                "intent": command.primary_intent.value,
                "services": list(command.services),
                "test_types": [t.value for t in command.test_types],
                "action": action.action_type.value,
                "priority": action.priority.value,
                "risk_level": analysis.risk_assessment.level.value,
                "confidence": analysis.confidence,
            },
            insights=action.description,
            timestamp=now,
        ))

    def _record_service_usage(self, now: datetime) -> None:
        counts = service_usage(self._memory.get_learning_data(LearningDataType.INTERACTION))
        if not counts:
            return
        ranked = counts.most_common()
        self._memory.add_learning_data(LearningData(
            data_type=LearningDataType.SERVICE_USAGE,
            data={
                "counts": dict(counts),
                "most_used": ranked[0][0],
                "least_used": ranked[-1][0],
            },
            insights=f"Most used service: {ranked[0][0]}",
            timestamp=now,
        ))

    def _update_patterns(self, keys: list[str], observed: float) -> None:
        for key in keys:
            current = self._patterns.get(key)
            if current is None:
                current = Pattern(name=key, frequency=0, description=f"Learned pattern: {key}")
                previous = None
            else:
                previous = current.confidence
            current.confidence = ema(observed, previous)
            current.frequency += 1
            self._patterns[key] = current
        self._promote_patterns()

    def _promote_patterns(self) -> None:
        threshold = self._config.learning_confidence_threshold
        for pattern in self._patterns.values():
            if pattern.confidence >= threshold:
                self._memory.store_pattern(pattern)

    def _update_trends(self, now: datetime) -> None:
        trends = compute_trends(
            self._memory.get_test_results(),
            self._memory.get_recent_failures(),
            self._memory.get_learning_data(),
            now,
            self._config.min_data_points,
        )
        for trend in trends:
            self._trends[trend.name] = trend

    def _update_optimizations(self) -> None:
        for optimization in evaluate_optimizations(
            self._memory.get_test_results(),
            self._memory.get_recent_failures(),
            self._monitor.get_performance_metrics(),
        ):
            self._optimizations[optimization.name] = optimization

    def _render(self, now: datetime) -> LearningInsights:
        threshold = self._config.learning_confidence_threshold
        strong = sorted(
            (p for p in self._patterns.values() if p.confidence >= threshold),
            key=lambda p: p.confidence,
            reverse=True,
        )
        lines = [
            f"Strong pattern detected: {p.name} (confidence: {p.confidence:.2f})"
            for p in strong
        ]
        lines.extend(
            f"Trend: {t.name} is {t.direction.value} "
            f"(current: {t.current_value:.2f}, previous: {t.previous_value:.2f})"
            for t in self._trends.values()
        )
        lines.extend(
            f"Optimization: {o.description} (impact: {o.impact.value.upper()})"
            for o in self._optimizations.values()
        )
        return LearningInsights(
            insights=tuple(lines),
            patterns=tuple(p.model_copy() for p in strong),
            trends=tuple(self._trends.values()),
            optimizations=tuple(self._optimizations.values()),
            timestamp=now,
        )
