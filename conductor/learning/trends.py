from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Sequence

from conductor.memory.models import (
    LearningData,
    LearningDataType,
    TestFailure,
    TestResult,
    Trend,
    TrendDirection,
)

logger = logging.getLogger(__name__)

SHORT_WINDOW = timedelta(hours=1)
DAY_WINDOW = timedelta(days=1)
WEEK_WINDOW = timedelta(weeks=1)


def _within(timestamp: datetime, now: datetime, window: timedelta) -> bool:
    return now - window <= timestamp <= now


def _direction(current: float, previous: float, higher_is_better: bool) -> TrendDirection:
    if higher_is_better:
        improving = current >= previous
    else:
        improving = current <= previous
    return TrendDirection.IMPROVING if improving else TrendDirection.DEGRADING


def _trend(
    name: str,
    description: str,
    current: float,
    previous: float,
    higher_is_better: bool,
    confidence: float,
) -> Trend:
    return Trend(
        name=name,
        description=description,
        current_value=round(current, 4),
        previous_value=round(previous, 4),
        direction=_direction(current, previous, higher_is_better),
        confidence=confidence,
    )


def success_rate_trend(
    results: Sequence[TestResult], now: datetime, min_points: int
) -> Trend | None:
    """Pass rate over the last hour against the last week; higher is better."""
    recent = [r for r in results if _within(r.timestamp, now, SHORT_WINDOW)]
    baseline = [r for r in results if _within(r.timestamp, now, WEEK_WINDOW)]
    if len(baseline) < min_points or not recent:
        return None
    current = sum(1 for r in recent if r.passed) / len(recent)
    previous = sum(1 for r in baseline if r.passed) / len(baseline)
    return _trend("success_rate", "Test pass rate", current, previous, True, 0.8)


def execution_time_trend(
    results: Sequence[TestResult], now: datetime, min_points: int
) -> Trend | None:
    """Mean duration (seconds) over the last hour against the last day; lower is better."""
    recent = [r for r in results if _within(r.timestamp, now, SHORT_WINDOW)]
    baseline = [r for r in results if _within(r.timestamp, now, DAY_WINDOW)]
    if len(baseline) < min_points or not recent:
        return None
    current = sum(r.duration for r in recent) / len(recent)
    previous = sum(r.duration for r in baseline) / len(baseline)
    return _trend(
        "execution_time", "Average test duration in seconds", current, previous, False, 0.7
    )


def failure_rate_trend(
    failures: Sequence[TestFailure], now: datetime, min_points: int
) -> Trend | None:
    """Failures per hour over the last hour against the last day; lower is better."""
    baseline = [f for f in failures if _within(f.timestamp, now, DAY_WINDOW)]
    if len(baseline) < max(min_points // 2, 1):
        return None
    current = float(sum(1 for f in baseline if _within(f.timestamp, now, SHORT_WINDOW)))
    previous = len(baseline) / (DAY_WINDOW / SHORT_WINDOW)
    return _trend("failure_rate", "Failures per hour", current, previous, False, 0.6)


def service_usage(records: Sequence[LearningData]) -> Counter[str]:
    """Count how often each service was targeted by recorded interactions."""
    counts: Counter[str] = Counter()
    for record in records:
        if record.data_type == LearningDataType.INTERACTION:
            counts.update(record.data.get("services", []))
    return counts


def _largest_share(counts: Counter[str]) -> float:
    total = sum(counts.values())
    return max(counts.values()) / total if total else 0.0


def service_usage_skew_trend(
    records: Sequence[LearningData], now: datetime, min_points: int
) -> Trend | None:
    """Share of the most-targeted service, last hour against last day; lower is better."""
    interactions = [r for r in records if r.data_type == LearningDataType.INTERACTION]
    recent = [r for r in interactions if _within(r.timestamp, now, SHORT_WINDOW)]
    baseline = [r for r in interactions if _within(r.timestamp, now, DAY_WINDOW)]
    if len(baseline) < min_points or not recent:
        return None
    current = _largest_share(service_usage(recent))
    previous = _largest_share(service_usage(baseline))
    return _trend(
        "service_usage_skew",
        "Share of interactions targeting the most-used service",
        current,
        previous,
        False,
        0.6,
    )


def compute_trends(
    results: Sequence[TestResult],
    failures: Sequence[TestFailure],
    records: Sequence[LearningData],
    now: datetime,
    min_points: int,
) -> list[Trend]:
    candidates = [
        success_rate_trend(results, now, min_points),
        execution_time_trend(results, now, min_points),
        failure_rate_trend(failures, now, min_points),
        service_usage_skew_trend(records, now, min_points),
    ]
    trends = [t for t in candidates if t is not None]
    logger.debug("Computed %d of %d trends", len(trends), len(candidates))
    return trends
