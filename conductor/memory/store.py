from __future__ import annotations

import logging
import threading
from collections import Counter
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

from conductor.config import ConductorConfig
from conductor.memory.models import (
    ActiveTest,
    FailureType,
    LearningData,
    LearningDataType,
    MemoryEntry,
    MemoryType,
    Pattern,
    TestFailure,
    TestResult,
)
from conductor.models import TestType
from conductor.utils import atomic_write_json

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _trim(items: list[Any], cap: int) -> None:
    """Evict oldest items in place until ``len(items) <= cap``."""
    overflow = len(items) - max(cap, 0)
    if overflow > 0:
        del items[:overflow]


class MemoryStore:
    """Bounded, time-retained, in-memory store.

    Collections:
    - typed entry buckets (one per MemoryType), capped per type
    - active tests keyed by test_id
    - recent failures, test results, learning records (own caps)
    - learned patterns keyed by name (upsert)

    Each collection has its own lock; append-and-evict and snapshot reads for
    a collection run under that lock. Every public method logs and degrades
    to an empty result on internal error.
    """

    def __init__(
        self,
        config: ConductorConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config or ConductorConfig()
        self._clock = clock

        self._entries: dict[MemoryType, list[MemoryEntry]] = {t: [] for t in MemoryType}
        self._active: dict[str, ActiveTest] = {}
        self._failures: list[TestFailure] = []
        self._results: list[TestResult] = []
        self._learning: list[LearningData] = []
        self._patterns: dict[str, Pattern] = {}

        self._entries_lock = threading.Lock()
        self._active_lock = threading.Lock()
        self._failures_lock = threading.Lock()
        self._results_lock = threading.Lock()
        self._learning_lock = threading.Lock()
        self._patterns_lock = threading.Lock()

    def now(self) -> datetime:
        return self._clock()

    # --- Append ---

    def store(
        self,
        key: str,
        value: dict[str, Any],
        memory_type: MemoryType,
        ttl: timedelta | None = None,
    ) -> None:
        """Append a typed entry, evicting the oldest of that type over the cap."""
        try:
            entry = MemoryEntry(
                key=key,
                value=dict(value),
                timestamp=self._clock(),
                ttl=ttl,
                memory_type=memory_type,
            )
            with self._entries_lock:
                bucket = self._entries[memory_type]
                bucket.append(entry)
                _trim(bucket, self._config.memory_max_entries_per_type)
        except Exception as exc:
            logger.warning("Could not store memory entry %s: %s", key, exc)

    def add_active_test(self, test: ActiveTest) -> None:
        try:
            with self._active_lock:
                self._active[test.test_id] = test
            logger.debug("Active test added: %s", test.test_id)
        except Exception as exc:
            logger.warning("Could not add active test: %s", exc)

    def remove_active_test(self, test_id: str) -> ActiveTest | None:
        try:
            with self._active_lock:
                return self._active.pop(test_id, None)
        except Exception as exc:
            logger.warning("Could not remove active test %s: %s", test_id, exc)
            return None

    def add_test_failure(self, failure: TestFailure) -> None:
        try:
            with self._failures_lock:
                self._failures.append(failure)
                _trim(self._failures, self._config.max_recent_failures)
        except Exception as exc:
            logger.warning("Could not add test failure: %s", exc)
            return
        self.store(
            f"failure_{failure.test_id}",
            failure.model_dump(mode="json"),
            MemoryType.TEST_FAILURE,
        )

    def add_test_result(self, result: TestResult) -> None:
        try:
            with self._results_lock:
                self._results.append(result)
                _trim(self._results, self._config.max_test_results)
        except Exception as exc:
            logger.warning("Could not add test result: %s", exc)
            return
        self.store(
            f"result_{result.test_id}",
            result.model_dump(mode="json"),
            MemoryType.TEST_RESULT,
        )

    def add_learning_data(self, record: LearningData) -> None:
        try:
            with self._learning_lock:
                self._learning.append(record)
                _trim(self._learning, self._config.max_learning_records)
        except Exception as exc:
            logger.warning("Could not add learning data: %s", exc)
            return
        self.store(
            f"learning_{record.data_type.value}_{record.timestamp.isoformat()}",
            record.model_dump(mode="json"),
            MemoryType.LEARNING_DATA,
        )

    def store_pattern(self, pattern: Pattern) -> None:
        """Upsert a pattern by name."""
        try:
            with self._patterns_lock:
                self._patterns[pattern.name] = pattern.model_copy()
        except Exception as exc:
            logger.warning("Could not store pattern %s: %s", pattern.name, exc)

    # --- Typed reads ---

    def retrieve_by_key(self, key: str) -> MemoryEntry | None:
        """Return the most recent entry stored under ``key``."""
        try:
            with self._entries_lock:
                latest: MemoryEntry | None = None
                for bucket in self._entries.values():
                    for entry in bucket:
                        if entry.key == key and (
                            latest is None or entry.timestamp >= latest.timestamp
                        ):
                            latest = entry
                return latest
        except Exception as exc:
            logger.warning("Memory lookup failed for %s: %s", key, exc)
            return None

    def retrieve_by_type(self, memory_type: MemoryType) -> list[MemoryEntry]:
        try:
            with self._entries_lock:
                return list(self._entries[memory_type])
        except Exception as exc:
            logger.warning("Memory lookup failed for type %s: %s", memory_type, exc)
            return []

    def retrieve_by_time_range(
        self, start: datetime, end: datetime
    ) -> list[MemoryEntry]:
        """Entries with ``start <= timestamp <= end``, oldest first."""
        try:
            with self._entries_lock:
                found = [
                    e
                    for bucket in self._entries.values()
                    for e in bucket
                    if start <= e.timestamp <= end
                ]
            return sorted(found, key=lambda e: e.timestamp)
        except Exception as exc:
            logger.warning("Memory time-range lookup failed: %s", exc)
            return []

    def search(self, query: str) -> list[MemoryEntry]:
        """Case-insensitive substring search over entry keys and payloads."""
        needle = (query or "").lower()
        if not needle:
            return []
        try:
            with self._entries_lock:
                snapshot = [e for bucket in self._entries.values() for e in bucket]
            return [
                e
                for e in snapshot
                if needle in e.key.lower() or needle in str(e.value).lower()
            ]
        except Exception as exc:
            logger.warning("Memory search failed for %r: %s", query, exc)
            return []

    def get_active_tests(self) -> list[ActiveTest]:
        try:
            with self._active_lock:
                return list(self._active.values())
        except Exception as exc:
            logger.warning("Active test lookup failed: %s", exc)
            return []

    def get_active_test(self, test_id: str) -> ActiveTest | None:
        try:
            with self._active_lock:
                return self._active.get(test_id)
        except Exception as exc:
            logger.warning("Active test lookup failed for %s: %s", test_id, exc)
            return None

    def get_recent_failures(self) -> list[TestFailure]:
        try:
            with self._failures_lock:
                return list(self._failures)
        except Exception as exc:
            logger.warning("Failure lookup failed: %s", exc)
            return []

    def get_failures_by_service(self, service_name: str) -> list[TestFailure]:
        return [f for f in self.get_recent_failures() if f.service_name == service_name]

    def get_failures_by_type(self, failure_type: FailureType) -> list[TestFailure]:
        return [f for f in self.get_recent_failures() if f.failure_type == failure_type]

    def get_test_results(self) -> list[TestResult]:
        try:
            with self._results_lock:
                return list(self._results)
        except Exception as exc:
            logger.warning("Test result lookup failed: %s", exc)
            return []

    def get_results_by_service(self, service_name: str) -> list[TestResult]:
        return [r for r in self.get_test_results() if r.service_name == service_name]

    def get_results_by_type(self, test_type: TestType) -> list[TestResult]:
        return [r for r in self.get_test_results() if r.test_type == test_type]

    def get_learning_data(
        self, data_type: LearningDataType | None = None
    ) -> list[LearningData]:
        try:
            with self._learning_lock:
                records = list(self._learning)
        except Exception as exc:
            logger.warning("Learning data lookup failed: %s", exc)
            return []
        if data_type is None:
            return records
        return [r for r in records if r.data_type == data_type]

    def get_pattern(self, name: str) -> Pattern | None:
        try:
            with self._patterns_lock:
                pattern = self._patterns.get(name)
                return pattern.model_copy() if pattern else None
        except Exception as exc:
            logger.warning("Pattern lookup failed for %s: %s", name, exc)
            return None

    def get_all_patterns(self) -> list[Pattern]:
        try:
            with self._patterns_lock:
                return [p.model_copy() for p in self._patterns.values()]
        except Exception as exc:
            logger.warning("Pattern lookup failed: %s", exc)
            return []

    def get_patterns_by_confidence(self, min_confidence: float) -> list[Pattern]:
        return [p for p in self.get_all_patterns() if p.confidence >= min_confidence]

    def get_statistics(self) -> dict[str, Any]:
        try:
            results = self.get_test_results()
            passed = sum(1 for r in results if r.passed)
            with self._entries_lock:
                by_type = {t.value: len(b) for t, b in self._entries.items()}
            failures = self.get_recent_failures()
            return {
                "total_entries": sum(by_type.values()),
                "entries_by_type": by_type,
                "active_tests": len(self.get_active_tests()),
                "recent_failures": len(failures),
                "failures_by_type": dict(Counter(f.failure_type.value for f in failures)),
                "test_results": len(results),
                "test_success_rate": passed / len(results) if results else 0.0,
                "learning_records": len(self.get_learning_data()),
                "patterns": len(self.get_all_patterns()),
            }
        except Exception as exc:
            logger.warning("Could not compute memory statistics: %s", exc)
            return {}

    # --- Maintenance ---

    def cleanup_expired(self, now: datetime | None = None) -> int:
        """Drop everything older than the retention window from every collection.

        Each collection is swept independently so a failure in one does not
        stop the others. Returns the number of items removed.
        """
        now = now or self._clock()
        cutoff = now - timedelta(hours=self._config.memory_retention_hours)
        removed = 0

        try:
            with self._entries_lock:
                for memory_type, bucket in self._entries.items():
                    kept = [e for e in bucket if not e.expired(now, cutoff)]
                    removed += len(bucket) - len(kept)
                    self._entries[memory_type] = kept
        except Exception as exc:
            logger.warning("Cleanup of memory entries failed: %s", exc)

        try:
            with self._active_lock:
                stale = [k for k, t in self._active.items() if t.start_time < cutoff]
                for k in stale:
                    del self._active[k]
                removed += len(stale)
        except Exception as exc:
            logger.warning("Cleanup of active tests failed: %s", exc)

        for lock, items, label in (
            (self._failures_lock, self._failures, "failures"),
            (self._results_lock, self._results, "test results"),
            (self._learning_lock, self._learning, "learning data"),
        ):
            try:
                with lock:
                    before = len(items)
                    items[:] = [i for i in items if i.timestamp >= cutoff]
                    removed += before - len(items)
            except Exception as exc:
                logger.warning("Cleanup of %s failed: %s", label, exc)

        logger.info("Memory cleanup removed %d expired items", removed)
        return removed

    def clear(self) -> None:
        with self._entries_lock:
            for bucket in self._entries.values():
                bucket.clear()
        with self._active_lock:
            self._active.clear()
        with self._failures_lock:
            self._failures.clear()
        with self._results_lock:
            self._results.clear()
        with self._learning_lock:
            self._learning.clear()
        with self._patterns_lock:
            self._patterns.clear()

    def save_snapshot(self, path: str | Path) -> bool:
        """Export the store as JSON. Returns False if the write failed."""
        try:
            with self._entries_lock:
                entries = [
                    e.model_dump(mode="json")
                    for bucket in self._entries.values()
                    for e in bucket
                ]
            data = {
                "exported_at": self._clock().isoformat(),
                "entries": entries,
                "active_tests": [t.model_dump(mode="json") for t in self.get_active_tests()],
                "recent_failures": [
                    f.model_dump(mode="json") for f in self.get_recent_failures()
                ],
                "test_results": [r.model_dump(mode="json") for r in self.get_test_results()],
                "learning_data": [
                    r.model_dump(mode="json") for r in self.get_learning_data()
                ],
                "patterns": [p.model_dump(mode="json") for p in self.get_all_patterns()],
                "statistics": self.get_statistics(),
            }
            atomic_write_json(path, data)
            logger.info("Memory snapshot written to %s", path)
            return True
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Could not write memory snapshot to %s: %s", path, exc)
            return False
