from __future__ import annotations

import json
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from conductor.config import ConductorConfig
from conductor.memory.models import (
    ActiveTest,
    FailureType,
    LearningData,
    LearningDataType,
    MemoryType,
    Pattern,
    TestFailure,
    TestResult,
    TestStatus,
)
from conductor.memory.store import MemoryStore
from conductor.models import TestType

_T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, start: datetime = _T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def _make_store(clock: _Clock | None = None, **overrides) -> MemoryStore:
    return MemoryStore(ConductorConfig(**overrides), clock=clock or _Clock())


def _make_result(
    test_id: str = "r1",
    service: str = "user-service",
    status: TestStatus = TestStatus.PASSED,
    duration: float = 2.0,
    timestamp: datetime = _T0,
) -> TestResult:
    return TestResult(
        test_id=test_id,
        service_name=service,
        test_type=TestType.UNIT_TEST,
        status=status,
        duration=duration,
        timestamp=timestamp,
    )


def _make_failure(
    test_id: str = "f1",
    service: str = "order-service",
    failure_type: FailureType = FailureType.TIMEOUT,
    timestamp: datetime = _T0,
) -> TestFailure:
    return TestFailure(
        test_id=test_id,
        service_name=service,
        test_type=TestType.INTEGRATION_TEST,
        failure_type=failure_type,
        message="boom",
        timestamp=timestamp,
    )


class TestTypedBuckets:
    def test_store_and_retrieve_by_key(self) -> None:
        store = _make_store()
        store.store("cmd-1", {"text": "run tests"}, MemoryType.COMMAND)
        entry = store.retrieve_by_key("cmd-1")
        assert entry is not None
        assert entry.value == {"text": "run tests"}
        assert entry.timestamp == _T0

    def test_retrieve_by_key_returns_latest(self) -> None:
        clock = _Clock()
        store = _make_store(clock)
        store.store("k", {"v": 1}, MemoryType.SYSTEM_EVENT)
        clock.advance(minutes=1)
        store.store("k", {"v": 2}, MemoryType.SYSTEM_EVENT)
        assert store.retrieve_by_key("k").value == {"v": 2}

    def test_missing_key(self) -> None:
        assert _make_store().retrieve_by_key("nope") is None

    def test_bucket_cap_evicts_oldest_first(self) -> None:
        store = _make_store(memory_max_entries_per_type=3)
        for i in range(10):
            store.store(f"k{i}", {"i": i}, MemoryType.COMMAND)
            assert len(store.retrieve_by_type(MemoryType.COMMAND)) <= 3
        keys = [e.key for e in store.retrieve_by_type(MemoryType.COMMAND)]
        assert keys == ["k7", "k8", "k9"]

    def test_cap_is_per_type(self) -> None:
        store = _make_store(memory_max_entries_per_type=2)
        for i in range(3):
            store.store(f"c{i}", {}, MemoryType.COMMAND)
            store.store(f"e{i}", {}, MemoryType.SYSTEM_EVENT)
        assert len(store.retrieve_by_type(MemoryType.COMMAND)) == 2
        assert len(store.retrieve_by_type(MemoryType.SYSTEM_EVENT)) == 2

    def test_cap_is_hot_read(self) -> None:
        config = ConductorConfig(memory_max_entries_per_type=5)
        store = MemoryStore(config, clock=_Clock())
        for i in range(5):
            store.store(f"k{i}", {}, MemoryType.COMMAND)
        config.memory_max_entries_per_type = 2
        store.store("k5", {}, MemoryType.COMMAND)
        assert [e.key for e in store.retrieve_by_type(MemoryType.COMMAND)] == ["k4", "k5"]

    def test_time_range_is_inclusive(self) -> None:
        clock = _Clock()
        store = _make_store(clock)
        for i in range(4):
            store.store(f"k{i}", {}, MemoryType.COMMAND)
            clock.advance(minutes=10)
        found = store.retrieve_by_time_range(_T0 + timedelta(minutes=10), _T0 + timedelta(minutes=20))
        assert [e.key for e in found] == ["k1", "k2"]

    def test_search_is_case_insensitive_over_key_and_payload(self) -> None:
        store = _make_store()
        store.store("Deploy-Event", {"service": "gateway"}, MemoryType.SYSTEM_EVENT)
        store.store("other", {"note": "Order-Service restarted"}, MemoryType.SYSTEM_EVENT)
        assert [e.key for e in store.search("deploy")] == ["Deploy-Event"]
        assert [e.key for e in store.search("order-service")] == ["other"]
        assert store.search("") == []


class TestTestRecords:
    def test_results_are_mirrored_into_typed_bucket(self) -> None:
        store = _make_store()
        store.add_test_result(_make_result("r42"))
        assert len(store.get_test_results()) == 1
        assert store.retrieve_by_key("result_r42") is not None

    def test_failures_are_mirrored(self) -> None:
        store = _make_store()
        store.add_test_failure(_make_failure("f7"))
        assert store.retrieve_by_key("failure_f7").memory_type == MemoryType.TEST_FAILURE

    def test_failure_cap(self) -> None:
        store = _make_store(max_recent_failures=3)
        for i in range(5):
            store.add_test_failure(_make_failure(f"f{i}"))
        assert [f.test_id for f in store.get_recent_failures()] == ["f2", "f3", "f4"]

    def test_result_cap(self) -> None:
        store = _make_store(max_test_results=2)
        for i in range(4):
            store.add_test_result(_make_result(f"r{i}"))
        assert [r.test_id for r in store.get_test_results()] == ["r2", "r3"]

    def test_queries_by_service_and_type(self) -> None:
        store = _make_store()
        store.add_test_failure(_make_failure("a", service="order-service"))
        store.add_test_failure(_make_failure("b", service="user-service", failure_type=FailureType.DATA))
        store.add_test_result(_make_result("c", service="user-service"))
        assert [f.test_id for f in store.get_failures_by_service("user-service")] == ["b"]
        assert [f.test_id for f in store.get_failures_by_type(FailureType.TIMEOUT)] == ["a"]
        assert len(store.get_results_by_service("user-service")) == 1
        assert len(store.get_results_by_type(TestType.UNIT_TEST)) == 1
        assert store.get_results_by_type(TestType.CHAOS_TEST) == []

    def test_active_tests(self) -> None:
        store = _make_store()
        store.add_active_test(ActiveTest(test_id="a1", service_name="user-service", test_type=TestType.UNIT_TEST))
        assert store.get_active_test("a1") is not None
        assert len(store.get_active_tests()) == 1
        removed = store.remove_active_test("a1")
        assert removed is not None and removed.test_id == "a1"
        assert store.get_active_tests() == []
        assert store.remove_active_test("a1") is None

    def test_learning_data_filter(self) -> None:
        store = _make_store()
        store.add_learning_data(LearningData(data_type=LearningDataType.INTERACTION, timestamp=_T0))
        store.add_learning_data(LearningData(data_type=LearningDataType.SERVICE_USAGE, timestamp=_T0))
        assert len(store.get_learning_data()) == 2
        assert len(store.get_learning_data(LearningDataType.SERVICE_USAGE)) == 1
        assert len(store.retrieve_by_type(MemoryType.LEARNING_DATA)) == 2


class TestPatterns:
    def test_upsert_last_write_wins(self) -> None:
        store = _make_store()
        store.store_pattern(Pattern(name="p", confidence=0.5))
        store.store_pattern(Pattern(name="p", confidence=0.9))
        assert len(store.get_all_patterns()) == 1
        assert store.get_pattern("p").confidence == 0.9

    def test_by_confidence(self) -> None:
        store = _make_store()
        store.store_pattern(Pattern(name="low", confidence=0.2))
        store.store_pattern(Pattern(name="high", confidence=0.8))
        assert [p.name for p in store.get_patterns_by_confidence(0.7)] == ["high"]

    def test_returned_patterns_are_copies(self) -> None:
        store = _make_store()
        store.store_pattern(Pattern(name="p", confidence=0.5))
        store.get_pattern("p").confidence = 0.0
        assert store.get_pattern("p").confidence == 0.5


class TestCleanup:
    def test_removes_old_items_from_every_collection(self) -> None:
        clock = _Clock()
        store = _make_store(clock, memory_retention_hours=1)
        old = _T0
        store.store("old", {}, MemoryType.COMMAND)
        store.add_test_result(_make_result("r-old", timestamp=old))
        store.add_test_failure(_make_failure("f-old", timestamp=old))
        store.add_learning_data(LearningData(data_type=LearningDataType.INTERACTION, timestamp=old))
        store.add_active_test(ActiveTest(
            test_id="a-old", service_name="user-service",
            test_type=TestType.UNIT_TEST, start_time=old,
        ))

        clock.advance(hours=2)
        store.store("new", {}, MemoryType.COMMAND)
        store.add_test_result(_make_result("r-new", timestamp=clock.now))

        removed = store.cleanup_expired()
        assert removed > 0
        assert [e.key for e in store.retrieve_by_type(MemoryType.COMMAND)] == ["new"]
        assert [r.test_id for r in store.get_test_results()] == ["r-new"]
        assert store.get_recent_failures() == []
        assert store.get_learning_data() == []
        assert store.get_active_tests() == []

    def test_entry_ttl(self) -> None:
        clock = _Clock()
        store = _make_store(clock)
        store.store("short", {}, MemoryType.SYSTEM_EVENT, ttl=timedelta(minutes=5))
        store.store("long", {}, MemoryType.SYSTEM_EVENT)
        clock.advance(minutes=10)
        store.cleanup_expired()
        assert [e.key for e in store.retrieve_by_type(MemoryType.SYSTEM_EVENT)] == ["long"]

    def test_naive_timestamps_are_normalized_to_utc(self) -> None:
        clock = _Clock()
        store = _make_store(clock, memory_retention_hours=1)
        naive_old = _T0.astimezone().replace(tzinfo=None)
        store.add_test_result(_make_result("r-old", timestamp=naive_old))
        store.add_test_failure(_make_failure("f-old", timestamp=naive_old))
        store.add_active_test(ActiveTest(
            test_id="a-old", service_name="user-service",
            test_type=TestType.UNIT_TEST, start_time=naive_old,
        ))
        result = store.get_test_results()[0]
        assert result.timestamp.tzinfo is timezone.utc
        assert result.timestamp == _T0

        clock.advance(hours=2)
        assert store.cleanup_expired() == 5
        assert store.get_test_results() == []
        assert store.get_recent_failures() == []
        assert store.get_active_tests() == []

    def test_explicit_now(self) -> None:
        store = _make_store(memory_retention_hours=1)
        store.store("k", {}, MemoryType.COMMAND)
        assert store.cleanup_expired(now=_T0 + timedelta(minutes=30)) == 0
        assert store.cleanup_expired(now=_T0 + timedelta(hours=3)) == 1


class TestStatisticsAndSnapshot:
    def test_statistics(self) -> None:
        store = _make_store()
        store.add_test_result(_make_result("a", status=TestStatus.PASSED))
        store.add_test_result(_make_result("b", status=TestStatus.FAILED))
        store.add_test_failure(_make_failure("b"))
        stats = store.get_statistics()
        assert stats["test_results"] == 2
        assert stats["test_success_rate"] == pytest.approx(0.5)
        assert stats["recent_failures"] == 1
        assert stats["failures_by_type"] == {"timeout": 1}
        assert stats["entries_by_type"]["test_result"] == 2

    def test_empty_success_rate(self) -> None:
        assert _make_store().get_statistics()["test_success_rate"] == 0.0

    def test_save_snapshot(self, tmp_path: Path) -> None:
        store = _make_store()
        store.add_test_result(_make_result("r1"))
        store.store_pattern(Pattern(name="p", confidence=0.8))
        path = tmp_path / "snapshots" / "memory.json"
        assert store.save_snapshot(path) is True
        data = json.loads(path.read_text())
        assert data["test_results"][0]["test_id"] == "r1"
        assert data["patterns"][0]["name"] == "p"
        assert not path.with_suffix(".json.tmp").exists()

    def test_snapshot_failure_returns_false(self, tmp_path: Path) -> None:
        store = _make_store()
        with patch("conductor.memory.store.atomic_write_json", side_effect=OSError("disk full")):
            assert store.save_snapshot(tmp_path / "m.json") is False

    def test_clear(self) -> None:
        store = _make_store()
        store.add_test_result(_make_result())
        store.store_pattern(Pattern(name="p"))
        store.clear()
        assert store.get_statistics()["total_entries"] == 0
        assert store.get_all_patterns() == []


class TestErrorsAndConcurrency:
    def test_store_error_degrades_to_noop(self) -> None:
        store = _make_store()
        with patch("conductor.memory.store.MemoryEntry", side_effect=ValueError("bad")):
            store.store("k", {}, MemoryType.COMMAND)
        assert store.retrieve_by_type(MemoryType.COMMAND) == []

    def test_search_error_degrades_to_empty(self) -> None:
        store = _make_store()
        store.store("k", {}, MemoryType.COMMAND)
        with patch.object(store, "_entries", None):
            assert store.search("k") == []
            assert store.retrieve_by_key("k") is None
            assert store.retrieve_by_time_range(_T0, _T0) == []

    def test_collection_reads_degrade_to_empty(self) -> None:
        store = _make_store()
        store.add_test_result(_make_result())
        store.add_test_failure(_make_failure())
        with patch.object(store, "_active", None), \
             patch.object(store, "_failures", None), \
             patch.object(store, "_results", None), \
             patch.object(store, "_learning", None), \
             patch.object(store, "_patterns", None):
            assert store.get_active_tests() == []
            assert store.get_active_test("a1") is None
            assert store.get_recent_failures() == []
            assert store.get_failures_by_service("order-service") == []
            assert store.get_test_results() == []
            assert store.get_learning_data() == []
            assert store.get_pattern("p") is None
            assert store.get_all_patterns() == []

    def test_statistics_degrade_to_empty(self) -> None:
        store = _make_store()
        with patch.object(store, "_entries", None):
            assert store.get_statistics() == {}

    def test_concurrent_inserts_respect_cap(self) -> None:
        store = MemoryStore(ConductorConfig(memory_max_entries_per_type=50))

        def worker(n: int) -> None:
            for i in range(200):
                store.store(f"w{n}-{i}", {}, MemoryType.COMMAND)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(store.retrieve_by_type(MemoryType.COMMAND)) == 50
