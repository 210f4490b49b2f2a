"""Background maintenance on APScheduler.

Runs memory cleanup and learning recomputation on fixed intervals in a
BackgroundScheduler thread. Each job is single-flight (``max_instances=1``)
and missed runs are coalesced.
"""

from __future__ import annotations

import logging
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]

from conductor.config import ConductorConfig
from conductor.learning.engine import LearningEngine
from conductor.memory.store import MemoryStore

logger = logging.getLogger(__name__)

CLEANUP_JOB_ID = "memory_cleanup"
LEARNING_JOB_ID = "learning_recompute"


def _guarded(name: str, func: Callable[[], object]) -> Callable[[], None]:
    """Wrap a job so a failing run is logged and the schedule continues."""

    def job() -> None:
        try:
            func()
        except Exception:
            logger.exception("Scheduled job %s failed", name)

    return job


class MaintenanceScheduler:
    def __init__(
        self,
        memory: MemoryStore,
        learning: LearningEngine,
        config: ConductorConfig | None = None,
    ) -> None:
        self._memory = memory
        self._learning = learning
        self._config = config or ConductorConfig()
        self._scheduler: BackgroundScheduler | None = None
        self._extra_jobs: list[tuple[str, Callable[[], object], float]] = []

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def add_refresher(self, name: str, func: Callable[[], object], interval_seconds: float) -> None:
        """Register an extra periodic job (e.g. a monitoring refresher)."""
        self._extra_jobs.append((name, func, interval_seconds))

    def run_cleanup(self) -> int:
        return self._memory.cleanup_expired()

    def run_learning(self) -> None:
        self._learning.recompute()

    def start(self) -> None:
        if self.running:
            return
        scheduler = BackgroundScheduler(daemon=True)
        jobs: list[tuple[str, Callable[[], object], float]] = [
            (CLEANUP_JOB_ID, self.run_cleanup, self._config.cleanup_interval_ms / 1000),
            (LEARNING_JOB_ID, self.run_learning, self._config.learning_interval_ms / 1000),
            *self._extra_jobs,
        ]
        for job_id, func, seconds in jobs:
            scheduler.add_job(
                _guarded(job_id, func),
                trigger=IntervalTrigger(seconds=seconds),
                id=job_id,
                name=job_id,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "Maintenance scheduler started (cleanup every %ds, learning every %ds)",
            self._config.cleanup_interval_ms // 1000,
            self._config.learning_interval_ms // 1000,
        )

    def stop(self) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Maintenance scheduler stopped")

    def job_ids(self) -> list[str]:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]
