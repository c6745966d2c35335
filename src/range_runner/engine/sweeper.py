"""Periodic removal of stale task records."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from range_runner.engine.artifacts import ArtifactReleaser
from range_runner.engine.errors import VersionConflict
from range_runner.engine.models import TERMINAL_STATUSES, TaskStatus
from range_runner.engine.store import AgeField, TaskStore
from range_runner.storage.common import utc_now

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SweepRule:
    """Which records a sweep removes and what else to release with them."""

    name: str
    statuses: frozenset[TaskStatus]
    age_field: AgeField
    max_age: timedelta
    artifacts: ArtifactReleaser | None = None


@dataclass(slots=True)
class SweepReport:
    """Aggregate counters of one sweep pass."""

    deleted: dict[str, int] = field(default_factory=dict)
    skipped: int = 0
    artifacts_released: int = 0
    tombstones_purged: int = 0

    @property
    def total_deleted(self) -> int:
        return sum(self.deleted.values())


def default_rules(
    *,
    created_max_age: timedelta,
    terminal_retention: timedelta,
    artifacts: ArtifactReleaser | None,
) -> tuple[SweepRule, ...]:
    """Never-started records, plus terminal records past retention."""

    return (
        SweepRule(
            name="never_started",
            statuses=frozenset({TaskStatus.CREATED}),
            age_field="created_at",
            max_age=created_max_age,
        ),
        SweepRule(
            name="terminal_retention",
            statuses=TERMINAL_STATUSES,
            age_field="updated_at",
            max_age=terminal_retention,
            artifacts=artifacts,
        ),
    )


class StalenessSweeper:
    """Deletes records matched by sweep rules, on demand or on a timer."""

    def __init__(
        self,
        *,
        store: TaskStore,
        rules: Iterable[SweepRule],
        period_seconds: float = 60.0,
        tombstone_retention: timedelta | None = None,
    ) -> None:
        self.store = store
        self.rules = tuple(rules)
        self.period_seconds = period_seconds
        self.tombstone_retention = tombstone_retention
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def sweep_once(self, *, now: datetime | None = None) -> SweepReport:
        now = now or utc_now()
        report = SweepReport()
        for rule in self.rules:
            cutoff = now - rule.max_age
            deleted = 0
            for status in sorted(rule.statuses, key=lambda value: value.value):
                for record in self.store.find_by_status_older_than(
                    status,
                    cutoff,
                    age_field=rule.age_field,
                ):
                    try:
                        removed = self.store.delete(
                            record.task_id,
                            expected_version=record.version,
                        )
                    except VersionConflict:
                        report.skipped += 1
                        continue
                    if not removed:
                        report.skipped += 1
                        continue
                    deleted += 1
                    if rule.artifacts is not None:
                        rule.artifacts.release_artifacts(record.task_id)
                        report.artifacts_released += 1
            report.deleted[rule.name] = deleted

        if self.tombstone_retention is not None:
            report.tombstones_purged = self.store.purge_tombstones(now - self.tombstone_retention)

        if report.total_deleted or report.tombstones_purged:
            logger.info(
                "Sweep removed tasks=%s skipped=%d artifacts=%d tombstones=%d",
                report.deleted,
                report.skipped,
                report.artifacts_released,
                report.tombstones_purged,
            )
        return report

    # -- background loop ------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop,
            daemon=True,
            name="range-sweeper",
        )
        self._thread.start()
        logger.info("Sweeper thread started period=%ss", self.period_seconds)

    def stop(self, timeout: float = 15.0) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Sweeper thread stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None

    def _loop(self) -> None:
        while not self._stop.wait(timeout=self.period_seconds):
            try:
                self.sweep_once()
            except Exception:
                logger.exception("Sweep pass failed")
