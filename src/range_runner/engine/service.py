"""Task service: submission, progress, cancellation and recovery."""

from __future__ import annotations

import logging
from concurrent.futures import Future
from dataclasses import dataclass, replace
from uuid import uuid4

from range_runner.engine.artifacts import FileArtifactStore
from range_runner.engine.cancellation import CancellationCoordinator
from range_runner.engine.errors import (
    InvalidRange,
    PoolSaturated,
    TaskNotFound,
    VersionConflict,
)
from range_runner.engine.executor import TaskExecutor, TaskRunOutcome
from range_runner.engine.models import (
    CancelAck,
    ProgressSnapshot,
    TaskRecord,
    TaskStatus,
)
from range_runner.engine.progress import snapshot_from_record
from range_runner.engine.registry import TaskRegistry
from range_runner.engine.store import TaskStore
from range_runner.engine.sweeper import StalenessSweeper, SweepRule
from range_runner.storage.common import utc_now

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Submission:
    """Stored record plus the future of its worker run."""

    record: TaskRecord
    future: Future[TaskRunOutcome]


class TaskService:
    """Entry points used by the CLI and embedding code.

    Wires the store, cancellation coordinator, registry, executor and sweeper
    together.  The service never writes ``current``; it only creates records,
    flips cancellation signals and, for tasks without a live worker, applies a
    compare-and-swap cancellation directly to the store.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: TaskStore,
        max_span: int = 1_000_000,
        max_workers: int = 4,
        queue_limit: int = 16,
        tick_seconds: float = 1.0,
        flush_every_ticks: int = 10,
        flush_interval_seconds: float = 5.0,
        artifacts: FileArtifactStore | None = None,
        sweep_rules: tuple[SweepRule, ...] = (),
        sweep_period_seconds: float = 60.0,
        sweeper: StalenessSweeper | None = None,
    ) -> None:
        if max_span < 0:
            raise ValueError("max_span must be >= 0.")
        self.store = store
        self.max_span = max_span
        self.artifacts = artifacts
        self.coordinator = CancellationCoordinator()
        self.registry = TaskRegistry(capacity=max_workers)
        self.executor = TaskExecutor(
            store=store,
            coordinator=self.coordinator,
            registry=self.registry,
            max_workers=max_workers,
            queue_limit=queue_limit,
            tick_seconds=tick_seconds,
            flush_every_ticks=flush_every_ticks,
            flush_interval_seconds=flush_interval_seconds,
            on_terminal=self._on_terminal,
        )
        self.sweeper = sweeper or StalenessSweeper(
            store=store,
            rules=sweep_rules,
            period_seconds=sweep_period_seconds,
        )
        self._closed = False

    # -- lifecycle ------------------------------------------------------------

    def start(self) -> TaskService:
        """Start the background sweeper when it has rules to apply."""

        if self.sweeper.rules:
            self.sweeper.start()
        return self

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.sweeper.stop()
        self.executor.shutdown(wait=True)
        self.store.close()

    def __enter__(self) -> TaskService:
        return self.start()

    def __exit__(self, *_: object) -> None:
        self.close()

    # -- operations -----------------------------------------------------------

    def validate_range(self, x: int, y: int) -> None:
        for value in (x, y):
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidRange(x, y, "bounds must be integers")
        if y < x:
            raise InvalidRange(x, y, "y must be >= x")
        if y - x > self.max_span:
            raise InvalidRange(x, y, f"span {y - x} exceeds maximum {self.max_span}")

    def submit(self, x: int, y: int) -> Submission:
        """Validate, persist and schedule a new counting task."""

        self.validate_range(x, y)
        reservation = self.executor.reserve()
        now = utc_now()
        try:
            record = self.store.create(
                TaskRecord(
                    task_id=str(uuid4()),
                    x=x,
                    y=y,
                    current=x,
                    status=TaskStatus.CREATED,
                    created_at=now,
                    updated_at=now,
                ),
            )
        except Exception:
            reservation.release()
            raise
        self.coordinator.register(record.task_id)
        try:
            future = reservation.start(record.task_id)
        except Exception:
            self.coordinator.discard(record.task_id)
            raise
        logger.info("Task submitted task_id=%s range=[%d, %d]", record.task_id, x, y)
        return Submission(record=record, future=future)

    def get_progress(self, task_id: str) -> ProgressSnapshot:
        """Latest progress: in-memory for running tasks, stored otherwise."""

        handle = self.registry.get(task_id)
        if handle is not None:
            return handle.progress()
        return snapshot_from_record(self.store.load_by_id(task_id))

    def cancel(self, task_id: str) -> CancelAck:
        """Request cancellation; terminal or recently deleted tasks are a no-op.

        A record that has not started yet is moved to ``cancelled`` right away,
        so a queued run finds it terminal and never claims it.  A running record
        is never written here: its worker in this process gets the signal, and
        a worker in another process picks up the durable ``cancel_requested``
        flag on its next tick.
        """

        while True:
            try:
                record = self.store.load_by_id(task_id)
            except TaskNotFound:
                if self.store.was_deleted(task_id):
                    return CancelAck(task_id=task_id)
                raise
            if record.status.is_terminal:
                return CancelAck(task_id=task_id)

            if record.status == TaskStatus.CREATED:
                try:
                    self.store.compare_and_swap(
                        replace(record, status=TaskStatus.CANCELLED),
                        expected_version=record.version,
                    )
                except VersionConflict:
                    continue
                self.coordinator.signal_cancel(task_id)
                logger.info("Task cancelled before start task_id=%s", task_id)
                return CancelAck(task_id=task_id, forced=True)

            if self.coordinator.signal_cancel(task_id):
                return CancelAck(task_id=task_id, signalled=True)
            if record.cancel_requested:
                return CancelAck(task_id=task_id, requested=True)

            try:
                self.store.compare_and_swap(
                    replace(record, cancel_requested=True),
                    expected_version=record.version,
                )
            except VersionConflict:
                continue
            logger.info(
                "Cancellation recorded for a worker outside this process task_id=%s",
                task_id,
            )
            return CancelAck(task_id=task_id, requested=True)

    def list_tasks(self, *, status: TaskStatus | None = None, limit: int = 50) -> list[TaskRecord]:
        return self.store.list_tasks(status=status, limit=limit)

    def recover(self) -> list[Future[TaskRunOutcome]]:
        """Resubmit records left unfinished by a previous process.

        Orphaned ``running`` records go first since they already made
        progress; ``created`` records follow.  Anything beyond pool capacity is
        left in place for a later recovery or the sweeper.
        """

        cutoff = utc_now()
        futures: list[Future[TaskRunOutcome]] = []
        pending: list[tuple[TaskRecord, bool]] = [
            (record, True)
            for record in self.store.find_by_status_older_than(
                TaskStatus.RUNNING,
                cutoff,
                age_field="created_at",
            )
            if self.registry.get(record.task_id) is None and record.task_id not in self.coordinator
        ]
        pending.extend(
            (record, False)
            for record in self.store.find_by_status_older_than(
                TaskStatus.CREATED,
                cutoff,
                age_field="created_at",
            )
            if record.task_id not in self.coordinator
        )

        for index, (record, resume) in enumerate(pending):
            try:
                reservation = self.executor.reserve()
            except PoolSaturated:
                logger.warning(
                    "Recovery stopped at pool capacity resumed=%d left=%d",
                    index,
                    len(pending) - index,
                )
                break
            self.coordinator.register(record.task_id)
            try:
                futures.append(reservation.start(record.task_id, resume=resume))
            except Exception:
                self.coordinator.discard(record.task_id)
                raise

        if futures:
            logger.info("Recovered tasks count=%d", len(futures))
        return futures

    def _on_terminal(self, record: TaskRecord) -> None:
        if self.artifacts is None or record.status != TaskStatus.COMPLETED:
            return
        self.artifacts.write_result(record)
