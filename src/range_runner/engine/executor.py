"""Bounded worker pool that advances counting tasks tick by tick."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, replace

from range_runner.engine.cancellation import CancellationCoordinator
from range_runner.engine.errors import (
    ExecutionFailure,
    PoolSaturated,
    TaskNotFound,
    VersionConflict,
)
from range_runner.engine.models import TaskRecord, TaskStatus
from range_runner.engine.registry import TaskHandle, TaskRegistry
from range_runner.engine.store import TaskStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TaskRunOutcome:
    """What one worker run did to one task."""

    task_id: str
    claimed: bool = False
    status: TaskStatus | None = None
    current: int | None = None
    writes: int = 0
    suspended: bool = False


class SlotReservation:
    """One reserved place in the pool; either started or released, never both."""

    def __init__(self, executor: TaskExecutor) -> None:
        self._executor = executor
        self._done = False

    def start(self, task_id: str, *, resume: bool = False) -> Future[TaskRunOutcome]:
        if self._done:
            raise RuntimeError("Slot reservation already used.")
        self._done = True
        return self._executor._start(task_id, resume=resume)  # noqa: SLF001

    def release(self) -> None:
        if self._done:
            return
        self._done = True
        self._executor._release_slot()  # noqa: SLF001


class TaskExecutor:
    """Runs the per-task state machine on a fixed-size thread pool.

    Only the worker that claimed a task writes its ``current``/``status``.
    The counter lives in memory and reaches the store every
    ``flush_every_ticks`` ticks or ``flush_interval_seconds``, whichever
    comes first, and on every state transition.  Each tick the worker also
    reads the durable ``cancel_requested`` flag, so a cancel recorded by
    another process becomes ``cancelled`` through the owning worker, with its
    in-memory ``current``.  Submissions beyond ``max_workers + queue_limit``
    are rejected with ``PoolSaturated``.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: TaskStore,
        coordinator: CancellationCoordinator,
        registry: TaskRegistry,
        max_workers: int = 4,
        queue_limit: int = 16,
        tick_seconds: float = 1.0,
        flush_every_ticks: int = 10,
        flush_interval_seconds: float = 5.0,
        on_terminal: Callable[[TaskRecord], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_workers <= 0:
            raise ValueError("max_workers must be > 0.")
        if queue_limit < 0:
            raise ValueError("queue_limit must be >= 0.")
        if registry.capacity < max_workers:
            raise ValueError("Registry capacity must cover max_workers.")
        self.store = store
        self.coordinator = coordinator
        self.registry = registry
        self.max_workers = max_workers
        self.queue_limit = queue_limit
        self.tick_seconds = tick_seconds
        self.flush_every_ticks = max(1, flush_every_ticks)
        self.flush_interval_seconds = flush_interval_seconds
        self.on_terminal = on_terminal
        self._clock = clock
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="range-worker",
        )
        self._slots = threading.BoundedSemaphore(self.capacity)
        self._stop = threading.Event()
        self._closed = False

    @property
    def capacity(self) -> int:
        return self.max_workers + self.queue_limit

    def reserve(self) -> SlotReservation:
        """Reserve a pool slot without blocking."""

        if self._closed:
            raise RuntimeError("Executor is shut down.")
        if not self._slots.acquire(blocking=False):
            raise PoolSaturated(self.capacity)
        return SlotReservation(self)

    def submit(self, task_id: str, *, resume: bool = False) -> Future[TaskRunOutcome]:
        return self.reserve().start(task_id, resume=resume)

    def shutdown(self, *, wait: bool = True) -> None:
        """Stop accepting work, interrupt running tasks at their next tick, join."""

        self._closed = True
        self._stop.set()
        logger.info("Executor shutdown requested running=%d", len(self.registry))
        self._pool.shutdown(wait=wait, cancel_futures=True)

    def __enter__(self) -> TaskExecutor:
        return self

    def __exit__(self, *_: object) -> None:
        self.shutdown()

    def _start(self, task_id: str, *, resume: bool) -> Future[TaskRunOutcome]:
        try:
            future = self._pool.submit(self._run, task_id, resume)
        except RuntimeError:
            self._release_slot()
            raise

        def _on_done(done: Future[TaskRunOutcome]) -> None:
            if done.cancelled():
                self.coordinator.discard(task_id)
            self._release_slot()

        future.add_done_callback(_on_done)
        return future

    def _release_slot(self) -> None:
        self._slots.release()

    # -- worker body ----------------------------------------------------------

    def _run(self, task_id: str, resume: bool) -> TaskRunOutcome:
        outcome = TaskRunOutcome(task_id=task_id)
        try:
            if self._stop.is_set():
                return outcome
            record = self._claim(task_id, resume=resume, outcome=outcome)
            if record is None:
                return outcome

            handle = TaskHandle(
                task_id=task_id,
                x=record.x,
                y=record.y,
                current=record.current,
                cancel_signal=self.coordinator.register(task_id),
            )
            self.registry.add(handle)
            try:
                final = self._advance(handle=handle, record=record, outcome=outcome)
            finally:
                self.registry.remove(task_id)
            outcome.status = final.status
            outcome.current = final.current
            if final.status.is_terminal:
                self._notify_terminal(final)
            return outcome
        except TaskNotFound:
            logger.warning("Task disappeared while running task_id=%s", task_id)
            return outcome
        except Exception:
            logger.exception("Worker crashed task_id=%s", task_id)
            raise
        finally:
            self.coordinator.discard(task_id)

    def _claim(
        self,
        task_id: str,
        *,
        resume: bool,
        outcome: TaskRunOutcome,
    ) -> TaskRecord | None:
        while True:
            try:
                record = self.store.load_by_id(task_id)
            except TaskNotFound:
                logger.info("Task removed before start task_id=%s", task_id)
                return None
            if record.status.is_terminal:
                logger.info(
                    "Task already terminal, skipping task_id=%s status=%s",
                    task_id,
                    record.status.value,
                )
                return None
            if record.status == TaskStatus.RUNNING and not resume:
                logger.info("Task already claimed, skipping task_id=%s", task_id)
                return None

            try:
                stored = self.store.compare_and_swap(
                    replace(record, status=TaskStatus.RUNNING),
                    expected_version=record.version,
                )
            except VersionConflict:
                continue
            except TaskNotFound:
                logger.info("Task removed during claim task_id=%s", task_id)
                return None
            outcome.claimed = True
            outcome.writes += 1
            logger.info(
                "Task claimed task_id=%s range=[%d, %d] current=%d resumed=%s",
                task_id,
                stored.x,
                stored.y,
                stored.current,
                record.status == TaskStatus.RUNNING,
            )
            return stored

    def _advance(
        self,
        *,
        handle: TaskHandle,
        record: TaskRecord,
        outcome: TaskRunOutcome,
    ) -> TaskRecord:
        task_id = record.task_id
        state = record
        current = record.current
        try:
            if state.cancel_requested:
                return self._finish(state, current, TaskStatus.CANCELLED, outcome=outcome)
            if current >= record.y and not self.coordinator.is_cancelled(task_id):
                return self._finish(state, current, TaskStatus.COMPLETED, outcome=outcome)

            ticks_since_flush = 0
            last_flush = self._clock()
            while True:
                signalled = self.coordinator.wait(task_id, self.tick_seconds)
                if signalled or self._cancel_requested(task_id):
                    return self._finish(state, current, TaskStatus.CANCELLED, outcome=outcome)
                if self._stop.is_set():
                    return self._suspend(state, current, outcome=outcome)

                current += 1
                handle.current = current
                if current >= record.y:
                    return self._finish(state, current, TaskStatus.COMPLETED, outcome=outcome)

                ticks_since_flush += 1
                flush_due = ticks_since_flush >= self.flush_every_ticks or (
                    self._clock() - last_flush >= self.flush_interval_seconds
                )
                if flush_due:
                    state = self._write(state, replace(state, current=current), outcome=outcome)
                    if state.status.is_terminal:
                        return state
                    ticks_since_flush = 0
                    last_flush = self._clock()
        except TaskNotFound:
            raise
        except Exception as error:  # noqa: BLE001
            failure = ExecutionFailure(task_id, error)
            logger.exception("Task failed task_id=%s current=%d", task_id, current)
            return self._finish(
                state,
                current,
                TaskStatus.FAILED,
                outcome=outcome,
                error_summary=failure.summary,
            )

    def _finish(
        self,
        state: TaskRecord,
        current: int,
        status: TaskStatus,
        *,
        outcome: TaskRunOutcome,
        error_summary: str | None = None,
    ) -> TaskRecord:
        desired = replace(state, current=current, status=status, error_summary=error_summary)
        stored = self._write(state, desired, outcome=outcome)
        logger.info(
            "Task finished task_id=%s status=%s current=%d",
            stored.task_id,
            stored.status.value,
            stored.current,
        )
        return stored

    def _suspend(
        self,
        state: TaskRecord,
        current: int,
        *,
        outcome: TaskRunOutcome,
    ) -> TaskRecord:
        outcome.suspended = True
        stored = state
        if current != state.current:
            stored = self._write(state, replace(state, current=current), outcome=outcome)
        logger.info(
            "Task suspended for shutdown task_id=%s current=%d",
            stored.task_id,
            stored.current,
        )
        return stored

    def _write(
        self,
        state: TaskRecord,
        desired: TaskRecord,
        *,
        outcome: TaskRunOutcome,
    ) -> TaskRecord:
        """Compare-and-swap ``desired``; a terminal status already stored wins."""

        expected_version = state.version
        candidate = desired
        while True:
            try:
                stored = self.store.compare_and_swap(candidate, expected_version=expected_version)
            except VersionConflict:
                latest = self.store.load_by_id(candidate.task_id)
                if latest.status.is_terminal:
                    logger.info(
                        "Task reached %s externally, keeping it task_id=%s",
                        latest.status.value,
                        latest.task_id,
                    )
                    return latest
                candidate = replace(
                    candidate,
                    current=max(candidate.current, latest.current),
                    cancel_requested=candidate.cancel_requested or latest.cancel_requested,
                )
                expected_version = latest.version
                continue
            outcome.writes += 1
            return stored

    def _cancel_requested(self, task_id: str) -> bool:
        return self.store.load_by_id(task_id).cancel_requested

    def _notify_terminal(self, record: TaskRecord) -> None:
        if self.on_terminal is None:
            return
        try:
            self.on_terminal(record)
        except Exception:  # noqa: BLE001
            logger.exception("Terminal hook failed task_id=%s", record.task_id)
