"""Controllers for range-runner CLI commands."""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterator
from concurrent.futures import wait
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from range_runner.config import Settings
from range_runner.engine.artifacts import FileArtifactStore
from range_runner.engine.errors import TaskNotFound
from range_runner.engine.models import ProgressSnapshot, TaskRecord, TaskStatus
from range_runner.engine.service import TaskService
from range_runner.engine.sweeper import StalenessSweeper, default_rules
from range_runner.storage.repository import SqliteTaskStore


@dataclass(slots=True)
class RunCommand:
    """CLI input for submit-and-follow."""

    db_path: Path | None
    x: int
    y: int
    cancel_after_ticks: int | None = None


@dataclass(slots=True)
class ResumeCommand:
    """CLI input for recovery of unfinished tasks."""

    db_path: Path | None


@dataclass(slots=True)
class TaskCommand:
    """CLI input for single-task operations."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task listing."""

    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class SweepCommand:
    """CLI input for one sweep pass."""

    db_path: Path | None


class RangeRunnerCliController:
    """Coordinates submission, inspection and maintenance CLI operations."""

    def run(
        self,
        command: RunCommand,
        *,
        on_progress: Callable[[str], None] | None = None,
    ) -> list[str]:
        """Submit one task and follow it to a terminal state."""

        emit = on_progress or (lambda _line: None)
        settings = _load_settings(command.db_path)
        with _service(settings, sweeping=True) as service:
            submission = service.submit(command.x, command.y)
            task_id = submission.record.task_id
            emit(f"Task submitted: task_id={task_id} range=[{command.x}, {command.y}]")

            ticks = 0
            cancel_sent = False
            while True:
                done, _ = wait([submission.future], timeout=settings.engine.tick_seconds)
                if done:
                    break
                ticks += 1
                emit(_progress_line(service.get_progress(task_id)))
                if (
                    command.cancel_after_ticks is not None
                    and ticks >= command.cancel_after_ticks
                    and not cancel_sent
                ):
                    service.cancel(task_id)
                    cancel_sent = True
                    emit(f"Cancellation requested: {task_id}")

            submission.future.result()
            final = service.get_progress(task_id)
        return [_progress_line(final)]

    def resume(self, command: ResumeCommand) -> list[str]:
        """Recover tasks left unfinished by a previous process and run them."""

        settings = _load_settings(command.db_path)
        with _service(settings, sweeping=True) as service:
            futures = service.recover()
            wait(futures)
            outcomes = [future.result() for future in futures]

        statuses = Counter(
            outcome.status.value for outcome in outcomes if outcome.status is not None
        )
        lines = [f"Recovered tasks: {len(outcomes)}"]
        for status, count in sorted(statuses.items()):
            lines.append(f"  {status}: {count}")
        return lines

    def progress(self, command: TaskCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        with _service(settings) as service:
            snapshot = service.get_progress(command.task_id)
        return [_progress_line(snapshot)]

    def cancel(self, command: TaskCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        with _service(settings) as service:
            ack = service.cancel(command.task_id)
        if ack.noop:
            return [f"Task already finished or removed: {command.task_id}"]
        if ack.requested:
            return [f"Cancellation requested: {command.task_id}"]
        return [f"Task cancelled: {command.task_id}"]

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        status_filter = _parse_status(command.status)
        with _service(settings) as service:
            tasks = service.list_tasks(status=status_filter, limit=command.limit)

        lines = [f"Tasks: {len(tasks)}"]
        lines.extend(f"  {_record_line(task)}" for task in tasks)
        return lines

    def inspect(self, command: TaskCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        with _store(settings) as store:
            details = store.get_task_details(task_id=command.task_id)
        if details is None:
            raise TaskNotFound(command.task_id)

        task = details.task
        artifacts = FileArtifactStore(settings.artifacts_root)
        result_dir: Path | None = None
        if artifacts.has_artifacts(task.task_id):
            result_dir = artifacts.task_dir(task.task_id)
        lines = [
            f"Task: {task.task_id}",
            f"Range: [{task.x}, {task.y}]",
            f"Current: {task.current}",
            f"Status: {task.status.value}",
            f"Version: {task.version}",
            f"Error: {task.error_summary or '-'}",
            f"Created: {task.created_at.isoformat()}",
            f"Updated: {task.updated_at.isoformat()}",
            f"Cancel requested: {'yes' if task.cancel_requested else 'no'}",
            f"Artifacts: {result_dir or '-'}",
            f"Events: {len(details.events)}",
        ]
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def sweep(self, command: SweepCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        with _store(settings) as store:
            report = _sweeper(settings, store).sweep_once()
        lines = [f"Sweep deleted: {report.total_deleted}"]
        for rule, count in report.deleted.items():
            lines.append(f"  {rule}: {count}")
        lines.append(
            f"Skipped: {report.skipped} artifacts_released={report.artifacts_released} "
            f"tombstones_purged={report.tombstones_purged}",
        )
        return lines


def _load_settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


def _sweeper(settings: Settings, store: SqliteTaskStore) -> StalenessSweeper:
    return StalenessSweeper(
        store=store,
        rules=default_rules(
            created_max_age=settings.sweeper.created_max_age,
            terminal_retention=settings.sweeper.terminal_retention,
            artifacts=FileArtifactStore(settings.artifacts_root),
        ),
        period_seconds=settings.sweeper.period_seconds,
        tombstone_retention=settings.sweeper.tombstone_retention,
    )


@contextmanager
def _store(settings: Settings) -> Iterator[SqliteTaskStore]:
    store = SqliteTaskStore(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    store.init_schema()
    try:
        yield store
    finally:
        store.close()


@contextmanager
def _service(settings: Settings, *, sweeping: bool = False) -> Iterator[TaskService]:
    store = SqliteTaskStore(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    store.init_schema()
    engine = settings.engine
    service = TaskService(
        store=store,
        max_span=engine.max_span,
        max_workers=engine.max_workers,
        queue_limit=engine.queue_limit,
        tick_seconds=engine.tick_seconds,
        flush_every_ticks=engine.flush_every_ticks,
        flush_interval_seconds=engine.flush_interval_seconds,
        artifacts=FileArtifactStore(settings.artifacts_root),
        sweeper=_sweeper(settings, store),
    )
    if sweeping:
        service.start()
    try:
        yield service
    finally:
        service.close()


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    try:
        return TaskStatus(value.lower())
    except ValueError as error:
        raise ValueError(f"Unsupported status: {value!r}") from error


def _progress_line(snapshot: ProgressSnapshot) -> str:
    line = (
        f"Task {snapshot.task_id}: status={snapshot.status.value} "
        f"current={snapshot.current} range=[{snapshot.x}, {snapshot.y}] "
        f"percentage={snapshot.percentage:.1f}%"
    )
    if snapshot.error_summary:
        line += f" error={snapshot.error_summary}"
    return line


def _record_line(record: TaskRecord) -> str:
    return (
        f"{record.task_id} status={record.status.value} "
        f"current={record.current} range=[{record.x}, {record.y}] "
        f"created_at={record.created_at.isoformat()}"
    )
