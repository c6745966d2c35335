"""Pure progress arithmetic."""

from __future__ import annotations

from range_runner.engine.models import ProgressSnapshot, TaskRecord, TaskStatus


def percentage(*, x: int, y: int, current: int, status: TaskStatus | None = None) -> float:
    """Return progress of ``current`` inside ``[x, y]`` as a 0..100 float.

    A zero-width range has nothing to count, so it reports 100 once completed
    and 0 before that.
    """

    if y == x:
        return 100.0 if status == TaskStatus.COMPLETED else 0.0
    value = ((current - x) / max(1, y - x)) * 100
    return min(100.0, max(0.0, value))


def snapshot_from_record(record: TaskRecord) -> ProgressSnapshot:
    return ProgressSnapshot(
        task_id=record.task_id,
        x=record.x,
        y=record.y,
        current=record.current,
        status=record.status,
        percentage=percentage(
            x=record.x,
            y=record.y,
            current=record.current,
            status=record.status,
        ),
        error_summary=record.error_summary,
    )


def snapshot_from_values(
    *,
    task_id: str,
    x: int,
    y: int,
    current: int,
    status: TaskStatus,
) -> ProgressSnapshot:
    return ProgressSnapshot(
        task_id=task_id,
        x=x,
        y=y,
        current=current,
        status=status,
        percentage=percentage(x=x, y=y, current=current, status=status),
    )
