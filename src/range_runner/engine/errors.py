"""Error taxonomy of the task engine."""

from __future__ import annotations


class RangeRunnerError(RuntimeError):
    """Base class for engine errors."""


class InvalidRange(RangeRunnerError):
    """Submitted range is empty, reversed or wider than allowed."""

    def __init__(self, x: int, y: int, reason: str) -> None:
        super().__init__(f"Invalid range [{x}, {y}]: {reason}")
        self.x = x
        self.y = y


class TaskNotFound(RangeRunnerError):
    """No task with the given id exists."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class VersionConflict(RangeRunnerError):
    """Compare-and-swap lost against a concurrent writer."""

    def __init__(self, task_id: str, expected_version: int, actual_version: int | None) -> None:
        super().__init__(
            f"Version conflict for task {task_id}: "
            f"expected={expected_version} actual={actual_version}",
        )
        self.task_id = task_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class ExecutionFailure(RangeRunnerError):
    """Unexpected error while a worker was advancing a task."""

    def __init__(self, task_id: str, cause: BaseException) -> None:
        super().__init__(f"{type(cause).__name__}: {cause}")
        self.task_id = task_id
        self.cause = cause

    @property
    def summary(self) -> str:
        return str(self)


class PoolSaturated(RangeRunnerError):
    """Worker pool and its bounded queue are full."""

    def __init__(self, capacity: int) -> None:
        super().__init__(f"Task pool is at capacity ({capacity} running or queued)")
        self.capacity = capacity
