"""In-memory index of tasks currently advanced by a worker."""

from __future__ import annotations

import threading
from dataclasses import dataclass

from range_runner.engine.models import ProgressSnapshot, TaskStatus
from range_runner.engine.progress import snapshot_from_values


@dataclass(slots=True)
class TaskHandle:
    """Advisory view of one running task.

    ``current`` is written only by the owning worker; readers get a possibly
    slightly stale but never regressing value.
    """

    task_id: str
    x: int
    y: int
    current: int
    cancel_signal: threading.Event

    def progress(self) -> ProgressSnapshot:
        return snapshot_from_values(
            task_id=self.task_id,
            x=self.x,
            y=self.y,
            current=self.current,
            status=TaskStatus.RUNNING,
        )


class TaskRegistry:
    """Task id -> handle, bounded by worker pool concurrency."""

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("Registry capacity must be > 0.")
        self.capacity = capacity
        self._lock = threading.Lock()
        self._handles: dict[str, TaskHandle] = {}

    def add(self, handle: TaskHandle) -> None:
        with self._lock:
            if handle.task_id in self._handles:
                raise RuntimeError(f"Task already registered: {handle.task_id}")
            if len(self._handles) >= self.capacity:
                raise RuntimeError(
                    f"Registry is full ({self.capacity}); cannot register {handle.task_id}",
                )
            self._handles[handle.task_id] = handle

    def get(self, task_id: str) -> TaskHandle | None:
        with self._lock:
            return self._handles.get(task_id)

    def remove(self, task_id: str) -> None:
        with self._lock:
            if self._handles.pop(task_id, None) is None:
                raise RuntimeError(f"Task is not registered: {task_id}")

    def snapshot(self) -> list[TaskHandle]:
        with self._lock:
            return list(self._handles.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)
