"""Domain models for the range-counting task engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.CANCELLED, TaskStatus.FAILED},
)


@dataclass(slots=True, frozen=True)
class TaskRecord:
    """Persisted state of one counting task.

    Records are immutable values: every transition produces a new record via
    ``dataclasses.replace`` and is written with a compare-and-swap against
    ``version``.  ``cancel_requested`` is the durable cancel flag for a task
    whose worker lives in another process; only that worker acts on it.
    """

    task_id: str
    x: int
    y: int
    current: int
    status: TaskStatus
    created_at: datetime
    updated_at: datetime
    version: int = 1
    error_summary: str | None = None
    cancel_requested: bool = False


@dataclass(slots=True, frozen=True)
class ProgressSnapshot:
    """Point-in-time progress view returned to callers."""

    task_id: str
    x: int
    y: int
    current: int
    status: TaskStatus
    percentage: float
    error_summary: str | None = None


@dataclass(slots=True, frozen=True)
class CancelAck:
    """Result of a cancellation request.

    ``signalled`` is true when a live worker in this process was signalled,
    ``forced`` when a not yet started record was moved to ``cancelled``
    directly, ``requested`` when the durable flag was set for a worker this
    process does not own.  All false for no-op requests (already terminal or
    recently deleted).
    """

    task_id: str
    signalled: bool = False
    forced: bool = False
    requested: bool = False

    @property
    def noop(self) -> bool:
        return not (self.signalled or self.forced or self.requested)


@dataclass(slots=True)
class TaskEventView:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    event_type: str
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskDetails:
    """Task record with event stream."""

    task: TaskRecord
    events: list[TaskEventView]
