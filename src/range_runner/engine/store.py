"""Persistence contract for task records and an in-memory implementation."""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Literal, Protocol

from range_runner.engine.errors import TaskNotFound, VersionConflict
from range_runner.engine.models import TaskRecord, TaskStatus
from range_runner.storage.common import utc_now

AgeField = Literal["created_at", "updated_at"]


class TaskStore(Protocol):
    """Durable CRUD over task records.

    Every mutation of an existing record goes through ``compare_and_swap``;
    implementations never overwrite a row whose version moved on.
    """

    def create(self, record: TaskRecord) -> TaskRecord:
        """Persist a new record and return it as stored."""
        raise NotImplementedError

    def load_by_id(self, task_id: str) -> TaskRecord:
        """Return the record or raise ``TaskNotFound``."""
        raise NotImplementedError

    def compare_and_swap(self, record: TaskRecord, *, expected_version: int) -> TaskRecord:
        """Write ``record`` if the stored version equals ``expected_version``.

        Returns the stored record with the bumped version and refreshed
        ``updated_at``.  Raises ``VersionConflict`` on a stale version and
        ``TaskNotFound`` when the row is gone.
        """
        raise NotImplementedError

    def find_by_status_older_than(
        self,
        status: TaskStatus,
        cutoff: datetime,
        *,
        age_field: AgeField = "updated_at",
    ) -> list[TaskRecord]:
        """Records in ``status`` whose ``age_field`` is strictly before ``cutoff``."""
        raise NotImplementedError

    def delete(self, task_id: str, *, expected_version: int | None = None) -> bool:
        """Delete a record and leave a tombstone; False if it was already gone."""
        raise NotImplementedError

    def was_deleted(self, task_id: str) -> bool:
        """True when a tombstone exists for ``task_id``."""
        raise NotImplementedError

    def purge_tombstones(self, cutoff: datetime) -> int:
        """Drop tombstones older than ``cutoff``; return how many were removed."""
        raise NotImplementedError

    def list_tasks(self, *, status: TaskStatus | None = None, limit: int = 50) -> list[TaskRecord]:
        """Most recently created records first."""
        raise NotImplementedError

    def close(self) -> None:
        """Release underlying resources."""
        raise NotImplementedError


class InMemoryTaskStore:
    """Lock-guarded dict store with the same semantics as the SQLite one."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, TaskRecord] = {}
        self._tombstones: dict[str, datetime] = {}

    def create(self, record: TaskRecord) -> TaskRecord:
        with self._lock:
            if record.task_id in self._records:
                raise ValueError(f"Task already exists: {record.task_id}")
            self._records[record.task_id] = record
            return record

    def load_by_id(self, task_id: str) -> TaskRecord:
        with self._lock:
            record = self._records.get(task_id)
        if record is None:
            raise TaskNotFound(task_id)
        return record

    def compare_and_swap(self, record: TaskRecord, *, expected_version: int) -> TaskRecord:
        with self._lock:
            stored = self._records.get(record.task_id)
            if stored is None:
                raise TaskNotFound(record.task_id)
            if stored.version != expected_version:
                raise VersionConflict(record.task_id, expected_version, stored.version)
            updated = replace(
                stored,
                current=record.current,
                status=record.status,
                error_summary=record.error_summary,
                cancel_requested=record.cancel_requested,
                updated_at=utc_now(),
                version=expected_version + 1,
            )
            self._records[record.task_id] = updated
            return updated

    def find_by_status_older_than(
        self,
        status: TaskStatus,
        cutoff: datetime,
        *,
        age_field: AgeField = "updated_at",
    ) -> list[TaskRecord]:
        with self._lock:
            matches = [
                record
                for record in self._records.values()
                if record.status == status and getattr(record, age_field) < cutoff
            ]
        return sorted(matches, key=lambda record: getattr(record, age_field))

    def delete(self, task_id: str, *, expected_version: int | None = None) -> bool:
        with self._lock:
            stored = self._records.get(task_id)
            if stored is None:
                return False
            if expected_version is not None and stored.version != expected_version:
                raise VersionConflict(task_id, expected_version, stored.version)
            del self._records[task_id]
            self._tombstones[task_id] = utc_now()
            return True

    def was_deleted(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self._tombstones

    def purge_tombstones(self, cutoff: datetime) -> int:
        with self._lock:
            expired = [key for key, deleted_at in self._tombstones.items() if deleted_at < cutoff]
            for key in expired:
                del self._tombstones[key]
        return len(expired)

    def list_tasks(self, *, status: TaskStatus | None = None, limit: int = 50) -> list[TaskRecord]:
        with self._lock:
            records = [
                record
                for record in self._records.values()
                if status is None or record.status == status
            ]
        records.sort(key=lambda record: record.created_at, reverse=True)
        return records[:limit]

    def close(self) -> None:
        return
