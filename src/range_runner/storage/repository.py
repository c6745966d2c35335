"""Persistent task store backed by SQLModel + SQLite."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from range_runner.engine.errors import TaskNotFound, VersionConflict
from range_runner.engine.models import TaskDetails, TaskEventView, TaskRecord, TaskStatus
from range_runner.engine.store import AgeField
from range_runner.storage.alembic_runner import upgrade_head
from range_runner.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from range_runner.storage.sqlmodel_models import RangeTask, RangeTaskEvent, RangeTaskTombstone

_EVENT_TYPES = {
    TaskStatus.CREATED: "created",
    TaskStatus.RUNNING: "claimed",
    TaskStatus.COMPLETED: "completed",
    TaskStatus.CANCELLED: "cancelled",
    TaskStatus.FAILED: "failed",
}


class SqliteTaskStore:
    """Task persistence facade; every write is a version-guarded statement."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def create(self, record: TaskRecord) -> TaskRecord:
        with Session(self.engine) as session:
            row = RangeTask(
                task_id=record.task_id,
                x=record.x,
                y=record.y,
                current=record.current,
                status=record.status.value,
                version=record.version,
                error_summary=record.error_summary,
                cancel_requested=record.cancel_requested,
                created_at=to_db_datetime(record.created_at),
                updated_at=to_db_datetime(record.updated_at),
            )
            session.add(row)
            session.flush()
            self._add_event(
                session=session,
                task_id=record.task_id,
                event_type=_EVENT_TYPES[record.status],
                status_from=None,
                status_to=record.status,
                details={"x": record.x, "y": record.y},
            )
            session.commit()
            session.refresh(row)
            return _to_record(row)

    def load_by_id(self, task_id: str) -> TaskRecord:
        with Session(self.engine) as session:
            row = session.exec(select(RangeTask).where(RangeTask.task_id == task_id)).one_or_none()
            if row is None:
                raise TaskNotFound(task_id)
            return _to_record(row)

    def compare_and_swap(self, record: TaskRecord, *, expected_version: int) -> TaskRecord:
        now = utc_now()
        with Session(self.engine) as session:
            previous = session.exec(
                select(RangeTask).where(RangeTask.task_id == record.task_id),
            ).one_or_none()
            if previous is None:
                raise TaskNotFound(record.task_id)
            previous_status = TaskStatus(previous.status)
            previous_version = previous.version
            previously_requested = previous.cancel_requested

            result = session.exec(
                sa_update(RangeTask)
                .where(
                    col(RangeTask.task_id) == record.task_id,
                    col(RangeTask.version) == expected_version,
                )
                .values(
                    current=record.current,
                    status=record.status.value,
                    error_summary=record.error_summary,
                    cancel_requested=record.cancel_requested,
                    version=expected_version + 1,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                raise VersionConflict(record.task_id, expected_version, previous_version)

            if previous_status != record.status:
                details: dict[str, object] = {"current": record.current}
                if record.error_summary:
                    details["error_summary"] = record.error_summary
                self._add_event(
                    session=session,
                    task_id=record.task_id,
                    event_type=_EVENT_TYPES[record.status],
                    status_from=previous_status,
                    status_to=record.status,
                    details=details,
                )
            elif record.cancel_requested and not previously_requested:
                self._add_event(
                    session=session,
                    task_id=record.task_id,
                    event_type="cancel_requested",
                    status_from=previous_status,
                    status_to=record.status,
                    details={"current": record.current},
                )
            session.commit()

            stored = session.exec(
                select(RangeTask).where(RangeTask.task_id == record.task_id),
            ).one()
            return _to_record(stored)

    def find_by_status_older_than(
        self,
        status: TaskStatus,
        cutoff: datetime,
        *,
        age_field: AgeField = "updated_at",
    ) -> list[TaskRecord]:
        age_column = col(RangeTask.created_at if age_field == "created_at" else RangeTask.updated_at)
        with Session(self.engine) as session:
            rows = session.exec(
                select(RangeTask)
                .where(
                    RangeTask.status == status.value,
                    age_column < to_db_datetime(cutoff),
                )
                .order_by(age_column.asc()),
            ).all()
            return [_to_record(row) for row in rows]

    def delete(self, task_id: str, *, expected_version: int | None = None) -> bool:
        with Session(self.engine) as session:
            row = session.exec(select(RangeTask).where(RangeTask.task_id == task_id)).one_or_none()
            if row is None:
                return False
            version = row.version
            if expected_version is not None and version != expected_version:
                raise VersionConflict(task_id, expected_version, version)

            session.exec(sa_delete(RangeTaskEvent).where(col(RangeTaskEvent.task_id) == task_id))
            result = session.exec(
                sa_delete(RangeTask).where(
                    col(RangeTask.task_id) == task_id,
                    col(RangeTask.version) == version,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                raise VersionConflict(task_id, version, None)
            session.merge(RangeTaskTombstone(task_id=task_id, deleted_at=to_db_datetime(utc_now())))
            session.commit()
            return True

    def was_deleted(self, task_id: str) -> bool:
        with Session(self.engine) as session:
            row = session.exec(
                select(RangeTaskTombstone).where(RangeTaskTombstone.task_id == task_id),
            ).one_or_none()
            return row is not None

    def purge_tombstones(self, cutoff: datetime) -> int:
        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(RangeTaskTombstone).where(
                    col(RangeTaskTombstone.deleted_at) < to_db_datetime(cutoff),
                ),
            )
            session.commit()
            return int(result.rowcount or 0)

    def list_tasks(self, *, status: TaskStatus | None = None, limit: int = 50) -> list[TaskRecord]:
        """List recent tasks, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = select(RangeTask).order_by(col(RangeTask.created_at).desc()).limit(limit)
            if status is not None:
                statement = statement.where(RangeTask.status == status.value)
            rows = session.exec(statement).all()
            return [_to_record(row) for row in rows]

    def get_task_details(self, *, task_id: str) -> TaskDetails | None:
        """Return task record with event stream."""

        with Session(self.engine) as session:
            task = session.exec(
                select(RangeTask).where(RangeTask.task_id == task_id),
            ).one_or_none()
            if task is None:
                return None
            record = _to_record(task)

            event_rows = session.exec(
                select(RangeTaskEvent)
                .where(RangeTaskEvent.task_id == task_id)
                .order_by(col(RangeTaskEvent.created_at).asc(), col(RangeTaskEvent.id).asc()),
            ).all()

            events: list[TaskEventView] = []
            for row in event_rows:
                details = {}
                if row.details_json:
                    parsed = json.loads(row.details_json)
                    if isinstance(parsed, dict):
                        details = parsed
                events.append(
                    TaskEventView(
                        event_id=row.id or 0,
                        task_id=row.task_id,
                        event_type=row.event_type,
                        status_from=(
                            TaskStatus(row.status_from) if row.status_from is not None else None
                        ),
                        status_to=TaskStatus(row.status_to) if row.status_to is not None else None,
                        created_at=to_utc_aware_datetime(row.created_at),
                        details=details,
                    ),
                )

        return TaskDetails(task=record, events=events)

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        event_type: str,
        status_from: TaskStatus | None,
        status_to: TaskStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            RangeTaskEvent(
                task_id=task_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=to_db_datetime(utc_now()),
            ),
        )


def _to_record(row: RangeTask) -> TaskRecord:
    return TaskRecord(
        task_id=row.task_id,
        x=row.x,
        y=row.y,
        current=row.current,
        status=TaskStatus(row.status),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        version=row.version,
        error_summary=row.error_summary,
        cancel_requested=row.cancel_requested,
    )
