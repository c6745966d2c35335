"""Shared test fixtures."""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from uuid import uuid4

import pytest

from range_runner.engine.models import TaskRecord, TaskStatus
from range_runner.engine.store import InMemoryTaskStore
from range_runner.storage.common import utc_now
from range_runner.storage.repository import SqliteTaskStore


def make_record(  # noqa: PLR0913
    *,
    x: int = 0,
    y: int = 10,
    current: int | None = None,
    status: TaskStatus = TaskStatus.CREATED,
    created_at: datetime | None = None,
    updated_at: datetime | None = None,
    task_id: str | None = None,
) -> TaskRecord:
    now = utc_now()
    return TaskRecord(
        task_id=task_id or str(uuid4()),
        x=x,
        y=y,
        current=x if current is None else current,
        status=status,
        created_at=created_at or now,
        updated_at=updated_at or created_at or now,
    )


def wait_until(predicate: Callable[[], bool], *, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(0.005)
    raise AssertionError("Condition not met before timeout")


@pytest.fixture()
def memory_store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture()
def sqlite_store(tmp_path: Path):
    store = SqliteTaskStore(tmp_path / "tasks.db")
    store.init_schema()
    yield store
    store.close()


@pytest.fixture()
def fast_env(monkeypatch, tmp_path: Path) -> Path:
    """Point CLI settings at a temp workspace with millisecond ticks."""

    monkeypatch.setenv("RANGE_RUNNER_TICK_SECONDS", "0.01")
    monkeypatch.setenv("RANGE_RUNNER_FLUSH_EVERY_TICKS", "2")
    monkeypatch.setenv("RANGE_RUNNER_ARTIFACTS_ROOT", str(tmp_path / "artifacts"))
    monkeypatch.setenv("RANGE_RUNNER_LOG_LEVEL", "WARNING")
    return tmp_path / "cli.db"
