from dataclasses import replace
from datetime import timedelta
from pathlib import Path

import allure
import pytest

from conftest import make_record
from range_runner.engine.errors import TaskNotFound, VersionConflict
from range_runner.engine.models import TaskStatus
from range_runner.engine.store import InMemoryTaskStore
from range_runner.storage.common import utc_now
from range_runner.storage.repository import SqliteTaskStore

pytestmark = [
    allure.epic("Task Engine"),
    allure.feature("Task Store Contract"),
]


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path: Path):
    if request.param == "memory":
        instance = InMemoryTaskStore()
    else:
        instance = SqliteTaskStore(tmp_path / "contract.db")
        instance.init_schema()
    yield instance
    instance.close()


def test_create_and_load_round_trip(store) -> None:
    record = make_record(x=3, y=9)

    store.create(record)
    loaded = store.load_by_id(record.task_id)

    assert loaded.task_id == record.task_id
    assert (loaded.x, loaded.y, loaded.current) == (3, 9, 3)
    assert loaded.status == TaskStatus.CREATED
    assert loaded.version == 1
    assert loaded.created_at.tzinfo is not None


def test_load_missing_task_raises(store) -> None:
    with pytest.raises(TaskNotFound):
        store.load_by_id("missing")


def test_compare_and_swap_bumps_version(store) -> None:
    record = store.create(make_record())

    stored = store.compare_and_swap(
        replace(record, status=TaskStatus.RUNNING, current=2),
        expected_version=1,
    )

    assert stored.version == 2
    assert stored.status == TaskStatus.RUNNING
    assert stored.current == 2
    assert stored.updated_at >= record.updated_at
    assert store.load_by_id(record.task_id) == stored


def test_compare_and_swap_rejects_stale_version(store) -> None:
    record = store.create(make_record())
    store.compare_and_swap(replace(record, status=TaskStatus.RUNNING), expected_version=1)

    with pytest.raises(VersionConflict) as error_info:
        store.compare_and_swap(replace(record, status=TaskStatus.CANCELLED), expected_version=1)

    assert error_info.value.expected_version == 1
    assert store.load_by_id(record.task_id).status == TaskStatus.RUNNING


def test_compare_and_swap_on_missing_task_raises(store) -> None:
    with pytest.raises(TaskNotFound):
        store.compare_and_swap(make_record(), expected_version=1)


def test_find_by_status_older_than_uses_age_field(store) -> None:
    now = utc_now()
    old = store.create(make_record(created_at=now - timedelta(hours=2)))
    store.create(make_record(created_at=now - timedelta(minutes=5)))
    store.create(
        make_record(status=TaskStatus.COMPLETED, created_at=now - timedelta(hours=3)),
    )

    matches = store.find_by_status_older_than(
        TaskStatus.CREATED,
        now - timedelta(hours=1),
        age_field="created_at",
    )

    assert [record.task_id for record in matches] == [old.task_id]


def test_delete_leaves_tombstone(store) -> None:
    record = store.create(make_record())

    assert store.delete(record.task_id, expected_version=1) is True
    assert store.delete(record.task_id) is False
    assert store.was_deleted(record.task_id) is True
    with pytest.raises(TaskNotFound):
        store.load_by_id(record.task_id)


def test_delete_with_stale_version_keeps_record(store) -> None:
    record = store.create(make_record())
    store.compare_and_swap(replace(record, status=TaskStatus.RUNNING), expected_version=1)

    with pytest.raises(VersionConflict):
        store.delete(record.task_id, expected_version=1)

    assert store.load_by_id(record.task_id).status == TaskStatus.RUNNING
    assert store.was_deleted(record.task_id) is False


def test_purge_tombstones_respects_cutoff(store) -> None:
    record = store.create(make_record())
    store.delete(record.task_id)

    assert store.purge_tombstones(utc_now() - timedelta(days=1)) == 0
    assert store.purge_tombstones(utc_now() + timedelta(seconds=1)) == 1
    assert store.was_deleted(record.task_id) is False


def test_list_tasks_newest_first_with_filter(store) -> None:
    now = utc_now()
    first = store.create(make_record(created_at=now - timedelta(minutes=2)))
    second = store.create(
        make_record(status=TaskStatus.COMPLETED, created_at=now - timedelta(minutes=1)),
    )

    assert [r.task_id for r in store.list_tasks()] == [second.task_id, first.task_id]
    assert [r.task_id for r in store.list_tasks(status=TaskStatus.CREATED)] == [first.task_id]
    assert len(store.list_tasks(limit=1)) == 1


def test_compare_and_swap_persists_cancel_request(store) -> None:
    record = store.create(make_record())

    stored = store.compare_and_swap(replace(record, cancel_requested=True), expected_version=1)

    assert stored.cancel_requested is True
    assert store.load_by_id(record.task_id).cancel_requested is True
    assert store.load_by_id(record.task_id).status == TaskStatus.CREATED
