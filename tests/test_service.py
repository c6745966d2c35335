import threading
import time
from pathlib import Path

import allure
import pytest

from conftest import make_record, wait_until
from range_runner.engine.artifacts import RESULT_FILENAME, FileArtifactStore
from range_runner.engine.errors import InvalidRange, PoolSaturated, TaskNotFound
from range_runner.engine.models import TaskStatus
from range_runner.engine.service import TaskService
from range_runner.engine.store import InMemoryTaskStore

pytestmark = [
    allure.epic("Task Engine"),
    allure.feature("Task Service"),
]


def _service(store, **overrides) -> TaskService:
    options = {
        "max_span": 1_000_000,
        "max_workers": 2,
        "queue_limit": 4,
        "tick_seconds": 0.001,
        "flush_every_ticks": 5,
        "flush_interval_seconds": 60.0,
    }
    options.update(overrides)
    return TaskService(store=store, **options)


def test_submitted_task_completes_with_full_percentage(memory_store: InMemoryTaskStore) -> None:
    with _service(memory_store) as service:
        submission = service.submit(0, 5)
        submission.future.result(timeout=5)
        progress = service.get_progress(submission.record.task_id)

    assert submission.record.status == TaskStatus.CREATED
    assert submission.record.current == 0
    assert progress.status == TaskStatus.COMPLETED
    assert progress.current == 5
    assert progress.percentage == pytest.approx(100.0)


@pytest.mark.parametrize(
    ("x", "y", "message"),
    [
        (5, 2, "y must be >= x"),
        (0, 2_000, "exceeds maximum"),
        (True, 3, "integers"),
        (0, 2.5, "integers"),
    ],
)
def test_invalid_range_is_rejected_without_record(
    memory_store: InMemoryTaskStore,
    x,
    y,
    message: str,
) -> None:
    with _service(memory_store, max_span=1_000) as service:
        with pytest.raises(InvalidRange, match=message):
            service.submit(x, y)

    assert memory_store.list_tasks() == []


def test_immediate_cancel_stops_before_progress(memory_store: InMemoryTaskStore) -> None:
    with _service(memory_store, tick_seconds=0.05) as service:
        submission = service.submit(0, 100_000)
        ack = service.cancel(submission.record.task_id)
        submission.future.result(timeout=5)
        progress = service.get_progress(submission.record.task_id)

    assert ack.noop is False
    assert progress.status == TaskStatus.CANCELLED
    assert progress.current <= 1
    assert progress.percentage < 1.0


def test_cancel_is_idempotent(memory_store: InMemoryTaskStore) -> None:
    with _service(memory_store, tick_seconds=0.01) as service:
        submission = service.submit(0, 100_000)
        task_id = submission.record.task_id
        first = service.cancel(task_id)
        second = service.cancel(task_id)
        submission.future.result(timeout=5)
        third = service.cancel(task_id)

    assert first.noop is False
    assert second.forced is False
    assert third.noop is True
    assert memory_store.load_by_id(task_id).status == TaskStatus.CANCELLED


def test_cancel_of_completed_task_is_noop(memory_store: InMemoryTaskStore) -> None:
    with _service(memory_store) as service:
        submission = service.submit(0, 3)
        submission.future.result(timeout=5)
        before = memory_store.load_by_id(submission.record.task_id)
        ack = service.cancel(submission.record.task_id)

    after = memory_store.load_by_id(submission.record.task_id)
    assert ack.noop is True
    assert after.status == TaskStatus.COMPLETED
    assert after.version == before.version


def test_cancel_without_live_worker_is_forced(memory_store: InMemoryTaskStore) -> None:
    record = memory_store.create(make_record(x=0, y=10))

    with _service(memory_store) as service:
        ack = service.cancel(record.task_id)

    stored = memory_store.load_by_id(record.task_id)
    assert ack.forced is True
    assert stored.status == TaskStatus.CANCELLED
    assert stored.current == 0


def test_cancel_of_deleted_task_is_noop(memory_store: InMemoryTaskStore) -> None:
    record = memory_store.create(make_record())
    memory_store.delete(record.task_id)

    with _service(memory_store) as service:
        ack = service.cancel(record.task_id)

    assert ack.noop is True


def test_cancel_and_progress_of_unknown_task_raise(memory_store: InMemoryTaskStore) -> None:
    with _service(memory_store) as service:
        with pytest.raises(TaskNotFound):
            service.cancel("missing")
        with pytest.raises(TaskNotFound):
            service.get_progress("missing")


def test_progress_never_decreases_while_running(memory_store: InMemoryTaskStore) -> None:
    observed: list[int] = []
    with _service(memory_store, tick_seconds=0.002) as service:
        submission = service.submit(0, 200)
        while not submission.future.done():
            observed.append(service.get_progress(submission.record.task_id).current)
            time.sleep(0.001)
        submission.future.result(timeout=5)
        observed.append(service.get_progress(submission.record.task_id).current)

    assert observed == sorted(observed)
    assert observed[-1] == 200


def test_concurrent_cancels_converge_to_one_terminal_state(
    memory_store: InMemoryTaskStore,
) -> None:
    with _service(memory_store, tick_seconds=0.005) as service:
        submission = service.submit(0, 100_000)
        task_id = submission.record.task_id
        threads = [threading.Thread(target=service.cancel, args=(task_id,)) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)
        submission.future.result(timeout=5)

    assert memory_store.load_by_id(task_id).status == TaskStatus.CANCELLED


def test_submit_beyond_capacity_leaves_no_record(memory_store: InMemoryTaskStore) -> None:
    with _service(memory_store, max_workers=1, queue_limit=0, tick_seconds=0.01) as service:
        first = service.submit(0, 100_000)
        with pytest.raises(PoolSaturated):
            service.submit(0, 10)
        tasks = service.list_tasks()
        service.cancel(first.record.task_id)
        first.future.result(timeout=5)

    assert [task.task_id for task in tasks] == [first.record.task_id]


def test_recover_resumes_running_and_created_tasks(memory_store: InMemoryTaskStore) -> None:
    orphan = memory_store.create(make_record(x=0, y=6, current=4, status=TaskStatus.RUNNING))
    pending = memory_store.create(make_record(x=10, y=12))
    done = memory_store.create(make_record(x=0, y=1, current=1, status=TaskStatus.COMPLETED))

    with _service(memory_store) as service:
        futures = service.recover()
        outcomes = [future.result(timeout=5) for future in futures]

    assert len(outcomes) == 2
    assert memory_store.load_by_id(orphan.task_id).status == TaskStatus.COMPLETED
    assert memory_store.load_by_id(orphan.task_id).current == 6
    assert memory_store.load_by_id(pending.task_id).current == 12
    assert memory_store.load_by_id(done.task_id).version == 1


def test_recover_stops_at_pool_capacity(memory_store: InMemoryTaskStore) -> None:
    for _ in range(3):
        memory_store.create(make_record(x=0, y=2))

    with _service(memory_store, max_workers=1, queue_limit=1, tick_seconds=0.05) as service:
        futures = service.recover()
        for future in futures:
            future.result(timeout=5)

    assert len(futures) == 2
    statuses = sorted(task.status.value for task in memory_store.list_tasks())
    assert statuses == ["completed", "completed", "created"]


def test_completed_task_writes_result_artifact(
    memory_store: InMemoryTaskStore,
    tmp_path: Path,
) -> None:
    artifacts = FileArtifactStore(tmp_path / "artifacts")

    with _service(memory_store, artifacts=artifacts, tick_seconds=0.05) as service:
        completed = service.submit(0, 2)
        cancelled = service.submit(0, 100_000)
        service.cancel(cancelled.record.task_id)
        completed.future.result(timeout=5)
        cancelled.future.result(timeout=5)

    result_path = artifacts.task_dir(completed.record.task_id) / RESULT_FILENAME
    assert result_path.exists()
    assert '"status": "completed"' in result_path.read_text("utf-8")
    assert artifacts.has_artifacts(cancelled.record.task_id) is False


def test_close_suspends_running_tasks(memory_store: InMemoryTaskStore) -> None:
    service = _service(memory_store, tick_seconds=0.01)
    submission = service.submit(0, 100_000)
    wait_until(lambda: service.get_progress(submission.record.task_id).current >= 1)

    service.close()
    service.close()

    stored = memory_store.load_by_id(submission.record.task_id)
    assert submission.future.result(timeout=5).suspended is True
    assert stored.status == TaskStatus.RUNNING
    assert stored.current >= 1


def test_cancel_of_queued_task_survives_close_and_recover(
    memory_store: InMemoryTaskStore,
) -> None:
    service = _service(memory_store, max_workers=1, queue_limit=2, tick_seconds=0.01)
    try:
        blocker = service.submit(0, 1_000)
        wait_until(lambda: service.registry.get(blocker.record.task_id) is not None)
        queued = service.submit(0, 5)
        queued_id = queued.record.task_id

        ack = service.cancel(queued_id)

        assert ack.forced is True
        assert memory_store.load_by_id(queued_id).status == TaskStatus.CANCELLED
    finally:
        service.close()

    assert memory_store.load_by_id(queued_id).status == TaskStatus.CANCELLED
    assert memory_store.load_by_id(blocker.record.task_id).status == TaskStatus.RUNNING

    with _service(memory_store) as restarted:
        futures = restarted.recover()
        outcomes = [future.result(timeout=10) for future in futures]

    assert [outcome.task_id for outcome in outcomes] == [blocker.record.task_id]
    stored = memory_store.load_by_id(queued_id)
    assert stored.status == TaskStatus.CANCELLED
    assert stored.current == 0


def test_cancel_from_another_process_reaches_running_worker(
    memory_store: InMemoryTaskStore,
) -> None:
    observed: list[int] = []
    with _service(memory_store, tick_seconds=0.005, flush_every_ticks=50) as owner:
        submission = owner.submit(0, 100_000)
        task_id = submission.record.task_id
        wait_until(lambda: owner.get_progress(task_id).current >= 5)

        # A second service over the same store has no live signal for the task.
        with _service(memory_store) as other:
            ack = other.cancel(task_id)
            repeated = other.cancel(task_id)

        while not submission.future.done():
            observed.append(owner.get_progress(task_id).current)
            time.sleep(0.001)
        submission.future.result(timeout=5)
        final = owner.get_progress(task_id)

    assert ack.requested is True
    assert repeated.forced is False
    assert final.status == TaskStatus.CANCELLED
    assert observed == sorted(observed)
    assert final.current >= max(observed, default=5)


def test_cancel_request_for_orphaned_task_applies_on_recover(
    memory_store: InMemoryTaskStore,
) -> None:
    orphan = memory_store.create(make_record(x=0, y=10, current=4, status=TaskStatus.RUNNING))

    with _service(memory_store) as service:
        ack = service.cancel(orphan.task_id)
        pending = memory_store.load_by_id(orphan.task_id)
        outcomes = [future.result(timeout=5) for future in service.recover()]

    stored = memory_store.load_by_id(orphan.task_id)
    assert ack.requested is True
    assert pending.status == TaskStatus.RUNNING
    assert pending.cancel_requested is True
    assert [outcome.status for outcome in outcomes] == [TaskStatus.CANCELLED]
    assert stored.status == TaskStatus.CANCELLED
    assert stored.current == 4


def test_failed_start_discards_cancel_signal(
    memory_store: InMemoryTaskStore,
    monkeypatch,
) -> None:
    with _service(memory_store, max_workers=1, queue_limit=0) as service:

        def _refuse(*_args, **_kwargs):
            raise RuntimeError("cannot schedule new futures after shutdown")

        monkeypatch.setattr(service.executor._pool, "submit", _refuse)

        with pytest.raises(RuntimeError, match="cannot schedule"):
            service.submit(0, 3)

        assert len(service.coordinator) == 0
        service.executor.reserve().release()
