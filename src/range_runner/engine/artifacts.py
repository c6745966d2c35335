"""File artifacts produced for finished tasks."""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import Protocol

from range_runner.engine.models import TaskRecord
from range_runner.engine.progress import snapshot_from_record
from range_runner.storage.common import utc_now

logger = logging.getLogger(__name__)

RESULT_FILENAME = "result.json"


class ArtifactReleaser(Protocol):
    """Deletion hook for whatever external artifacts a task kind produces."""

    def release_artifacts(self, task_id: str) -> None:
        """Delete artifacts of ``task_id``; missing artifacts are not an error."""
        raise NotImplementedError


class FileArtifactStore:
    """One directory per task under ``root_dir``."""

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = root_dir

    def task_dir(self, task_id: str) -> Path:
        if not task_id or "/" in task_id or "\\" in task_id or task_id in {".", ".."}:
            raise ValueError(f"Unsafe task id for artifact path: {task_id!r}")
        return self.root_dir / task_id

    def write_result(self, record: TaskRecord) -> Path:
        """Write a JSON summary of a finished task and return its path."""

        snapshot = snapshot_from_record(record)
        target_dir = self.task_dir(record.task_id)
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / RESULT_FILENAME
        payload = {
            "task_id": record.task_id,
            "x": record.x,
            "y": record.y,
            "current": record.current,
            "status": record.status.value,
            "percentage": snapshot.percentage,
            "error_summary": record.error_summary,
            "created_at": record.created_at.isoformat(),
            "written_at": utc_now().isoformat(),
        }
        path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), "utf-8")
        return path

    def has_artifacts(self, task_id: str) -> bool:
        return self.task_dir(task_id).exists()

    def release_artifacts(self, task_id: str) -> None:
        target_dir = self.task_dir(task_id)
        if not target_dir.exists():
            return
        shutil.rmtree(target_dir, ignore_errors=True)
        logger.debug("Released artifacts task_id=%s path=%s", task_id, target_dir)
