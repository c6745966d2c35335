"""Per-task cooperative cancellation signals."""

from __future__ import annotations

import logging
import threading

logger = logging.getLogger(__name__)


class CancellationCoordinator:
    """Maps task ids to cancellation flags.

    Each flag is a ``threading.Event``: setting it is a single atomic
    operation, so a cancel request racing with the worker's own poll can
    never be lost or observed half-applied.  The coordinator owns no task
    data; the worker that consumes a flag decides the resulting transition.

    Entries live only while a task is submitted or running.  ``discard`` is
    called by the worker once the task is terminal, which keeps the map
    bounded by the number of in-flight tasks.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._signals: dict[str, threading.Event] = {}

    def register(self, task_id: str) -> threading.Event:
        """Create (or return the existing) signal for a task."""

        with self._lock:
            signal = self._signals.get(task_id)
            if signal is None:
                signal = threading.Event()
                self._signals[task_id] = signal
            return signal

    def signal_cancel(self, task_id: str) -> bool:
        """Request cancellation; returns whether a live signal was set.

        Unknown or already discarded ids are a no-op, as is signalling twice.
        """

        with self._lock:
            signal = self._signals.get(task_id)
        if signal is None:
            return False
        if not signal.is_set():
            logger.info("Cancellation requested task_id=%s", task_id)
        signal.set()
        return True

    def is_cancelled(self, task_id: str) -> bool:
        with self._lock:
            signal = self._signals.get(task_id)
        return signal is not None and signal.is_set()

    def wait(self, task_id: str, timeout: float) -> bool:
        """Block up to ``timeout`` seconds; return early with True if cancelled."""

        with self._lock:
            signal = self._signals.get(task_id)
        if signal is None:
            raise KeyError(f"No cancellation signal registered for task {task_id}")
        return signal.wait(timeout=max(0.0, timeout))

    def discard(self, task_id: str) -> None:
        with self._lock:
            self._signals.pop(task_id, None)

    def __contains__(self, task_id: object) -> bool:
        with self._lock:
            return task_id in self._signals

    def __len__(self) -> int:
        with self._lock:
            return len(self._signals)
