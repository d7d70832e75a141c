"""Bounded worker pool with cooperative cancellation.

Provides:
- CancellationToken: a per-task flag that running work polls between
  sheets and rows.
- WorkerPool: ``ThreadPoolExecutor`` bounded by ``worker_count``;
  ``submit()`` returns a task ID and future, ``wait_all()`` gives
  all-settled semantics with a per-task execution timeout, and ``terminate()``
  cancels every task with a bounded grace period.

Workers only receive arguments and return results; the active-task map is
mutated only under the pool lock, never by a worker.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable

from sheetkit.errors import AnalysisAbortedError

logger = logging.getLogger("sheetkit")


class CancellationToken:
    """Cooperative cancellation flag shared between orchestrator and a task."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AnalysisAbortedError(
                f"Task {self.reason or 'cancelled'}", stage="worker"
            )


@dataclass
class TaskOutcome:
    """Settled state of one task: exactly one of value / error is meaningful."""

    task_id: str
    value: Any = None
    error: BaseException | None = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.timed_out


@dataclass
class _ActiveTask:
    token: CancellationToken
    future: Future | None = None
    # Set on the worker thread when the task begins executing; queue wait
    # does not count against the task's timeout.
    started: float | None = None


class WorkerPool:
    """Bounded pool of worker threads.

    Safe to share between orchestrating threads: the executor and the
    active-task map are guarded by one lock.

    Parameters
    ----------
    worker_count:
        Maximum number of tasks executing concurrently.
    """

    _POLL_SECONDS = 0.05

    def __init__(self, worker_count: int = 4) -> None:
        self._worker_count = worker_count
        self._executor: ThreadPoolExecutor | None = None
        self._active: dict[str, _ActiveTask] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def worker_count(self) -> int:
        return self._worker_count

    @property
    def active_count(self) -> int:
        with self._lock:
            tasks = list(self._active.values())
        return sum(1 for t in tasks if t.future is not None and not t.future.done())

    def submit(
        self,
        fn: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> tuple[str, Future]:
        """Schedule ``fn(*args, token=<CancellationToken>, **kwargs)``.

        Returns the task ID and its future.
        """
        task_id = str(uuid.uuid4())
        task = _ActiveTask(token=CancellationToken())
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._worker_count,
                    thread_name_prefix="sheetkit-worker",
                )
            task.future = self._executor.submit(_run_task, task, fn, args, kwargs)
            self._active[task_id] = task
        return task_id, task.future

    def wait_all(
        self,
        task_ids: list[str],
        timeout: float | None = None,
    ) -> dict[str, TaskOutcome]:
        """Block until every task in *task_ids* has settled.

        Each task gets at most *timeout* seconds of execution, measured
        from the moment a worker thread picked it up.  A task that overruns
        has its token cancelled and is reported with ``timed_out=True``;
        the other tasks keep running.
        """
        outcomes: dict[str, TaskOutcome] = {}
        with self._lock:
            pending = {tid: self._active[tid] for tid in task_ids if tid in self._active}

        while pending:
            now = time.monotonic()
            for tid, task in list(pending.items()):
                if task.future.done():
                    outcomes[tid] = self._settle(tid, task)
                    del pending[tid]
                elif (
                    timeout is not None
                    and task.started is not None
                    and now - task.started >= timeout
                ):
                    task.token.cancel("timed out")
                    task.future.cancel()
                    outcomes[tid] = TaskOutcome(task_id=tid, timed_out=True)
                    with self._lock:
                        self._active.pop(tid, None)
                    del pending[tid]
                    logger.warning(
                        "sheetkit | stage=worker | task=%s | detail=timed out after %.1fs",
                        tid[:8],
                        timeout,
                    )
            if not pending:
                break
            remaining = None
            if timeout is not None:
                deadlines = [t.started + timeout for t in pending.values() if t.started is not None]
                if len(deadlines) < len(pending):
                    # Queued tasks start their clock later; poll for them.
                    deadlines.append(time.monotonic() + self._POLL_SECONDS)
                remaining = max(0.0, min(deadlines) - time.monotonic())
            wait([t.future for t in pending.values()], timeout=remaining, return_when=FIRST_COMPLETED)

        return outcomes

    def terminate(self, grace_seconds: float = 5.0) -> dict[str, int]:
        """Cancel every active task and wait up to *grace_seconds*.

        Tasks still running after the grace period are abandoned: the pool
        is shut down without waiting and a fresh executor is created on the
        next ``submit()``.

        Returns
        -------
        dict[str, int]
            ``{"terminated": n, "unresponsive": m}``.
        """
        with self._lock:
            tasks = list(self._active.values())
            executor = self._executor
            self._executor = None
            self._active.clear()

        for task in tasks:
            task.token.cancel("aborted")
            task.future.cancel()

        running = [t.future for t in tasks if not t.future.done()]
        unresponsive = 0
        if running:
            _, not_done = wait(running, timeout=grace_seconds)
            unresponsive = len(not_done)
            if unresponsive:
                logger.warning(
                    "sheetkit | stage=abort | detail=%d worker(s) unresponsive after %.1fs, "
                    "abandoning",
                    unresponsive,
                    grace_seconds,
                )

        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)
        return {"terminated": len(tasks) - unresponsive, "unresponsive": unresponsive}

    def shutdown(self) -> None:
        with self._lock:
            executor = self._executor
            self._executor = None
            self._active.clear()
        if executor is not None:
            executor.shutdown(wait=True)

    def status(self) -> dict[str, int]:
        active = self.active_count
        return {
            "total": self._worker_count,
            "active": active,
            "available": max(0, self._worker_count - active),
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _settle(self, task_id: str, task: _ActiveTask) -> TaskOutcome:
        with self._lock:
            self._active.pop(task_id, None)
        if task.future.cancelled():
            return TaskOutcome(
                task_id=task_id,
                error=AnalysisAbortedError("Task cancelled", stage="worker"),
            )
        error = task.future.exception()
        if error is not None:
            return TaskOutcome(task_id=task_id, error=error)
        return TaskOutcome(task_id=task_id, value=task.future.result())


def _run_task(
    task: _ActiveTask,
    fn: Callable[..., Any],
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
) -> Any:
    task.started = time.monotonic()
    task.token.raise_if_cancelled()
    return fn(*args, token=task.token, **kwargs)
