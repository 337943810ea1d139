"""
Install task registry.

Single owner of every install task. All reads and writes go through the
registry's condition lock, so callers only ever see committed snapshots.

Dispatch policy: at most `max_parallel` tasks are running at any instant.
start() on a task while every slot is busy queues it (it stays pending);
queued tasks are promoted in FIFO order as running tasks finish.

Cancellation is cooperative: a running task's cancel flag is checked at
stage boundaries only, so an in-flight stage always runs to its end.
"""

from __future__ import annotations

import itertools
import logging
import re
import threading
import time
from collections import deque
from collections.abc import Callable, Iterable
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime, timezone

from gearbox.errors import AlreadyStarted, InstallerFailure, UnknownTask
from gearbox.providers import (
    InstallStage,
    InstallTarget,
    Installer,
    ProgressEvent,
    RecordStore,
    TaskRecord,
    TaskStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_PARALLEL = 2
MIN_PARALLEL = 1
MAX_PARALLEL = 16
DEFAULT_OUTPUT_LIMIT = 10

QUEUED_STAGE = "Queued"
WAITING_STAGE = "Waiting for a free slot"
PREPARING_STAGE = "Preparing installation..."

_PERCENT_RE = re.compile(r"(?<![\d.])(\d{1,3}(?:\.\d+)?)%")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def clamp_parallel(value: int) -> int:
    return max(MIN_PARALLEL, min(MAX_PARALLEL, int(value)))


def parse_progress(line: str) -> float | None:
    """Extract a fraction from a percentage like '42%' in an output line."""
    match = _PERCENT_RE.search(line)
    if not match:
        return None
    pct = float(match.group(1))
    if pct > 100:
        return None
    return pct / 100.0


@dataclass
class _Task:
    id: str
    target: InstallTarget
    submitted_at: datetime
    output: deque[str]
    status: TaskStatus = TaskStatus.PENDING
    progress: float = 0.0
    stage: str = QUEUED_STAGE
    started_at: datetime | None = None
    ended_at: datetime | None = None
    error: str | None = None
    # progress at the start of the current stage
    stage_floor: float = 0.0
    start_requested: bool = False
    cancel_requested: threading.Event = field(default_factory=threading.Event)

    def snapshot(self) -> TaskRecord:
        return TaskRecord(
            id=self.id,
            target=self.target,
            status=self.status,
            progress=self.progress,
            stage=self.stage,
            output=tuple(self.output),
            submitted_at=self.submitted_at,
            started_at=self.started_at,
            ended_at=self.ended_at,
            error=self.error,
        )


class TaskRegistry:
    """Owns install tasks, the concurrency budget and cancellation."""

    def __init__(
        self,
        installer: Installer,
        *,
        max_parallel: int = DEFAULT_MAX_PARALLEL,
        output_limit: int = DEFAULT_OUTPUT_LIMIT,
        publish: Callable[[ProgressEvent], object] | None = None,
    ) -> None:
        self._installer = installer
        self._max_parallel = clamp_parallel(max_parallel)
        self._output_limit = max(1, int(output_limit))
        self._publish = publish
        self._tasks: dict[str, _Task] = {}
        self._queue: deque[str] = deque()
        self._running = 0
        self._cond = threading.Condition()
        self._seq = itertools.count(1)

    @property
    def max_parallel(self) -> int:
        return self._max_parallel

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def submit(self, target: InstallTarget) -> str:
        """Create a pending task and return its id. Does not start it."""
        with self._cond:
            task_id = f"task-{time.time_ns()}-{next(self._seq)}"
            self._tasks[task_id] = _Task(
                id=task_id,
                target=target,
                submitted_at=_now(),
                output=deque(maxlen=self._output_limit),
            )
        logger.info("Submitted %s for %s", task_id, target)
        return task_id

    def start(self, task_id: str) -> bool:
        """
        Request that a pending task runs.

        Returns True if the task is running now, False if every slot is busy
        and it was queued. Raises UnknownTask or AlreadyStarted.
        """
        with self._cond:
            task = self._require(task_id)
            if task.status != TaskStatus.PENDING or task.start_requested:
                raise AlreadyStarted(task_id, task.status.value)
            task.start_requested = True
            if self._running >= self._max_parallel:
                self._queue.append(task_id)
                task.stage = WAITING_STAGE
                self._emit(task)
                logger.info(
                    "Queued %s, %d/%d slots busy",
                    task_id,
                    self._running,
                    self._max_parallel,
                )
                return False
            self._promote(task)
        self._launch(task)
        return True

    def cancel(self, task_id: str) -> None:
        """
        Cancel a task.

        Pending tasks are cancelled immediately. Running tasks are flagged and
        stop at their next stage boundary. Terminal tasks are left alone.
        """
        with self._cond:
            task = self._require(task_id)
            if task.status.is_terminal:
                return
            if task.status == TaskStatus.PENDING:
                with suppress(ValueError):
                    self._queue.remove(task_id)
                self._finish(task, TaskStatus.CANCELLED, stage="Cancelled")
                logger.info("Cancelled pending task %s", task_id)
                return
            task.cancel_requested.set()
        logger.info("Cancellation requested for %s", task_id)

    def cancel_all(self) -> int:
        """Cancel every non-terminal task. Returns how many were affected."""
        with self._cond:
            ids = [t.id for t in self._tasks.values() if not t.status.is_terminal]
        for task_id in ids:
            self.cancel(task_id)
        return len(ids)

    def prune(self) -> int:
        """Forget terminal tasks. Returns how many were removed."""
        with self._cond:
            done = [tid for tid, t in self._tasks.items() if t.status.is_terminal]
            for tid in done:
                del self._tasks[tid]
        return len(done)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, task_id: str) -> TaskRecord | None:
        with self._cond:
            task = self._tasks.get(task_id)
            return task.snapshot() if task else None

    def get_all(self) -> list[TaskRecord]:
        """Snapshots of every task, in submission order."""
        with self._cond:
            return [task.snapshot() for task in self._tasks.values()]

    def running_count(self) -> int:
        with self._cond:
            return sum(1 for t in self._tasks.values() if t.status == TaskStatus.RUNNING)

    def counts(self) -> dict[TaskStatus, int]:
        with self._cond:
            counts = {status: 0 for status in TaskStatus}
            for task in self._tasks.values():
                counts[task.status] += 1
            return counts

    def find_active(self, tool: str) -> str | None:
        """Id of a pending or running task for `tool`, if any."""
        with self._cond:
            for task in self._tasks.values():
                if task.target.tool == tool and not task.status.is_terminal:
                    return task.id
        return None

    def wait(self, task_id: str, timeout: float | None = None) -> TaskRecord:
        """Block until a task is terminal (or timeout) and return its snapshot."""
        with self._cond:
            task = self._require(task_id)
            self._cond.wait_for(lambda: task.status.is_terminal, timeout)
            return task.snapshot()

    def wait_all(self, timeout: float | None = None) -> bool:
        """Block until no task is running or queued. Returns False on timeout."""

        def idle() -> bool:
            return not any(
                t.status == TaskStatus.RUNNING
                or (t.status == TaskStatus.PENDING and t.start_requested)
                for t in self._tasks.values()
            )

        with self._cond:
            return self._cond.wait_for(idle, timeout)

    # ------------------------------------------------------------------
    # Execution unit
    # ------------------------------------------------------------------

    def _launch(self, task: _Task) -> None:
        worker = threading.Thread(
            target=self._run,
            args=(task,),
            name=f"gearbox-{task.id}",
            daemon=True,
        )
        worker.start()

    def _run(self, task: _Task) -> None:
        try:
            self._execute(task)
        except InstallerFailure as exc:
            logger.warning("Task %s failed: %s", task.id, exc)
            with self._cond:
                self._finish(task, TaskStatus.FAILED, stage="Failed", error=str(exc))
        except Exception as exc:
            logger.exception("Task %s crashed", task.id)
            with self._cond:
                self._finish(task, TaskStatus.FAILED, stage="Failed", error=str(exc) or type(exc).__name__)
        finally:
            with self._cond:
                self._running -= 1
                promoted = self._promote_queued()
            for next_task in promoted:
                self._launch(next_task)

    def _execute(self, task: _Task) -> None:
        stages = list(self._installer.stages(task.target))
        for stage in stages:
            if task.cancel_requested.is_set():
                self._stop_cancelled(task)
                return
            with self._cond:
                task.stage_floor = task.progress
                task.stage = stage.name
                self._emit(task)
            stage.run(lambda line, s=stage: self._record_output(task, s, line))
            if task.cancel_requested.is_set():
                self._stop_cancelled(task)
                return
            with self._cond:
                self._set_progress(task, stage.progress)

        with self._cond:
            self._finish(task, TaskStatus.COMPLETED, stage="Completed")
        logger.info("Task %s completed (%s)", task.id, task.target)

    def _stop_cancelled(self, task: _Task) -> None:
        with self._cond:
            self._finish(task, TaskStatus.CANCELLED, stage="Cancelled")
        logger.info("Task %s cancelled at stage boundary", task.id)

    def _record_output(self, task: _Task, stage: InstallStage, line: str) -> None:
        line = line.rstrip("\n")
        with self._cond:
            if task.status.is_terminal:
                return
            task.output.append(line)
            fraction = parse_progress(line)
            if fraction is not None:
                span = max(0.0, stage.progress - task.stage_floor)
                self._set_progress(task, task.stage_floor + fraction * span)
            self._emit(task, appended_output=line)

    # ------------------------------------------------------------------
    # Helpers (lock held)
    # ------------------------------------------------------------------

    def _require(self, task_id: str) -> _Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise UnknownTask(task_id)
        return task

    def _promote(self, task: _Task) -> None:
        task.status = TaskStatus.RUNNING
        task.started_at = _now()
        task.stage = PREPARING_STAGE
        self._running += 1
        self._emit(task)
        logger.info("Started %s (%d/%d slots busy)", task.id, self._running, self._max_parallel)

    def _promote_queued(self) -> list[_Task]:
        promoted = []
        while self._queue and self._running < self._max_parallel:
            task = self._tasks.get(self._queue.popleft())
            if task is None or task.status != TaskStatus.PENDING:
                continue
            self._promote(task)
            promoted.append(task)
        return promoted

    def _set_progress(self, task: _Task, value: float) -> None:
        if task.status.is_terminal:
            return
        task.progress = max(task.progress, min(1.0, max(0.0, value)))

    def _finish(
        self,
        task: _Task,
        status: TaskStatus,
        *,
        stage: str,
        error: str | None = None,
    ) -> None:
        if task.status.is_terminal:
            return
        if status == TaskStatus.COMPLETED:
            task.progress = 1.0
        task.status = status
        task.stage = stage
        task.ended_at = _now()
        task.error = error if status == TaskStatus.FAILED else None
        self._emit(task)
        self._cond.notify_all()

    def _emit(self, task: _Task, appended_output: str | None = None) -> None:
        if self._publish is None:
            return
        self._publish(
            ProgressEvent(
                task_id=task.id,
                status=task.status,
                progress=task.progress,
                stage=task.stage,
                appended_output=appended_output,
                error=task.error,
            )
        )


def submit_missing(
    registry: TaskRegistry,
    store: RecordStore,
    targets: Iterable[InstallTarget],
    *,
    force: bool = False,
) -> list[str]:
    """
    Submit targets that are not installed and not already in flight.

    Returns the ids of the new tasks (not started).
    """
    submitted = []
    for target in targets:
        if not force and store.is_installed(target.tool):
            logger.info("Skipping %s: already installed", target.tool)
            continue
        active = registry.find_active(target.tool)
        if active is not None:
            logger.info("Skipping %s: task %s already active", target.tool, active)
            continue
        submitted.append(registry.submit(target))
    return submitted
