"""Tests for the install task registry."""

import dataclasses
import sys
import threading
from pathlib import Path

import pytest

# Add scripts to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))

from gearbox.errors import AlreadyStarted, InstallerFailure, UnknownTask
from gearbox.providers import (
    InstallationRecord,
    InstallStage,
    InstallTarget,
    ProgressEvent,
    TaskStatus,
)
from gearbox.tasks import (
    PREPARING_STAGE,
    QUEUED_STAGE,
    WAITING_STAGE,
    TaskRegistry,
    clamp_parallel,
    parse_progress,
    submit_missing,
)

WAIT = 5.0


class GatedInstaller:
    """Installer whose stages block until the test releases them."""

    def __init__(self, stage_count: int = 2, fail_at: int | None = None, lines_per_stage: int = 1) -> None:
        self.stage_count = stage_count
        self.fail_at = fail_at
        self.lines_per_stage = lines_per_stage
        self.calls: list[tuple[str, int]] = []
        self._events: dict[tuple[str, str, int], threading.Event] = {}
        self._lock = threading.Lock()

    def _event(self, kind: str, tool: str, index: int) -> threading.Event:
        with self._lock:
            return self._events.setdefault((kind, tool, index), threading.Event())

    def entered(self, tool: str, index: int = 0) -> bool:
        return self._event("entered", tool, index).wait(WAIT)

    def release(self, tool: str, index: int = 0) -> None:
        self._event("release", tool, index).set()

    def release_all(self, tool: str) -> None:
        for i in range(self.stage_count):
            self.release(tool, i)

    def stages(self, target: InstallTarget) -> list[InstallStage]:
        n = self.stage_count
        return [
            InstallStage(f"Stage {i + 1}", (i + 1) / n, self._runner(target.tool, i))
            for i in range(n)
        ]

    def _runner(self, tool: str, index: int):
        def run(emit) -> None:
            with self._lock:
                self.calls.append((tool, index))
            self._event("entered", tool, index).set()
            for line in range(self.lines_per_stage):
                emit(f"{tool} stage {index + 1} line {line + 1}")
            assert self._event("release", tool, index).wait(WAIT)
            if self.fail_at == index:
                raise InstallerFailure(tool, "compiler exploded")

        return run


class InstantInstaller:
    """Installer whose stages finish immediately."""

    def __init__(self, lines: list[str] | None = None, error: Exception | None = None) -> None:
        self.lines = lines or []
        self.error = error

    def stages(self, target: InstallTarget) -> list[InstallStage]:
        def build(emit) -> None:
            for line in self.lines:
                emit(line)
            if self.error is not None:
                raise self.error

        return [
            InstallStage("Checking dependencies", 0.1, lambda emit: emit("deps ok")),
            InstallStage("Building", 0.9, build),
            InstallStage("Verifying", 1.0, lambda emit: None),
        ]


class EventLog:
    """Collects published events; the registry calls it under its lock."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []
        self.status: dict[str, TaskStatus] = {}
        self.max_running = 0

    def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)
        self.status[event.task_id] = event.status
        running = sum(1 for s in self.status.values() if s == TaskStatus.RUNNING)
        self.max_running = max(self.max_running, running)

    def for_task(self, task_id: str) -> list[ProgressEvent]:
        return [e for e in self.events if e.task_id == task_id]


@pytest.fixture
def log() -> EventLog:
    return EventLog()


@pytest.fixture
def gated() -> GatedInstaller:
    return GatedInstaller()


@pytest.fixture
def registry(gated: GatedInstaller, log: EventLog) -> TaskRegistry:
    reg = TaskRegistry(gated, max_parallel=2, publish=log)
    yield reg
    # never leave worker threads blocked on a gate
    for task in reg.get_all():
        gated.release_all(task.target.tool)


class TestHelpers:
    """Tests for module-level helpers."""

    def test_clamp_parallel(self) -> None:
        assert clamp_parallel(0) == 1
        assert clamp_parallel(3) == 3
        assert clamp_parallel(100) == 16

    def test_parse_progress_percentage(self) -> None:
        assert parse_progress("Compiling: 42%") == pytest.approx(0.42)
        assert parse_progress("[ 7.5%] Building CXX object") == pytest.approx(0.075)

    def test_parse_progress_ignores_other_lines(self) -> None:
        assert parse_progress("no progress here") is None
        assert parse_progress("used 250% cpu") is None


class TestSubmit:
    """Tests for TaskRegistry.submit."""

    def test_creates_pending_record(self, registry: TaskRegistry) -> None:
        task_id = registry.submit(InstallTarget("fd"))

        record = registry.get(task_id)
        assert record is not None
        assert record.status == TaskStatus.PENDING
        assert record.progress == 0.0
        assert record.stage == QUEUED_STAGE
        assert record.output == ()
        assert record.started_at is None
        assert record.ended_at is None
        assert record.error is None

    def test_ids_are_unique(self, registry: TaskRegistry) -> None:
        ids = {registry.submit(InstallTarget("fd")) for _ in range(50)}
        assert len(ids) == 50

    def test_does_not_start(self, registry: TaskRegistry, gated: GatedInstaller) -> None:
        registry.submit(InstallTarget("fd"))
        assert registry.running_count() == 0
        assert gated.calls == []

    def test_get_unknown_returns_none(self, registry: TaskRegistry) -> None:
        assert registry.get("task-missing") is None

    def test_get_all_in_submission_order(self, registry: TaskRegistry) -> None:
        for tool in ("fd", "bat", "eza"):
            registry.submit(InstallTarget(tool))
        assert [r.target.tool for r in registry.get_all()] == ["fd", "bat", "eza"]


class TestStart:
    """Tests for TaskRegistry.start."""

    def test_unknown_task(self, registry: TaskRegistry) -> None:
        with pytest.raises(UnknownTask):
            registry.start("task-missing")

    def test_runs_to_completion(self, log: EventLog) -> None:
        registry = TaskRegistry(InstantInstaller(), publish=log)
        task_id = registry.submit(InstallTarget("fd", "minimal"))

        assert registry.start(task_id) is True
        record = registry.wait(task_id, timeout=WAIT)

        assert record.status == TaskStatus.COMPLETED
        assert record.progress == 1.0
        assert record.started_at is not None
        assert record.ended_at is not None
        assert record.ended_at >= record.started_at
        assert record.error is None

    def test_start_twice_raises(self, registry: TaskRegistry, gated: GatedInstaller) -> None:
        task_id = registry.submit(InstallTarget("fd"))
        registry.start(task_id)

        with pytest.raises(AlreadyStarted):
            registry.start(task_id)

    def test_start_after_completion_raises(self) -> None:
        registry = TaskRegistry(InstantInstaller())
        task_id = registry.submit(InstallTarget("fd"))
        registry.start(task_id)
        registry.wait(task_id, timeout=WAIT)

        with pytest.raises(AlreadyStarted):
            registry.start(task_id)

    def test_running_status_visible_immediately(self, registry: TaskRegistry, gated: GatedInstaller) -> None:
        task_id = registry.submit(InstallTarget("fd"))
        registry.start(task_id)

        record = registry.get(task_id)
        assert record.status == TaskStatus.RUNNING
        assert record.started_at is not None
        assert gated.entered("fd")

    def test_emits_event_per_stage(self, log: EventLog) -> None:
        registry = TaskRegistry(InstantInstaller(), publish=log)
        task_id = registry.submit(InstallTarget("fd"))
        registry.start(task_id)
        registry.wait(task_id, timeout=WAIT)

        stage_events = [e.stage for e in log.for_task(task_id) if e.appended_output is None]
        assert stage_events == [
            PREPARING_STAGE,
            "Checking dependencies",
            "Building",
            "Verifying",
            "Completed",
        ]
        assert log.for_task(task_id)[-1].status == TaskStatus.COMPLETED


class TestConcurrencyBudget:
    """At most max_parallel tasks are running at any instant."""

    def test_excess_tasks_are_queued(self, registry: TaskRegistry, gated: GatedInstaller) -> None:
        ids = [registry.submit(InstallTarget(tool)) for tool in ("fd", "bat", "eza")]

        results = [registry.start(task_id) for task_id in ids]

        assert results == [True, True, False]
        assert registry.running_count() == 2
        queued = registry.get(ids[2])
        assert queued.status == TaskStatus.PENDING
        assert queued.stage == WAITING_STAGE

    def test_queued_task_promoted_when_slot_frees(
        self, registry: TaskRegistry, gated: GatedInstaller, log: EventLog
    ) -> None:
        ids = [registry.submit(InstallTarget(tool)) for tool in ("fd", "bat", "eza")]
        for task_id in ids:
            registry.start(task_id)
        assert gated.entered("fd")

        gated.release_all("fd")
        registry.wait(ids[0], timeout=WAIT)

        assert gated.entered("eza")
        assert registry.get(ids[2]).status == TaskStatus.RUNNING

        gated.release_all("bat")
        gated.release_all("eza")
        assert registry.wait_all(timeout=WAIT)
        assert all(r.status == TaskStatus.COMPLETED for r in registry.get_all())
        assert log.max_running <= 2

    def test_promotion_is_fifo(self, gated: GatedInstaller, log: EventLog) -> None:
        registry = TaskRegistry(gated, max_parallel=1, publish=log)
        tools = ("fd", "bat", "eza", "dust")
        ids = [registry.submit(InstallTarget(tool)) for tool in tools]
        for task_id in ids:
            registry.start(task_id)

        for tool in tools:
            assert gated.entered(tool)
            gated.release_all(tool)

        assert registry.wait_all(timeout=WAIT)
        assert [tool for tool, index in gated.calls if index == 0] == list(tools)
        assert log.max_running == 1

    def test_budget_holds_under_load(self, log: EventLog) -> None:
        registry = TaskRegistry(InstantInstaller(lines=["50%"] * 5), max_parallel=3, publish=log)
        ids = [registry.submit(InstallTarget(f"tool{i}")) for i in range(20)]
        for task_id in ids:
            registry.start(task_id)

        assert registry.wait_all(timeout=WAIT * 2)
        assert log.max_running <= 3
        assert registry.counts()[TaskStatus.COMPLETED] == 20


class TestCancel:
    """Tests for cooperative cancellation."""

    def test_unknown_task(self, registry: TaskRegistry) -> None:
        with pytest.raises(UnknownTask):
            registry.cancel("task-missing")

    def test_pending_task_cancelled_immediately(self, registry: TaskRegistry, gated: GatedInstaller) -> None:
        task_id = registry.submit(InstallTarget("fd"))

        registry.cancel(task_id)

        record = registry.get(task_id)
        assert record.status == TaskStatus.CANCELLED
        assert record.ended_at is not None
        assert gated.calls == []

    def test_running_task_stops_at_stage_boundary(self, registry: TaskRegistry, gated: GatedInstaller) -> None:
        task_id = registry.submit(InstallTarget("fd"))
        registry.start(task_id)
        assert gated.entered("fd", 0)

        registry.cancel(task_id)
        # the in-flight stage is not interrupted
        assert registry.get(task_id).status == TaskStatus.RUNNING

        gated.release("fd", 0)
        record = registry.wait(task_id, timeout=WAIT)

        assert record.status == TaskStatus.CANCELLED
        assert record.ended_at is not None
        assert record.error is None
        assert gated.calls == [("fd", 0)]

    def test_cancelled_stage_does_not_advance_progress(
        self, registry: TaskRegistry, gated: GatedInstaller, log: EventLog
    ) -> None:
        task_id = registry.submit(InstallTarget("fd"))
        registry.start(task_id)
        assert gated.entered("fd", 0)
        before = registry.get(task_id).progress

        registry.cancel(task_id)
        gated.release("fd", 0)
        record = registry.wait(task_id, timeout=WAIT)

        assert record.status == TaskStatus.CANCELLED
        assert record.progress == before
        assert log.for_task(task_id)[-1].progress == before

    def test_cancel_terminal_is_noop(self) -> None:
        registry = TaskRegistry(InstantInstaller())
        task_id = registry.submit(InstallTarget("fd"))
        registry.start(task_id)
        before = registry.wait(task_id, timeout=WAIT)

        registry.cancel(task_id)

        after = registry.get(task_id)
        assert after.status == TaskStatus.COMPLETED
        assert after.ended_at == before.ended_at

    def test_cancel_queued_task_never_runs(self, registry: TaskRegistry, gated: GatedInstaller) -> None:
        ids = [registry.submit(InstallTarget(tool)) for tool in ("fd", "bat", "eza")]
        for task_id in ids:
            registry.start(task_id)

        registry.cancel(ids[2])
        gated.release_all("fd")
        gated.release_all("bat")
        assert registry.wait_all(timeout=WAIT)

        assert registry.get(ids[2]).status == TaskStatus.CANCELLED
        assert all(tool != "eza" for tool, _ in gated.calls)

    def test_cancel_all(self, registry: TaskRegistry, gated: GatedInstaller) -> None:
        ids = [registry.submit(InstallTarget(tool)) for tool in ("fd", "bat", "eza")]
        registry.start(ids[0])
        assert gated.entered("fd")

        assert registry.cancel_all() == 3
        gated.release_all("fd")
        assert registry.wait_all(timeout=WAIT)

        assert all(r.status == TaskStatus.CANCELLED for r in registry.get_all())


class TestFailure:
    """Installer failures end only the affected task."""

    def test_failure_recorded(self, log: EventLog) -> None:
        gated = GatedInstaller(fail_at=1)
        registry = TaskRegistry(gated, publish=log)
        task_id = registry.submit(InstallTarget("fd"))
        registry.start(task_id)
        gated.release_all("fd")

        record = registry.wait(task_id, timeout=WAIT)

        assert record.status == TaskStatus.FAILED
        assert "compiler exploded" in record.error
        assert record.ended_at is not None
        assert log.for_task(task_id)[-1].error == record.error

    def test_failure_does_not_affect_other_tasks(self) -> None:
        gated = GatedInstaller(fail_at=0)
        registry = TaskRegistry(gated, max_parallel=2)
        failing = registry.submit(InstallTarget("fd"))
        registry.start(failing)
        gated.release_all("fd")
        registry.wait(failing, timeout=WAIT)

        gated.fail_at = None
        healthy = registry.submit(InstallTarget("bat"))
        registry.start(healthy)
        gated.release_all("bat")

        assert registry.wait(healthy, timeout=WAIT).status == TaskStatus.COMPLETED
        assert registry.get(failing).status == TaskStatus.FAILED

    def test_unexpected_exception_fails_task(self) -> None:
        registry = TaskRegistry(InstantInstaller(error=RuntimeError("disk on fire")))
        task_id = registry.submit(InstallTarget("fd"))
        registry.start(task_id)

        record = registry.wait(task_id, timeout=WAIT)

        assert record.status == TaskStatus.FAILED
        assert record.error == "disk on fire"
        assert registry.running_count() == 0


class TestOutputAndProgress:
    """Bounded output and monotone progress."""

    def test_output_keeps_most_recent_lines(self) -> None:
        lines = [f"line {i}" for i in range(1, 16)]
        registry = TaskRegistry(InstantInstaller(lines=lines), output_limit=10)
        task_id = registry.submit(InstallTarget("fd"))
        registry.start(task_id)

        record = registry.wait(task_id, timeout=WAIT)

        assert len(record.output) == 10
        assert record.output == tuple(lines[-10:])

    def test_progress_never_decreases(self, log: EventLog) -> None:
        lines = ["10%", "60%", "30%", "90%", "100%"]
        registry = TaskRegistry(InstantInstaller(lines=lines), publish=log)
        task_id = registry.submit(InstallTarget("fd"))
        registry.start(task_id)
        registry.wait(task_id, timeout=WAIT)

        progress = [e.progress for e in log.for_task(task_id)]
        assert progress == sorted(progress)
        assert progress[-1] == 1.0

    def test_percentages_map_into_stage_range(self, log: EventLog) -> None:
        registry = TaskRegistry(InstantInstaller(lines=["50%"]), publish=log)
        task_id = registry.submit(InstallTarget("fd"))
        registry.start(task_id)
        registry.wait(task_id, timeout=WAIT)

        line_event = next(e for e in log.for_task(task_id) if e.appended_output == "50%")
        # "Building" spans 0.1 .. 0.9
        assert line_event.progress == pytest.approx(0.5)

    def test_output_lines_published(self, registry: TaskRegistry, gated: GatedInstaller, log: EventLog) -> None:
        task_id = registry.submit(InstallTarget("fd"))
        registry.start(task_id)
        gated.release_all("fd")
        registry.wait(task_id, timeout=WAIT)

        appended = [e.appended_output for e in log.for_task(task_id) if e.appended_output]
        assert appended == ["fd stage 1 line 1", "fd stage 2 line 1"]


class TestSnapshots:
    """Readers only see copies."""

    def test_records_are_immutable(self, registry: TaskRegistry) -> None:
        record = registry.get(registry.submit(InstallTarget("fd")))
        with pytest.raises(dataclasses.FrozenInstanceError):
            record.status = TaskStatus.COMPLETED

    def test_snapshot_not_updated_in_place(self, registry: TaskRegistry, gated: GatedInstaller) -> None:
        task_id = registry.submit(InstallTarget("fd"))
        before = registry.get(task_id)
        registry.start(task_id)
        assert gated.entered("fd")

        assert before.status == TaskStatus.PENDING
        assert registry.get(task_id).status == TaskStatus.RUNNING

    def test_prune_removes_only_terminal(self, registry: TaskRegistry, gated: GatedInstaller) -> None:
        done = registry.submit(InstallTarget("fd"))
        registry.cancel(done)
        running = registry.submit(InstallTarget("bat"))
        registry.start(running)
        pending = registry.submit(InstallTarget("eza"))

        assert registry.prune() == 1
        assert registry.get(done) is None
        assert registry.get(running) is not None
        assert registry.get(pending) is not None


class FakeStore:
    def __init__(self, installed: set[str]) -> None:
        self.installed = installed

    def is_installed(self, tool: str) -> bool:
        return tool in self.installed

    def installations(self) -> dict[str, InstallationRecord]:
        return {}

    def add_installation(self, tool: str, record: InstallationRecord) -> None:
        self.installed.add(tool)


class TestSubmitMissing:
    """Tests for submit_missing."""

    def test_skips_installed_and_active(self, registry: TaskRegistry) -> None:
        active = registry.submit(InstallTarget("bat"))
        store = FakeStore({"fd"})

        ids = submit_missing(registry, store, [InstallTarget(t) for t in ("fd", "bat", "eza")])

        assert len(ids) == 1
        assert registry.get(ids[0]).target.tool == "eza"
        assert active not in ids

    def test_force_reinstalls(self, registry: TaskRegistry) -> None:
        store = FakeStore({"fd"})

        ids = submit_missing(registry, store, [InstallTarget("fd")], force=True)

        assert len(ids) == 1
