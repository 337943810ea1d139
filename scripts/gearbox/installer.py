"""
Installer collaborators.

ScriptInstaller drives the `install-<tool>.sh` build scripts.
SimulatedInstaller walks through timed stages without touching the system;
it backs the --simulate demo mode.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import time
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from pathlib import Path

from gearbox.catalog import ToolCatalog
from gearbox.errors import InstallerFailure
from gearbox.providers import (
    InstallationRecord,
    InstallStage,
    InstallTarget,
    RecordStore,
)

logger = logging.getLogger(__name__)

# Answers for interactive prompts in install scripts
AUTO_YES = "y\n" * 10

SIMULATED_STAGES: tuple[tuple[str, float, float], ...] = (
    ("Checking dependencies", 0.5, 0.1),
    ("Downloading source", 1.0, 0.3),
    ("Configuring build", 0.3, 0.4),
    ("Compiling", 2.0, 0.8),
    ("Installing", 0.5, 0.95),
    ("Verifying installation", 0.2, 1.0),
)


def _timestamp() -> str:
    return datetime.now().strftime("%H:%M:%S")


class ScriptInstaller:
    """Runs install scripts with bash and records successful installs."""

    def __init__(
        self,
        scripts_dir: Path,
        build_dir: Path,
        store: RecordStore,
        catalog: ToolCatalog | None = None,
        *,
        run_tests: bool = False,
    ) -> None:
        self._scripts_dir = Path(scripts_dir)
        self._build_dir = Path(build_dir)
        self._store = store
        self._catalog = catalog or ToolCatalog([])
        self._run_tests = run_tests

    def script_path(self, tool: str) -> Path:
        return self._scripts_dir / f"install-{tool}.sh"

    def command(self, target: InstallTarget) -> list[str]:
        args = ["bash", str(self.script_path(target.tool))]
        flag = self._catalog.build_flag(target.tool, target.build_type)
        if flag:
            args.append(flag)
        # Dependencies are handled separately; force avoids prompts
        args += ["--skip-deps", "--force"]
        if self._run_tests:
            args.append("--run-tests")
        return args

    def stages(self, target: InstallTarget) -> Sequence[InstallStage]:
        return (
            InstallStage(
                "Checking dependencies",
                0.1,
                lambda emit: self._check(target, emit),
            ),
            InstallStage(
                "Building from source",
                0.9,
                lambda emit: self._build(target, emit),
            ),
            InstallStage(
                "Recording installation",
                1.0,
                lambda emit: self._record(target, emit),
            ),
        )

    def _check(self, target: InstallTarget, emit: Callable[[str], None]) -> None:
        script = self.script_path(target.tool)
        if not script.is_file():
            raise InstallerFailure(target.tool, f"installation script not found: {script}")
        if shutil.which("bash") is None:
            raise InstallerFailure(target.tool, "bash is not available")
        try:
            self._build_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise InstallerFailure(target.tool, f"failed to create build directory: {e}") from e
        emit(f"==> Using {script.name} in {self._build_dir}")

    def _build(self, target: InstallTarget, emit: Callable[[str], None]) -> None:
        args = self.command(target)
        logger.debug("Running %s", " ".join(args))
        try:
            proc = subprocess.Popen(
                args,
                cwd=self._build_dir,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except OSError as e:
            raise InstallerFailure(target.tool, f"could not run install script: {e}") from e

        with proc:
            try:
                proc.stdin.write(AUTO_YES)
                proc.stdin.close()
            except BrokenPipeError:
                pass
            try:
                for line in proc.stdout:
                    emit(line.rstrip("\n"))
            except BaseException:
                # leaving the with block waits on the child
                proc.kill()
                raise
        if proc.returncode != 0:
            raise InstallerFailure(target.tool, f"install script exited with status {proc.returncode}")

    def _record(self, target: InstallTarget, emit: Callable[[str], None]) -> None:
        tool = self._catalog.get(target.tool)
        binary = tool.binary_name if tool and tool.binary_name else target.tool
        located = shutil.which(binary)
        record = InstallationRecord(
            method="source_build",
            installed_at=datetime.now(timezone.utc).isoformat(),
            build_type=target.build_type,
            binary_paths=(located,) if located else (),
            build_dir=str(self._build_dir / target.tool),
        )
        self._store.add_installation(target.tool, record)
        emit(f"✓ {target.tool} recorded in manifest")


class SimulatedInstaller:
    """Walks through realistic stages with sleeps instead of real builds."""

    def __init__(
        self,
        store: RecordStore | None = None,
        *,
        speed: float = 1.0,
        steps_per_stage: int = 4,
        fail_tools: frozenset[str] = frozenset(),
    ) -> None:
        self._store = store
        self._speed = max(0.0, speed)
        self._steps = max(1, steps_per_stage)
        self._fail_tools = fail_tools

    def stages(self, target: InstallTarget) -> Sequence[InstallStage]:
        stages = [
            InstallStage(name, progress, self._stage_runner(target, name, duration))
            for name, duration, progress in SIMULATED_STAGES
        ]
        if self._store is not None:
            stages.append(InstallStage("Recording installation", 1.0, lambda emit: self._record(target, emit)))
        return stages

    def _stage_runner(
        self, target: InstallTarget, name: str, duration: float
    ) -> Callable[[Callable[[str], None]], None]:
        def run(emit: Callable[[str], None]) -> None:
            emit(f"[{_timestamp()}] {name}...")
            if target.tool in self._fail_tools and name == "Compiling":
                raise InstallerFailure(target.tool, "simulated build failure")
            step = duration * self._speed / self._steps
            for i in range(1, self._steps + 1):
                if step:
                    time.sleep(step)
                emit(f"    {name}: {i * 100 // self._steps}%")

        return run

    def _record(self, target: InstallTarget, emit: Callable[[str], None]) -> None:
        record = InstallationRecord(
            method="simulated",
            installed_at=datetime.now(timezone.utc).isoformat(),
            build_type=target.build_type,
        )
        self._store.add_installation(target.tool, record)
        emit(f"[{_timestamp()}] ✅ Installation completed successfully!")
