"""
Data types and collaborator protocols.

Protocols define the interface; implementations can be swapped
for testing or alternative back ends.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Protocol


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
)


class CheckStatus(str, Enum):
    PENDING = "pending"
    PASSING = "passing"
    WARNING = "warning"
    FAILING = "failing"


@dataclass(frozen=True)
class InstallTarget:
    """What to install: a tool name plus the build variant to use."""

    tool: str
    build_type: str = "standard"

    def __str__(self) -> str:
        return f"{self.tool} ({self.build_type})"


@dataclass(frozen=True)
class TaskRecord:
    """Immutable snapshot of one install task."""

    id: str
    target: InstallTarget
    status: TaskStatus
    progress: float
    stage: str
    output: tuple[str, ...]
    submitted_at: datetime
    started_at: datetime | None = None
    ended_at: datetime | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None:
            return None
        end = self.ended_at or datetime.now(self.started_at.tzinfo)
        return (end - self.started_at).total_seconds()


@dataclass(frozen=True)
class ProgressEvent:
    """Fire-once notification that a task's state changed."""

    task_id: str
    status: TaskStatus
    progress: float
    stage: str
    appended_output: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class CheckUpdate:
    """Result of one diagnostic probe."""

    check_index: int
    status: CheckStatus
    message: str
    details: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()


@dataclass
class HealthCheck:
    """A row on the health screen; probe-backed rows are updated in place."""

    name: str
    category: str
    status: CheckStatus
    message: str
    details: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    critical: bool = False


@dataclass(frozen=True)
class InstallStage:
    """
    One step of an installation.

    `progress` is the fraction reached once the stage finishes. `run`
    receives a callable that appends a line to the task output.
    """

    name: str
    progress: float
    run: Callable[[Callable[[str], None]], None]


@dataclass(frozen=True)
class InstallationRecord:
    """A completed installation as stored in the manifest."""

    method: str
    installed_at: str
    version: str = ""
    build_type: str = "standard"
    binary_paths: tuple[str, ...] = ()
    build_dir: str = ""
    user_requested: bool = True


@dataclass(frozen=True)
class ToolInfo:
    """A tool entry from the catalog."""

    name: str
    description: str
    category: str
    language: str
    binary_name: str
    build_types: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class BundleInfo:
    """A named group of tools; may include other bundles."""

    name: str
    description: str
    category: str
    tools: tuple[str, ...] = ()
    includes_bundles: tuple[str, ...] = ()


class Installer(Protocol):
    """Protocol for the collaborator that performs installations."""

    def stages(self, target: InstallTarget) -> Sequence[InstallStage]:
        """Return the ordered stages that install `target`."""
        ...


class RecordStore(Protocol):
    """Protocol for the durable record of installed tools."""

    def is_installed(self, tool: str) -> bool:
        """Check whether a tool has an installation record."""
        ...

    def installations(self) -> dict[str, InstallationRecord]:
        """Return all installation records keyed by tool name."""
        ...

    def add_installation(self, tool: str, record: InstallationRecord) -> None:
        """Record a completed installation."""
        ...
