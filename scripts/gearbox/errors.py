"""Exception types shared by the registry, installers and stores."""


class GearboxError(Exception):
    """Base class for all gearbox errors."""


class UnknownTask(GearboxError):
    """An operation referenced a task id the registry does not know."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class InvalidTransition(GearboxError):
    """An operation would violate the task state machine."""

    def __init__(self, task_id: str, status: str, action: str) -> None:
        super().__init__(f"Cannot {action} task {task_id}: status is {status}")
        self.task_id = task_id
        self.status = status
        self.action = action


class AlreadyStarted(InvalidTransition):
    """start() was called on a task that is no longer waiting to start."""

    def __init__(self, task_id: str, status: str) -> None:
        super().__init__(task_id, status, "start")


class InstallerFailure(GearboxError):
    """The installer collaborator failed while running a stage."""

    def __init__(self, tool: str, message: str) -> None:
        super().__init__(f"{tool}: {message}")
        self.tool = tool


class CollaboratorUnavailable(GearboxError):
    """A collaborator (probe, record store) could not be used."""


class ConfigError(GearboxError):
    """Configuration or catalog file is missing required structure."""


class ManifestError(GearboxError):
    """The installation manifest could not be read or written."""
