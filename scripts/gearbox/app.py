"""
Gearbox console application.

The app never blocks its event loop: installs run on registry worker
threads, and everything that waits (bridge polling, probes, check chain
continuations) runs as an effect on a Textual thread worker. Results come
back as RuntimeMessage and are handled in on_runtime_message.
"""

from __future__ import annotations

import logging

from textual.app import App
from textual.binding import Binding

from gearbox.errors import ConfigError, GearboxError, ManifestError
from gearbox.manifest import uninstall_tools
from gearbox.messages import CheckCompleted, ContinueChecks, NoUpdate, TaskUpdated, batch
from gearbox.providers import InstallationRecord, InstallTarget, ProgressEvent, TaskStatus
from gearbox.runtime import EffectRunner, RuntimeMessage, ThreadEffectRunner
from gearbox.services import Services
from gearbox.tasks import submit_missing
from gearbox.views.bundles import BundlesScreen
from gearbox.views.health import HealthScreen
from gearbox.views.monitor import MonitorScreen
from gearbox.views.tools import ToolsScreen

logger = logging.getLogger(__name__)


class GearboxApp(App):
    """Interactive tool installer."""

    TITLE = "Gearbox"
    SUB_TITLE = "Tool Installer"

    CSS = """
    Screen {
        background: $surface;
    }
    """

    SCREENS = {
        "tools": ToolsScreen,
        "bundles": BundlesScreen,
        "monitor": MonitorScreen,
        "health": HealthScreen,
    }

    BINDINGS = [
        Binding("q", "quit", "Quit", show=True),
        Binding("t", "switch_screen('tools')", "Tools", show=True),
        Binding("b", "switch_screen('bundles')", "Bundles", show=True),
        Binding("m", "switch_screen('monitor')", "Installs", show=True),
        Binding("h", "switch_screen('health')", "Health", show=True),
    ]

    def __init__(
        self,
        services: Services,
        effects: EffectRunner | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.services = services
        self.settings = services.settings
        self.catalog = services.catalog
        self.store = services.store
        self.bridge = services.bridge
        self.registry = services.registry
        self.checks = services.checks
        self.board = services.board
        self.effects = effects or ThreadEffectRunner(self)
        self.installed: dict[str, InstallationRecord] = {}
        self._polling = False

    def on_mount(self) -> None:
        self.reload_installed()
        self.push_screen("tools")
        self._polling = True
        self.effects.run([self.bridge.watch_next()])

    def on_unmount(self) -> None:
        self._polling = False
        cancelled = self.registry.cancel_all()
        if cancelled:
            logger.info("Cancelled %d unfinished install(s) on exit", cancelled)

    # ------------------------------------------------------------------
    # Message loop
    # ------------------------------------------------------------------

    def on_runtime_message(self, message: RuntimeMessage) -> None:
        payload = message.payload
        if isinstance(payload, TaskUpdated):
            self._task_updated(payload.event)
            self._watch_bridge()
        elif isinstance(payload, NoUpdate):
            self._watch_bridge()
        elif isinstance(payload, CheckCompleted):
            if self.checks.is_current(payload.generation) and self.board.apply(payload.update):
                self._refresh_health()
        elif isinstance(payload, ContinueChecks):
            self.effects.run(self.checks.handle_continue(payload))
        else:
            logger.warning("Unhandled runtime message: %r", payload)

    def _watch_bridge(self) -> None:
        if self._polling:
            self.effects.run([self.bridge.watch_next()])

    def _task_updated(self, event: ProgressEvent) -> None:
        if event.status.is_terminal:
            record = self.registry.get(event.task_id)
            tool = record.target.tool if record else event.task_id
            if event.status == TaskStatus.COMPLETED:
                self.reload_installed()
                self.notify(f"{tool} installed")
            elif event.status == TaskStatus.FAILED:
                self.notify(f"{tool} failed: {event.error}", severity="error", timeout=8)

        screen = self.screen
        if isinstance(screen, MonitorScreen):
            screen.refresh_tasks()
        elif isinstance(screen, ToolsScreen) and event.appended_output is None:
            # output lines do not change anything the catalog shows
            screen.refresh_tools()
        elif isinstance(screen, BundlesScreen) and event.status.is_terminal:
            screen.refresh_bundles()

    def _refresh_health(self) -> None:
        if isinstance(self.screen, HealthScreen):
            self.screen.refresh_checks()

    # ------------------------------------------------------------------
    # Commands used by the screens
    # ------------------------------------------------------------------

    def reload_installed(self) -> None:
        try:
            self.installed = self.store.installations()
        except ManifestError as e:
            logger.error("Could not load manifest: %s", e)
            self.notify(str(e), severity="error")

    def install_tools(self, names: list[str]) -> list[str]:
        """Submit and start installs for tools not installed or in flight."""
        targets = [InstallTarget(name, self.settings.default_build_type) for name in names]
        try:
            task_ids = submit_missing(self.registry, self.store, targets)
            queued = sum(1 for task_id in task_ids if not self.registry.start(task_id))
        except GearboxError as e:
            logger.error("Could not start installs: %s", e)
            self.notify(str(e), severity="error")
            return []

        if not task_ids:
            self.notify("Nothing to install: already installed or in progress", severity="warning")
            return []
        message = f"Started {len(task_ids) - queued} install(s)"
        if queued:
            message += f", {queued} queued"
        self.notify(message)
        self.switch_screen("monitor")
        return task_ids

    def install_bundle(self, name: str) -> list[str]:
        """Install every tool in a bundle that is not installed yet."""
        try:
            tools = self.catalog.expand_bundle(name)
        except ConfigError as e:
            logger.error("Could not expand bundle %s: %s", name, e)
            self.notify(str(e), severity="error")
            return []
        return self.install_tools(tools)

    def uninstall_tools(self, names: list[str]) -> list[str]:
        """Drop manifest records for tools with no install in flight."""
        busy = [name for name in names if self.registry.find_active(name) is not None]
        if busy:
            self.notify(f"Still installing: {', '.join(busy)}", severity="warning")
        names = [name for name in names if name not in busy]
        try:
            removed, backup_path = uninstall_tools(self.store, names)
        except ManifestError as e:
            logger.error("Could not uninstall %s: %s", ", ".join(names), e)
            self.notify(str(e), severity="error")
            return []

        self.reload_installed()
        if removed:
            self.notify(f"Uninstalled {', '.join(removed)} (manifest backup: {backup_path.name})")
        if isinstance(self.screen, ToolsScreen):
            self.screen.refresh_tools()
        return list(removed)

    def run_health_checks(self) -> None:
        """Reset every probe row and start a fresh check chain."""
        self.board.reset()
        self.effects.run(batch(self.checks.restart()))
        self._refresh_health()


def run(services: Services) -> None:
    """Run the console app and cancel anything still in flight afterwards."""
    app = GearboxApp(services)
    try:
        app.run()
    finally:
        services.registry.cancel_all()
