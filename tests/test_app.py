"""Smoke tests for the console app, driven through Textual's pilot."""

import asyncio
import sys
from pathlib import Path

import pytest
from textual.widgets import DataTable

# Add scripts to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))

from gearbox.app import GearboxApp
from gearbox.config import Settings
from gearbox.installer import SimulatedInstaller
from gearbox.manifest import FileManifestStore
from gearbox.probes import Probe, passing, warning
from gearbox.providers import CheckStatus, InstallTarget, TaskStatus
from gearbox.services import Services, build_services
from gearbox.views.bundles import BundlesScreen
from gearbox.views.health import HealthScreen
from gearbox.views.monitor import MonitorScreen
from gearbox.views.tools import ToolsScreen

REPO_TOOLS = Path(__file__).parent.parent / "config" / "tools.json"


def quick_probes() -> list[Probe]:
    return [
        Probe("Memory", "system", lambda: passing("8.0 GB available")),
        Probe("Git", "system", lambda: warning("Git not installed", suggestions=("Install git",)), critical=True),
        Probe("Tool Updates", "tools", lambda: passing("Update check complete")),
    ]


@pytest.fixture
def services(tmp_path: Path) -> Services:
    settings = Settings(
        manifest_path=tmp_path / "manifest.json",
        tools_file=REPO_TOOLS,
        log_dir=tmp_path / "logs",
        poll_timeout=0.02,
        simulate=True,
    )
    installer = SimulatedInstaller(FileManifestStore(settings.manifest_path), speed=0)
    return build_services(settings, installer=installer, probes=quick_probes())


async def wait_for(pilot, condition, attempts: int = 100) -> bool:
    for _ in range(attempts):
        if condition():
            return True
        await pilot.pause(0.05)
    return condition()


class TestGearboxApp:
    """End-to-end flows through the running app."""

    def test_starts_on_tools_screen(self, services: Services) -> None:
        async def scenario() -> None:
            app = GearboxApp(services)
            async with app.run_test() as pilot:
                await pilot.pause()
                assert isinstance(app.screen, ToolsScreen)
                assert app.installed == {}

        asyncio.run(scenario())

    def test_install_selected_tool(self, services: Services) -> None:
        async def scenario() -> None:
            app = GearboxApp(services)
            async with app.run_test() as pilot:
                await pilot.pause()
                # cursor starts on the first catalog row (fd)
                await pilot.press("space")
                await pilot.press("i")

                assert await wait_for(pilot, lambda: "fd" in app.installed)
                assert isinstance(app.screen, MonitorScreen)
                records = services.registry.get_all()
                assert [r.target.tool for r in records] == ["fd"]
                assert records[0].status == TaskStatus.COMPLETED

        asyncio.run(scenario())

    def test_installed_tool_not_resubmitted(self, services: Services) -> None:
        async def scenario() -> None:
            app = GearboxApp(services)
            async with app.run_test() as pilot:
                await pilot.pause()
                app.install_tools(["fd"])
                assert await wait_for(pilot, lambda: "fd" in app.installed)

                assert app.install_tools(["fd"]) == []
                assert len(services.registry.get_all()) == 1

        asyncio.run(scenario())

    def test_health_screen_runs_checks(self, services: Services) -> None:
        async def scenario() -> None:
            app = GearboxApp(services)
            async with app.run_test() as pilot:
                await pilot.pause()
                await pilot.press("h")

                assert await wait_for(pilot, lambda: services.board.pending() == 0)
                assert isinstance(app.screen, HealthScreen)
                statuses = [c.status for c in services.board.probe_checks]
                assert statuses == [CheckStatus.PASSING, CheckStatus.WARNING, CheckStatus.PASSING]

                await pilot.press("r")
                assert await wait_for(pilot, lambda: services.board.pending() == 0)
                assert services.checks.generation == 2

        asyncio.run(scenario())

    def test_exit_cancels_pending_tasks(self, services: Services) -> None:
        async def scenario() -> str:
            app = GearboxApp(services)
            async with app.run_test() as pilot:
                await pilot.pause()
                task_id = services.registry.submit(InstallTarget("bat"))
                await pilot.press("q")
            return task_id

        task_id = asyncio.run(scenario())
        assert services.registry.get(task_id).status == TaskStatus.CANCELLED

    def test_search_filters_tool_table(self, services: Services) -> None:
        async def scenario() -> None:
            app = GearboxApp(services)
            async with app.run_test() as pilot:
                await pilot.pause()
                await pilot.press("slash", "r", "i", "p", "enter")
                await pilot.pause()

                table = app.screen.query_one(DataTable)
                assert table.row_count == 1
                await pilot.press("i")
                assert await wait_for(pilot, lambda: "ripgrep" in app.installed)

        asyncio.run(scenario())

    def test_install_bundle(self, services: Services) -> None:
        async def scenario() -> None:
            app = GearboxApp(services)
            async with app.run_test() as pilot:
                await pilot.pause()
                await pilot.press("b")
                assert isinstance(app.screen, BundlesScreen)
                # first bundle in the catalog is "essential"
                await pilot.press("i")

                essential = {"fd", "ripgrep", "bat", "eza"}
                assert await wait_for(pilot, lambda: essential <= set(app.installed))
                assert {r.target.tool for r in services.registry.get_all()} == essential

        asyncio.run(scenario())

    def test_uninstall_from_tools_screen(self, services: Services) -> None:
        async def scenario() -> None:
            app = GearboxApp(services)
            async with app.run_test() as pilot:
                await pilot.pause()
                app.install_tools(["fd"])
                assert await wait_for(pilot, lambda: "fd" in app.installed)

                await pilot.press("t")
                await pilot.pause()
                # cursor is on fd, the first catalog row
                await pilot.press("u")
                await pilot.pause()

                assert "fd" not in app.installed
                assert not services.store.is_installed("fd")
                backups = services.settings.manifest_path.parent / "backups"
                assert list(backups.glob("manifest-*-pre-uninstall.json"))

        asyncio.run(scenario())
