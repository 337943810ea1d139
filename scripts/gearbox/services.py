"""Builds the collaborators shared by the console app and the CLI."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from gearbox.bridge import UpdateBridge
from gearbox.catalog import ToolCatalog
from gearbox.checks import CheckBoard, SequentialCheckRunner
from gearbox.config import Settings
from gearbox.installer import ScriptInstaller, SimulatedInstaller
from gearbox.manifest import FileManifestStore
from gearbox.probes import Probe, default_probes, static_checks
from gearbox.providers import Installer
from gearbox.tasks import TaskRegistry

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    catalog: ToolCatalog
    store: FileManifestStore
    bridge: UpdateBridge
    registry: TaskRegistry
    checks: SequentialCheckRunner
    board: CheckBoard


def build_installer(settings: Settings, store: FileManifestStore, catalog: ToolCatalog) -> Installer:
    if settings.simulate:
        logger.info("Using simulated installer")
        return SimulatedInstaller(store)
    return ScriptInstaller(settings.scripts_dir, settings.build_dir, store, catalog)


def build_services(
    settings: Settings,
    *,
    installer: Installer | None = None,
    probes: Sequence[Probe] | None = None,
) -> Services:
    catalog = ToolCatalog.load(settings.tools_file)
    store = FileManifestStore(settings.manifest_path)
    bridge = UpdateBridge(settings.poll_timeout, settings.bridge_capacity)
    registry = TaskRegistry(
        installer or build_installer(settings, store, catalog),
        max_parallel=settings.max_parallel,
        output_limit=settings.output_limit,
        publish=bridge.publish,
    )
    probes = list(default_probes(store) if probes is None else probes)
    checks = SequentialCheckRunner(probes, settings.probe_timeout)
    board = CheckBoard(probes, static_checks())
    return Services(settings, catalog, store, bridge, registry, checks, board)
