#!/usr/bin/env python3
"""
Gearbox Console

Install and monitor command-line developer tools.

Usage:
    monitor.py                     Launch the interactive console
    monitor.py --once              Print tools, installs and health checks, then exit
    monitor.py --json              Same as --once, as JSON
    monitor.py --install fd bat    Install tools without the console
    monitor.py --install essential Install every tool in a bundle
    monitor.py --uninstall fd      Remove tools from the installation manifest
    monitor.py --list-bundles      List tool bundles

Requirements:
    pip install textual jsonschema
"""

import argparse
import json
import logging
import sys
from pathlib import Path

SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

from gearbox.config import load_settings  # noqa: E402
from gearbox.errors import GearboxError  # noqa: E402
from gearbox.logging_setup import setup_logging  # noqa: E402
from gearbox.manifest import uninstall_tools  # noqa: E402
from gearbox.messages import CheckCompleted, ContinueChecks, TaskUpdated  # noqa: E402
from gearbox.providers import InstallTarget, TaskStatus  # noqa: E402
from gearbox.report import STATUS_ICONS, render_report, report_json  # noqa: E402
from gearbox.runtime import SyncEffectRunner  # noqa: E402
from gearbox.services import Services, build_services  # noqa: E402
from gearbox.tasks import submit_missing  # noqa: E402

logger = logging.getLogger("monitor")


def run_checks_headless(services: Services) -> None:
    """Run the whole check chain on this thread, one probe at a time."""
    checks, board = services.checks, services.board

    def dispatch(message: object) -> None:
        if isinstance(message, CheckCompleted):
            if checks.is_current(message.generation):
                board.apply(message.update)
        elif isinstance(message, ContinueChecks):
            runner.run(checks.handle_continue(message))

    runner = SyncEffectRunner(dispatch)
    board.reset()
    runner.run(checks.restart())


def print_report(services: Services, as_json: bool, with_checks: bool = True) -> int:
    """Print catalog, install and health status and exit."""
    if with_checks:
        run_checks_headless(services)
    checks = services.board.all_checks() if with_checks else []
    installed = services.store.installations()
    records = services.registry.get_all()

    if as_json:
        print(json.dumps(report_json(services.catalog, installed, records, checks), indent=2))
    else:
        print(render_report(services.catalog, installed, records, checks))
    return 0


def install_headless(services: Services, tools: list[str], force: bool = False) -> int:
    """Install tools, printing stage changes, then a summary."""
    catalog, registry, bridge = services.catalog, services.registry, services.bridge

    tools = catalog.expand(tools)
    unknown = [t for t in tools if t not in catalog]
    if unknown and len(catalog):
        print(f"Unknown tool(s): {', '.join(unknown)}", file=sys.stderr)
        print(f"Available: {', '.join(catalog.names())}", file=sys.stderr)
        return 2

    targets = [InstallTarget(t, services.settings.default_build_type) for t in tools]
    task_ids = submit_missing(registry, services.store, targets, force=force)
    if not task_ids:
        print("Nothing to install: all requested tools are already installed.")
        return 0

    tool_of = {tid: registry.get(tid).target.tool for tid in task_ids}
    for task_id in task_ids:
        registry.start(task_id)
    print(f"Installing {len(task_ids)} tool(s), {registry.max_parallel} at a time")

    last_seen: dict[str, tuple[TaskStatus, str]] = {}
    try:
        while True:
            message = bridge.poll()
            if isinstance(message, TaskUpdated):
                event = message.event
                state = (event.status, event.stage)
                if event.appended_output is None and last_seen.get(event.task_id) != state:
                    last_seen[event.task_id] = state
                    print(f"  {STATUS_ICONS[event.status]} {tool_of[event.task_id]}: {event.stage} ({event.progress:.0%})")
            elif registry.wait_all(timeout=0):
                break
    except KeyboardInterrupt:
        print("\nCancelling, waiting for running stages to finish...")
        registry.cancel_all()
        registry.wait_all()

    print()
    print("Summary:")
    failures = 0
    for task_id in task_ids:
        record = registry.get(task_id)
        line = f"  {STATUS_ICONS[record.status]} {record.target.tool}: {record.status.value}"
        if record.status == TaskStatus.FAILED:
            line += f" ({record.error})"
        if record.status != TaskStatus.COMPLETED:
            failures += 1
        print(line)
    return 1 if failures else 0


def uninstall_headless(services: Services, tools: list[str]) -> int:
    """Remove tools (or bundles) from the manifest after backing it up."""
    tools = services.catalog.expand(tools)
    removed, backup_path = uninstall_tools(services.store, tools)
    if not removed:
        print("Nothing to uninstall: none of the requested tools are recorded as installed.")
        return 0

    print(f"Manifest backed up to {backup_path}")
    for name, record in removed.items():
        print(f"  ✓ {name}: removed")
        for binary in record.binary_paths:
            print(f"      left in place: {binary}")
    skipped = [t for t in tools if t not in removed]
    if skipped:
        print(f"Not installed: {', '.join(skipped)}")
    return 0


def list_bundles(services: Services) -> int:
    bundles = services.catalog.bundles()
    if not bundles:
        print("No bundles in catalog.")
        return 0
    width = max(len(b.name) for b in bundles)
    for bundle in bundles:
        tools = services.catalog.expand_bundle(bundle.name)
        print(f"{bundle.name:<{width}}  {bundle.description} ({len(tools)} tools)")
        print(f"{'':<{width}}  {', '.join(tools)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Gearbox Console",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--once",
        action="store_true",
        help="Print status once and exit (no console)",
    )
    mode.add_argument(
        "--json",
        action="store_true",
        help="Print status as JSON and exit",
    )
    mode.add_argument(
        "--install",
        nargs="+",
        metavar="TOOL",
        help="Install the given tools or bundles without the console",
    )
    mode.add_argument(
        "--uninstall",
        nargs="+",
        metavar="TOOL",
        help="Remove the given tools or bundles from the manifest (a backup is kept)",
    )
    mode.add_argument(
        "--list-bundles",
        action="store_true",
        help="List tool bundles and exit",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="With --install, reinstall tools that are already installed",
    )
    parser.add_argument(
        "--skip-checks",
        action="store_true",
        help="With --once/--json, do not run health checks",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config.json (default: ~/.gearbox/config.json)",
    )
    parser.add_argument(
        "--max-parallel",
        type=int,
        help="Maximum number of installs running at once",
    )
    parser.add_argument(
        "--build-type",
        help="Build variant passed to install scripts (e.g. minimal, standard, maximum)",
    )
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Use the simulated installer instead of running install scripts",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Console and file log level",
    )
    return parser


def main() -> int:
    args = build_parser().parse_args()

    overrides = {
        "max_parallel": args.max_parallel,
        "default_build_type": args.build_type,
        "simulate": True if args.simulate else None,
        "log_level": args.log_level,
    }
    try:
        settings = load_settings(args.config, overrides)
    except GearboxError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    headless = bool(args.once or args.json or args.install or args.uninstall or args.list_bundles)
    log_file = setup_logging(log_dir=settings.log_dir, level=settings.log_level, console=headless)
    logger.debug("Logging to %s", log_file)

    try:
        services = build_services(settings)
        if args.install:
            return install_headless(services, args.install, force=args.force)
        if args.uninstall:
            return uninstall_headless(services, args.uninstall)
        if args.list_bundles:
            return list_bundles(services)
        if args.once or args.json:
            return print_report(services, as_json=args.json, with_checks=not args.skip_checks)
    except GearboxError as e:
        logger.error("%s", e)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    from gearbox.app import run

    run(services)
    return 0


if __name__ == "__main__":
    sys.exit(main())
