"""
Diagnostic probes for the health screen.

Each probe is a blocking function returning a CheckUpdate; the sequential
check runner decides when and where it runs. Probes never raise for an
expected problem on the host, they report it as a warning instead.
"""

from __future__ import annotations

import os
import platform
import shutil
import socket
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from pathlib import Path

from gearbox.errors import CollaboratorUnavailable, ManifestError
from gearbox.providers import CheckStatus, CheckUpdate, HealthCheck, RecordStore

CHECKING = "Checking..."

MEMINFO_PATH = Path("/proc/meminfo")
OS_RELEASE_PATH = Path("/etc/os-release")

BUILD_TOOLS = ("gcc", "make", "cmake")


def passing(message: str, details=(), suggestions=()) -> CheckUpdate:
    return CheckUpdate(0, CheckStatus.PASSING, message, tuple(details), tuple(suggestions))


def warning(message: str, details=(), suggestions=()) -> CheckUpdate:
    return CheckUpdate(0, CheckStatus.WARNING, message, tuple(details), tuple(suggestions))


def failing(message: str, details=(), suggestions=()) -> CheckUpdate:
    return CheckUpdate(0, CheckStatus.FAILING, message, tuple(details), tuple(suggestions))


@dataclass(frozen=True)
class Probe:
    name: str
    category: str
    run: Callable[[], CheckUpdate]
    pending_message: str = CHECKING
    critical: bool = False


def _command_output(args: Sequence[str], timeout: float = 10.0) -> str | None:
    """First line of a command's stdout, or None if it could not run."""
    try:
        result = subprocess.run(
            list(args), capture_output=True, text=True, timeout=timeout, check=True
        )
    except (OSError, subprocess.SubprocessError):
        return None
    lines = result.stdout.strip().splitlines()
    return lines[0].strip() if lines else ""


# ---------------------------------------------------------------------------
# Static system information
# ---------------------------------------------------------------------------


def linux_distribution(os_release: Path = OS_RELEASE_PATH) -> str:
    """PRETTY_NAME from os-release, falling back to NAME VERSION or the platform."""
    try:
        text = os_release.read_text()
    except OSError:
        return f"{platform.system()} {platform.machine()}"

    fields = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            fields[key.strip()] = value.strip().strip('"')

    if fields.get("PRETTY_NAME"):
        return fields["PRETTY_NAME"]
    name, version = fields.get("NAME", ""), fields.get("VERSION", "")
    if name and version:
        return f"{name} {version}"
    return name or f"{platform.system()} {platform.machine()}"


def static_checks() -> list[HealthCheck]:
    return [
        HealthCheck(
            name="Operating System",
            category="system",
            status=CheckStatus.PASSING,
            message=linux_distribution(),
            details=[
                f"Architecture: {platform.machine()}",
                f"Python version: {platform.python_version()}",
            ],
        ),
        HealthCheck(
            name="CPU Cores",
            category="system",
            status=CheckStatus.PASSING,
            message=f"{os.cpu_count() or 1} cores available",
        ),
    ]


# ---------------------------------------------------------------------------
# Probes
# ---------------------------------------------------------------------------


def check_memory(meminfo: Path = MEMINFO_PATH) -> CheckUpdate:
    try:
        text = meminfo.read_text()
    except OSError:
        return warning("Could not read memory info")

    values = {}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[0] in ("MemTotal:", "MemAvailable:"):
            try:
                values[parts[0]] = int(parts[1])
            except ValueError:
                pass

    total_kb = values.get("MemTotal:", 0)
    available_kb = values.get("MemAvailable:", 0)
    if total_kb <= 0 or available_kb <= 0:
        return warning("Could not parse memory info")

    total_gb = total_kb / 1024 / 1024
    available_gb = available_kb / 1024 / 1024
    used_gb = total_gb - available_gb
    usage = used_gb / total_gb * 100
    details = (
        f"Total: {total_gb:.1f} GB",
        f"Used: {used_gb:.1f} GB ({usage:.0f}%)",
        f"Available: {available_gb:.1f} GB",
    )
    message = f"{available_gb:.1f} GB available"
    if usage > 90:
        return warning(message, details, ("Close memory-heavy programs before building",))
    return passing(message, details)


def check_disk_space(path: Path | str = ".") -> CheckUpdate:
    try:
        usage = shutil.disk_usage(path)
    except OSError:
        return warning("Could not check disk space")

    used_pct = usage.used * 100 // usage.total if usage.total else 0
    free_gb = usage.free / 1024**3
    details = (
        f"Path: {Path(path).resolve()}",
        f"Size: {usage.total / 1024**3:.1f} GB",
        f"Used: {usage.used / 1024**3:.1f} GB",
        f"Available: {free_gb:.1f} GB",
    )
    if used_pct > 90:
        return warning(
            f"Low disk space ({used_pct}% used)",
            details,
            ("Consider cleaning build cache", "Remove unused tools or files"),
        )
    return passing(f"{free_gb:.1f} GB available ({used_pct}% used)", details)


def check_internet(host: str = "github.com", port: int = 443, timeout: float = 3.0) -> CheckUpdate:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            pass
    except OSError:
        return warning(
            "No internet connection",
            suggestions=("Check network connection", "Some installs may fail without internet"),
        )
    return passing("Connected", (f"Reached {host}:{port}",))


def check_build_tools(tools: Sequence[str] = BUILD_TOOLS) -> CheckUpdate:
    details = []
    missing = []
    for tool in tools:
        version = _command_output([tool, "--version"])
        if version is None:
            missing.append(tool)
        else:
            details.append(version[:50] + "..." if len(version) > 50 else version)

    if missing:
        return warning(
            f"Missing tools: {', '.join(missing)}",
            details,
            (
                "Install build essentials: sudo apt install build-essential",
                "Install cmake: sudo apt install cmake",
            ),
        )
    return passing("All required build tools installed", details)


def check_git() -> CheckUpdate:
    version = _command_output(["git", "--version"])
    if version is None:
        return warning("Git not installed", suggestions=("Install git: sudo apt install git",))
    return passing(version)


def check_path(path_value: str | None = None) -> CheckUpdate:
    if path_value is None:
        path_value = os.environ.get("PATH", "")
    dirs = path_value.split(os.pathsep)

    details = []
    has_local = "/usr/local/bin" in dirs
    has_cargo = any(".cargo/bin" in d for d in dirs)
    if has_local:
        details.append("/usr/local/bin is in PATH")
    if has_cargo:
        details.append("~/.cargo/bin is in PATH")

    if has_local and has_cargo:
        return passing("Correctly configured", details)
    if has_local:
        return warning(
            "Missing ~/.cargo/bin in PATH",
            details,
            ("Add ~/.cargo/bin to PATH for Rust tools",),
        )
    return warning(
        "PATH may need configuration",
        details,
        ("Ensure /usr/local/bin is in PATH", "Add ~/.cargo/bin to PATH for Rust tools"),
    )


def check_rust_toolchain() -> CheckUpdate:
    rustc = _command_output(["rustc", "--version"])
    if rustc is None:
        return warning(
            "Rust not installed",
            suggestions=("Install Rust: curl --proto '=https' --tlsv1.2 -sSf https://sh.rustup.rs | sh",),
        )
    details = [rustc]
    for extra in (["cargo", "--version"], ["rustup", "--version"]):
        out = _command_output(extra)
        if out:
            details.append(out)
    return passing(rustc, details)


def check_go_toolchain() -> CheckUpdate:
    version = _command_output(["go", "version"])
    if version is None:
        return warning("Go not installed", suggestions=("Install Go from https://go.dev/dl/",))
    details = [f"{var}: {os.environ[var]}" for var in ("GOPATH", "GOROOT") if os.environ.get(var)]
    return passing(version, details)


def check_tool_updates(store: RecordStore | None = None) -> CheckUpdate:
    if store is None:
        raise CollaboratorUnavailable("installation manifest not available")
    try:
        installed = store.installations()
    except ManifestError as e:
        raise CollaboratorUnavailable(str(e)) from e
    return passing(
        "Update check complete",
        (
            f"Last checked: {datetime.now().strftime('%H:%M:%S')}",
            f"{len(installed)} tool(s) recorded in the manifest",
            "Reinstall a tool from the Tools screen to update it",
        ),
    )


def default_probes(store: RecordStore | None = None) -> list[Probe]:
    """The probes run by the health screen, in dispatch order."""
    return [
        Probe("Memory", "system", check_memory),
        Probe("Disk Space", "system", check_disk_space),
        Probe("Internet Connection", "system", check_internet),
        Probe("Build Tools", "system", check_build_tools, "Checking gcc, make, cmake...", critical=True),
        Probe("Git", "system", check_git, "Checking version...", critical=True),
        Probe("PATH Configuration", "system", check_path, "Checking /usr/local/bin..."),
        Probe("Rust Toolchain", "toolchain", check_rust_toolchain, "Checking rustc, cargo..."),
        Probe("Go Toolchain", "toolchain", check_go_toolchain, "Checking go version..."),
        Probe("Tool Updates", "tools", partial(check_tool_updates, store), "Checking for updates..."),
    ]
