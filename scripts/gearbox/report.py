"""
Plain-text and JSON rendering of registry snapshots and health checks.

Used by the headless CLI modes and by the Textual views for their
progress and duration cells.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime

from gearbox.providers import (
    CheckStatus,
    HealthCheck,
    InstallationRecord,
    TaskRecord,
    TaskStatus,
    ToolInfo,
)

# Box drawing characters
BOX_H = "─"
BOX_V = "│"
BOX_TL = "┌"
BOX_TR = "┐"
BOX_BL = "└"
BOX_BR = "┘"
BOX_L = "├"
BOX_R = "┤"

STATUS_ICONS = {
    TaskStatus.PENDING: "○",
    TaskStatus.RUNNING: "●",
    TaskStatus.COMPLETED: "✓",
    TaskStatus.FAILED: "✗",
    TaskStatus.CANCELLED: "⊖",
}

CHECK_ICONS = {
    CheckStatus.PENDING: "…",
    CheckStatus.PASSING: "✓",
    CheckStatus.WARNING: "!",
    CheckStatus.FAILING: "✗",
}

REPORT_WIDTH = 72


def format_duration(seconds: float | None) -> str:
    if seconds is None:
        return "—"
    total_seconds = abs(int(seconds))
    if total_seconds < 60:
        return f"{total_seconds}s"
    elif total_seconds < 3600:
        return f"{total_seconds // 60}m {total_seconds % 60}s"
    hours = total_seconds // 3600
    mins = (total_seconds % 3600) // 60
    return f"{hours}h {mins}m"


def format_time(moment: datetime | None) -> str:
    return moment.astimezone().strftime("%H:%M:%S") if moment else "—"


def progress_bar(fraction: float, width: int = 20) -> str:
    """Create a progress bar for a 0..1 fraction."""
    fraction = max(0.0, min(1.0, fraction))
    filled = int(width * fraction)
    bar = "█" * filled + "░" * (width - filled)
    return f"[{bar}] {fraction * 100:.0f}%"


def box_line(left: str, fill: str, right: str, width: int) -> str:
    return left + fill * (width - 2) + right


def box_text(text: str, width: int, align: str = "left") -> str:
    """Create a box line with text, truncated to fit."""
    content_width = width - 4
    if len(text) > content_width:
        text = text[:content_width - 1] + "…"

    if align == "center":
        padded = text.center(content_width)
    else:
        padded = text.ljust(content_width)

    return f"{BOX_V} {padded} {BOX_V}"


def render_compact(records: Sequence[TaskRecord]) -> str:
    """Render compact single-line summary."""
    counts = {status: 0 for status in TaskStatus}
    for record in records:
        counts[record.status] += 1

    parts = [f"{counts[TaskStatus.COMPLETED]}/{len(records)} done"]
    for status in (TaskStatus.RUNNING, TaskStatus.PENDING, TaskStatus.FAILED, TaskStatus.CANCELLED):
        if counts[status]:
            parts.append(f"{counts[status]} {status.value}")
    return " | ".join(parts)


def render_report(
    tools: Iterable[ToolInfo],
    installed: Mapping[str, InstallationRecord],
    records: Sequence[TaskRecord],
    checks: Sequence[HealthCheck],
) -> str:
    """Render the full text report."""
    width = REPORT_WIDTH
    lines = [
        box_line(BOX_TL, BOX_H, BOX_TR, width),
        box_text("GEARBOX STATUS", width, "center"),
        box_line(BOX_L, BOX_H, BOX_R, width),
    ]

    tools = list(tools)
    lines.append(box_text(f"Tools: {len(installed)} of {len(tools)} installed", width))
    for tool in tools:
        record = installed.get(tool.name)
        mark = "✓" if record else "○"
        suffix = f"  ({record.build_type}, {record.method})" if record else ""
        lines.append(box_text(f"  {mark} {tool.name:<12} {tool.category}{suffix}", width))

    if records:
        lines.append(box_line(BOX_L, BOX_H, BOX_R, width))
        lines.append(box_text(f"Installs: {render_compact(records)}", width))
        for record in records:
            icon = STATUS_ICONS[record.status]
            lines.append(
                box_text(
                    f"  {icon} {record.target.tool:<12} {progress_bar(record.progress, 16)} "
                    f"{format_duration(record.duration_seconds)}",
                    width,
                )
            )
            detail = record.error if record.status == TaskStatus.FAILED else record.stage
            lines.append(box_text(f"      {detail}", width))

    if checks:
        lines.append(box_line(BOX_L, BOX_H, BOX_R, width))
        lines.append(box_text("Health Checks", width))
        for check in checks:
            lines.append(box_text(f"  {CHECK_ICONS[check.status]} {check.name}: {check.message}", width))
            for suggestion in check.suggestions:
                lines.append(box_text(f"      → {suggestion}", width))

    lines.append(box_line(BOX_BL, BOX_H, BOX_BR, width))
    return "\n".join(lines)


def task_to_dict(record: TaskRecord) -> dict:
    return {
        "id": record.id,
        "tool": record.target.tool,
        "build_type": record.target.build_type,
        "status": record.status.value,
        "progress": round(record.progress, 3),
        "stage": record.stage,
        "output": list(record.output),
        "started_at": record.started_at.isoformat() if record.started_at else None,
        "ended_at": record.ended_at.isoformat() if record.ended_at else None,
        "error": record.error,
    }


def report_json(
    tools: Iterable[ToolInfo],
    installed: Mapping[str, InstallationRecord],
    records: Sequence[TaskRecord],
    checks: Sequence[HealthCheck],
) -> dict:
    return {
        "tools": [
            {"name": t.name, "category": t.category, "installed": t.name in installed}
            for t in tools
        ],
        "tasks": [task_to_dict(r) for r in records],
        "health_checks": [
            {
                "name": c.name,
                "category": c.category,
                "status": c.status.value,
                "message": c.message,
                "details": list(c.details),
                "suggestions": list(c.suggestions),
                "critical": c.critical,
            }
            for c in checks
        ],
    }
