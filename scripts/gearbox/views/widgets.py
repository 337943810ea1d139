"""Reusable widgets for the console screens."""

from __future__ import annotations

from collections.abc import Iterator, Sequence

from textual.app import ComposeResult
from textual.containers import Vertical
from textual.widgets import Label, ProgressBar, Static

from gearbox.providers import CheckStatus, HealthCheck, TaskRecord, TaskStatus
from gearbox.report import CHECK_ICONS, STATUS_ICONS, format_duration, format_time


class HealthPanel(Static):
    """Panel listing health checks with their details and suggestions."""

    DEFAULT_CSS = """
    HealthPanel {
        height: auto;
        border: solid $primary;
        padding: 1;
        margin-bottom: 1;
    }

    HealthPanel .title {
        text-style: bold;
        margin-bottom: 1;
    }

    HealthPanel .check-passing {
        color: $success;
    }

    HealthPanel .check-warning {
        color: $warning;
    }

    HealthPanel .check-failing {
        color: $error;
    }

    HealthPanel .check-pending {
        color: $text-muted;
    }

    HealthPanel .detail {
        margin-left: 4;
        color: $text-muted;
    }
    """

    def compose(self) -> ComposeResult:
        yield Label("Health Checks", classes="title")
        yield Vertical(classes="checks")

    def show(self, checks: Sequence[HealthCheck]) -> None:
        body = self.query_one(".checks", Vertical)
        body.remove_children()
        body.mount_all(list(self._rows(checks)))

    def _rows(self, checks: Sequence[HealthCheck]) -> Iterator[Label]:
        category = None
        for check in checks:
            if check.category != category:
                category = check.category
                yield Label(f"─── {category.title()} ───")
            icon = CHECK_ICONS[check.status]
            critical = " (critical)" if check.critical and check.status != CheckStatus.PASSING else ""
            yield Label(
                f"{icon} {check.name}: {check.message}{critical}",
                classes=f"check-{check.status.value}",
                markup=False,
            )
            for detail in check.details:
                yield Label(detail, classes="detail", markup=False)
            for suggestion in check.suggestions:
                yield Label(f"→ {suggestion}", classes="detail", markup=False)


class TaskDetailPanel(Static):
    """Progress, stage, timing and trailing output of one task."""

    DEFAULT_CSS = """
    TaskDetailPanel {
        height: auto;
        border: solid $primary;
        padding: 1;
    }

    TaskDetailPanel .title {
        text-style: bold;
        margin-bottom: 1;
    }

    TaskDetailPanel .status-completed {
        color: $success;
    }

    TaskDetailPanel .status-failed {
        color: $error;
    }

    TaskDetailPanel .status-running {
        color: $warning;
    }

    TaskDetailPanel .status-pending, TaskDetailPanel .status-cancelled {
        color: $text-muted;
    }

    TaskDetailPanel .output {
        margin-top: 1;
        color: $text-muted;
    }

    TaskDetailPanel .error-message {
        color: $error;
        margin: 1 0;
        padding: 0 1;
        border: solid $error;
    }
    """

    def compose(self) -> ComposeResult:
        yield Label("No task selected", classes="title")
        yield ProgressBar(total=100, show_eta=False)
        yield Vertical(classes="body")

    def show(self, record: TaskRecord | None) -> None:
        title = self.query_one(".title", Label)
        bar = self.query_one(ProgressBar)
        body = self.query_one(".body", Vertical)
        body.remove_children()

        if record is None:
            title.update("No task selected")
            bar.update(progress=0)
            return

        title.update(f"{STATUS_ICONS[record.status]} {record.target}")
        bar.update(progress=record.progress * 100)
        body.mount_all(list(self._lines(record)))

    def _lines(self, record: TaskRecord) -> Iterator[Label]:
        yield Label(
            f"Status: {record.status.value.upper()} | Stage: {record.stage}",
            classes=f"status-{record.status.value}",
            markup=False,
        )
        yield Label(
            f"Started: {format_time(record.started_at)} | "
            f"Duration: {format_duration(record.duration_seconds)}"
        )
        if record.status == TaskStatus.FAILED and record.error:
            yield Label(f"Error: {record.error}", classes="error-message", markup=False)
        if record.output:
            yield Label("\n".join(record.output), classes="output", markup=False)
