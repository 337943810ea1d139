"""Install monitor: live view of registry snapshots with task controls."""

from textual.app import ComposeResult
from textual.containers import Horizontal, VerticalScroll
from textual.screen import Screen
from textual.widgets import DataTable, Footer, Header, Label

from gearbox.errors import InvalidTransition, UnknownTask
from gearbox.report import STATUS_ICONS, format_duration, progress_bar, render_compact
from gearbox.views.widgets import TaskDetailPanel

COLUMNS = ("Tool", "Status", "Progress", "Stage", "Time")


class MonitorScreen(Screen):
    """Task table on the left, selected task detail on the right."""

    BINDINGS = [
        ("s", "start", "Start"),
        ("c", "cancel", "Cancel"),
        ("p", "prune", "Clear Finished"),
    ]

    DEFAULT_CSS = """
    MonitorScreen .title {
        text-style: bold;
        margin: 1 1 0 1;
    }

    MonitorScreen Horizontal {
        height: 1fr;
    }

    MonitorScreen DataTable {
        width: 3fr;
        height: 100%;
    }

    MonitorScreen VerticalScroll {
        width: 2fr;
        padding: 0 1;
    }

    MonitorScreen .summary {
        margin: 0 1;
    }
    """

    def compose(self) -> ComposeResult:
        yield Header()
        yield Label("Install Monitor", classes="title")
        with Horizontal():
            yield DataTable(cursor_type="row")
            with VerticalScroll():
                yield TaskDetailPanel()
        yield Label("", classes="summary")
        yield Footer()

    def on_mount(self) -> None:
        self.query_one(DataTable).add_columns(*COLUMNS)
        self.refresh_tasks()

    def on_screen_resume(self) -> None:
        self.refresh_tasks()

    def refresh_tasks(self) -> None:
        """Rebuild the table from fresh registry snapshots."""
        table = self.query_one(DataTable)
        cursor = table.cursor_row
        table.clear()

        records = self.app.registry.get_all()
        for record in records:
            table.add_row(
                record.target.tool,
                f"{STATUS_ICONS[record.status]} {record.status.value}",
                progress_bar(record.progress, 12),
                record.stage,
                format_duration(record.duration_seconds),
                key=record.id,
            )
        if table.row_count:
            table.move_cursor(row=min(cursor, table.row_count - 1))

        summary = self.query_one(".summary", Label)
        if records:
            summary.update(
                f"{render_compact(records)} | "
                f"{self.app.registry.running_count()}/{self.app.registry.max_parallel} slots busy"
            )
        else:
            summary.update("No installs yet. Select tools on the Tools screen (t) and press i.")
        self._show_selected()

    def on_data_table_row_highlighted(self, event: DataTable.RowHighlighted) -> None:
        self._show_selected()

    def _selected_id(self) -> str | None:
        table = self.query_one(DataTable)
        if not table.row_count:
            return None
        row_key, _ = table.coordinate_to_cell_key(table.cursor_coordinate)
        return row_key.value

    def _show_selected(self) -> None:
        task_id = self._selected_id()
        record = self.app.registry.get(task_id) if task_id else None
        self.query_one(TaskDetailPanel).show(record)

    def action_start(self) -> None:
        task_id = self._selected_id()
        if task_id is None:
            return
        try:
            running = self.app.registry.start(task_id)
        except (InvalidTransition, UnknownTask) as e:
            self.app.notify(str(e), severity="warning")
            return
        if not running:
            self.app.notify("All slots busy, install queued")
        self.refresh_tasks()

    def action_cancel(self) -> None:
        task_id = self._selected_id()
        if task_id is None:
            return
        try:
            self.app.registry.cancel(task_id)
        except UnknownTask as e:
            self.app.notify(str(e), severity="warning")
            return
        self.refresh_tasks()

    def action_prune(self) -> None:
        removed = self.app.registry.prune()
        if removed:
            self.app.notify(f"Cleared {removed} finished install(s)")
        self.refresh_tasks()
