"""Tool catalog screen: search, pick tools, install or uninstall them."""

from textual.app import ComposeResult
from textual.screen import Screen
from textual.widgets import DataTable, Footer, Header, Input, Label

from gearbox.providers import TaskStatus, ToolInfo

COLUMNS = (" ", "Tool", "Category", "Language", "Status", "Description")


class ToolsScreen(Screen):
    """Catalog with installed marks, search and multi-select."""

    AUTO_FOCUS = "DataTable"

    BINDINGS = [
        ("space", "toggle", "Select"),
        ("a", "select_missing", "Select Missing"),
        ("i", "install", "Install"),
        ("u", "uninstall", "Uninstall"),
        ("slash", "focus_search", "Search"),
        ("escape", "clear_search", "Clear Search"),
    ]

    DEFAULT_CSS = """
    ToolsScreen {
        padding: 0 1;
    }

    ToolsScreen .title {
        text-style: bold;
        margin: 1 0;
    }

    ToolsScreen #search {
        margin: 0 0 1 0;
    }

    ToolsScreen DataTable {
        height: 1fr;
    }
    """

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._selected: set[str] = set()
        self._query = ""

    def compose(self) -> ComposeResult:
        yield Header()
        yield Label("Tools", classes="title")
        yield Input(placeholder="Search by name, description or language", id="search")
        yield DataTable(cursor_type="row", zebra_stripes=True)
        yield Label("", classes="summary")
        yield Footer()

    def on_mount(self) -> None:
        self.query_one(DataTable).add_columns(*COLUMNS)
        self.refresh_tools()

    def on_screen_resume(self) -> None:
        self.refresh_tools()

    def refresh_tools(self) -> None:
        table = self.query_one(DataTable)
        cursor = table.cursor_row
        table.clear()

        installed = self.app.installed
        active = {
            r.target.tool: r.status
            for r in self.app.registry.get_all()
            if not r.is_terminal
        }
        visible = self._visible_tools()
        for tool in visible:
            if tool.name in active:
                status = "Installing" if active[tool.name] == TaskStatus.RUNNING else "Queued"
            elif tool.name in installed:
                status = "✓ Installed"
            else:
                status = ""
            mark = "●" if tool.name in self._selected else ""
            table.add_row(mark, tool.name, tool.category, tool.language, status, tool.description, key=tool.name)

        if table.row_count:
            table.move_cursor(row=min(cursor, table.row_count - 1))

        summary = self.query_one(".summary", Label)
        if not len(self.app.catalog):
            summary.update("No tools in catalog. Check the tools_file setting.")
        else:
            text = (
                f"{len(installed)} installed, {len(self._selected)} selected, "
                f"{len(self.app.catalog)} available"
            )
            if self._query:
                text += f", {len(visible)} matching \"{self._query}\""
            summary.update(text)

    def _visible_tools(self) -> list[ToolInfo]:
        return self.app.catalog.search(self._query)

    def _current_tool(self) -> str | None:
        table = self.query_one(DataTable)
        if not table.row_count:
            return None
        row_key, _ = table.coordinate_to_cell_key(table.cursor_coordinate)
        return row_key.value

    def action_toggle(self) -> None:
        name = self._current_tool()
        if name is None:
            return
        self._selected ^= {name}
        self.refresh_tools()

    def action_select_missing(self) -> None:
        self._selected = {
            tool.name for tool in self._visible_tools() if tool.name not in self.app.installed
        }
        self.refresh_tools()

    def action_install(self) -> None:
        names = [t.name for t in self.app.catalog if t.name in self._selected]
        if not names:
            current = self._current_tool()
            names = [current] if current else []
        if not names:
            self.app.notify("Select a tool first", severity="warning")
            return
        self._selected.clear()
        self.app.install_tools(names)

    def action_uninstall(self) -> None:
        names = [t.name for t in self.app.catalog if t.name in self._selected]
        if not names:
            current = self._current_tool()
            names = [current] if current else []
        names = [name for name in names if name in self.app.installed]
        if not names:
            self.app.notify("Select an installed tool first", severity="warning")
            return
        self._selected.difference_update(names)
        self.app.uninstall_tools(names)

    def action_focus_search(self) -> None:
        self.query_one("#search", Input).focus()

    def action_clear_search(self) -> None:
        search = self.query_one("#search", Input)
        search.value = ""
        self.query_one(DataTable).focus()

    def on_input_changed(self, event: Input.Changed) -> None:
        self._query = event.value
        self.refresh_tools()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        self.query_one(DataTable).focus()
