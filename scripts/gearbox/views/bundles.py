"""Bundle screen: install a whole group of tools at once."""

from textual.app import ComposeResult
from textual.screen import Screen
from textual.widgets import DataTable, Footer, Header, Label

from gearbox.errors import ConfigError

COLUMNS = ("Bundle", "Category", "Installed", "Description")


class BundlesScreen(Screen):
    """Bundles from the catalog, with the tools of the highlighted one."""

    BINDINGS = [
        ("i", "install", "Install Bundle"),
    ]

    DEFAULT_CSS = """
    BundlesScreen {
        padding: 0 1;
    }

    BundlesScreen .title {
        text-style: bold;
        margin: 1 0;
    }

    BundlesScreen DataTable {
        height: 1fr;
    }

    BundlesScreen .contents {
        margin: 1 0;
        color: $text-muted;
    }
    """

    def compose(self) -> ComposeResult:
        yield Header()
        yield Label("Bundles", classes="title")
        yield DataTable(cursor_type="row", zebra_stripes=True)
        yield Label("", classes="contents", markup=False)
        yield Footer()

    def on_mount(self) -> None:
        self.query_one(DataTable).add_columns(*COLUMNS)
        self.refresh_bundles()

    def on_screen_resume(self) -> None:
        self.refresh_bundles()

    def refresh_bundles(self) -> None:
        table = self.query_one(DataTable)
        cursor = table.cursor_row
        table.clear()

        catalog = self.app.catalog
        for bundle in catalog.bundles():
            try:
                tools = catalog.expand_bundle(bundle.name)
                installed = f"{sum(1 for t in tools if t in self.app.installed)}/{len(tools)}"
            except ConfigError:
                installed = "invalid"
            table.add_row(bundle.name, bundle.category, installed, bundle.description, key=bundle.name)

        if table.row_count:
            table.move_cursor(row=min(cursor, table.row_count - 1))
        self._show_contents()

    def _current_bundle(self) -> str | None:
        table = self.query_one(DataTable)
        if not table.row_count:
            return None
        row_key, _ = table.coordinate_to_cell_key(table.cursor_coordinate)
        return row_key.value

    def _show_contents(self) -> None:
        contents = self.query_one(".contents", Label)
        name = self._current_bundle()
        if name is None:
            contents.update("No bundles in catalog.")
            return
        try:
            tools = self.app.catalog.expand_bundle(name)
        except ConfigError as e:
            contents.update(str(e))
            return
        marked = [f"{t} ✓" if t in self.app.installed else t for t in tools]
        contents.update(f"{name}: {', '.join(marked)}")

    def on_data_table_row_highlighted(self, event: DataTable.RowHighlighted) -> None:
        self._show_contents()

    def action_install(self) -> None:
        name = self._current_bundle()
        if name is None:
            self.app.notify("No bundle selected", severity="warning")
            return
        self.app.install_bundle(name)
