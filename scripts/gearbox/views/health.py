"""Health screen: static system facts plus the sequential probe results."""

from textual.app import ComposeResult
from textual.containers import ScrollableContainer
from textual.screen import Screen
from textual.widgets import Footer, Header, Label

from gearbox.providers import CheckStatus
from gearbox.views.widgets import HealthPanel


class HealthScreen(Screen):
    """Runs the check chain whenever the screen is shown."""

    BINDINGS = [
        ("r", "refresh", "Re-run Checks"),
    ]

    DEFAULT_CSS = """
    HealthScreen {
        padding: 0 1;
    }

    HealthScreen .summary {
        margin: 1 0;
        text-style: bold;
    }
    """

    def compose(self) -> ComposeResult:
        yield Header()
        yield Label("", classes="summary")
        with ScrollableContainer():
            yield HealthPanel()
        yield Footer()

    def on_screen_resume(self) -> None:
        self.app.run_health_checks()

    def refresh_checks(self) -> None:
        board = self.app.board
        self.query_one(HealthPanel).show(board.all_checks())

        counts = board.summary()
        parts = [
            f"{counts[CheckStatus.PASSING]} passing",
            f"{counts[CheckStatus.WARNING]} warnings",
            f"{counts[CheckStatus.FAILING]} failing",
        ]
        if counts[CheckStatus.PENDING]:
            parts.append(f"{counts[CheckStatus.PENDING]} checking")
        self.query_one(".summary", Label).update(" | ".join(parts))

    def action_refresh(self) -> None:
        self.app.run_health_checks()
