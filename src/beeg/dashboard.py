"""Live TUI for the client mount check."""

from __future__ import annotations

import logging

from rich.text import Text
from textual import events
from textual.app import App, ComposeResult
from textual.reactive import reactive
from textual.widgets import DataTable, Footer, Header, Label, Static

from .aggregator import Aggregator, RunState
from .executor import Executor

logger = logging.getLogger(__name__)

CELL_STYLES = {
    "...": "dim",
    "OK": "green",
    "ERR": "bold red",
}


class StatusBar(Static):
    """Bottom status bar showing overall progress."""

    completed: reactive[int] = reactive(0)
    total: reactive[int] = reactive(0)
    running: reactive[bool] = reactive(True)

    def __init__(self, quit_key: str = "q", **kwargs) -> None:
        super().__init__(**kwargs)
        self.quit_key = quit_key

    def render(self) -> str:
        status = "Running..." if self.running else "Complete"
        return (
            f"Completed: {self.completed}/{self.total} | {status} | "
            f"Press '{self.quit_key}' to quit"
        )


class MountDashboard(App):
    """Renders the result matrix on a fixed tick until all nodes finish or the operator quits."""

    CSS = """
    #title {
        padding: 0 1;
        background: $surface;
        width: 100%;
    }

    DataTable {
        height: 1fr;
        border: solid $primary;
    }

    StatusBar {
        dock: bottom;
        height: 1;
        background: $surface;
        padding: 0 1;
    }
    """

    def __init__(
        self,
        executor: Executor,
        aggregator: Aggregator,
        tick: float = 0.1,
        quit_key: str = "q",
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.executor = executor
        self.aggregator = aggregator
        self.tick = tick
        self.quit_key = quit_key
        self.title = "beeg check client-mount"
        self.sub_title = f"Mount {executor.params.mount}"

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Label(
            Text(f"Mount {self.executor.params.mount} - press '{self.quit_key}' to quit"),
            id="title",
        )
        yield DataTable(id="results", cursor_type="none", zebra_stripes=True)
        yield StatusBar(self.quit_key, id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        """Build the table, start the node workers and the redraw timer."""
        table = self.query_one("#results", DataTable)
        table.add_column("Node", key="node")
        table.add_column("Host", key="host")
        for step in self.aggregator.steps:
            table.add_column(step.header, key=step.key)
        for index, (node, cells) in enumerate(self.aggregator.rows()):
            table.add_row(
                Text(node.name), Text(node.host), *map(_styled, cells), key=str(index)
            )

        status_bar = self.query_one("#status-bar", StatusBar)
        status_bar.total = self.aggregator.total

        self.run_worker(self.executor.run_all(), exclusive=True, group="probes")
        self.set_interval(self.tick, self._on_tick)

    def _on_tick(self) -> None:
        """Drain pending events, redraw, and exit once every node is done."""
        if self.aggregator.finished:
            return
        self.aggregator.drain(self.executor.channel)
        self._refresh_view()
        if self.aggregator.poll() is RunState.DONE:
            self.query_one("#status-bar", StatusBar).running = False
            self.exit(RunState.DONE)

    def _refresh_view(self) -> None:
        table = self.query_one("#results", DataTable)
        for index, (_node, cells) in enumerate(self.aggregator.rows()):
            for step, cell in zip(self.aggregator.steps, cells):
                table.update_cell(str(index), step.key, _styled(cell))
        self.query_one("#status-bar", StatusBar).completed = self.aggregator.completed

    def on_key(self, event: events.Key) -> None:
        if event.key == self.quit_key:
            event.stop()
            self.cancel_run()

    def cancel_run(self) -> None:
        """Stop rendering now; workers still running are abandoned."""
        self.aggregator.cancel()
        self.executor.cancel()
        self.exit(self.aggregator.state)

    async def action_quit(self) -> None:
        """Quit the application."""
        self.cancel_run()


def _styled(cell: str) -> Text:
    return Text(cell, style=CELL_STYLES.get(cell, ""))


def run_dashboard(app: MountDashboard, headless: bool = False) -> RunState | None:
    """Run the live view; the aggregator ends RESTORED on every exit path.

    Returns DONE or CANCELLED, or None if the view exited on an error.
    """
    try:
        app.run(headless=headless)
    finally:
        app.aggregator.restore()
        logger.debug("Terminal restored (exit state %s)", app.aggregator.exit_state)
    return app.aggregator.exit_state
