"""TextUI - Textual-based terminal UI for BillSort intake runs."""

import threading
from typing import Callable, Dict, Optional

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.widgets import Footer, Header, Label, ProgressBar, RichLog, Static

from billsort import BillSort, __version__
from workflows import CancellationToken

# Tally order and colors match the decision pane
TALLY_STYLES = (
    ("stored", "green"),
    ("duplicate", "yellow"),
    ("triage", "cyan"),
    ("failed", "red"),
)


def format_tallies(counts: Dict[str, int]) -> str:
    return "  ".join(f"[{color}]{action}: {counts.get(action, 0)}[/{color}]"
                     for action, color in TALLY_STYLES)


class RunInfo(Static):
    """Two-line banner: where mail comes from and where bills are filed."""

    def __init__(self, mailbox: str = "", docstore: str = "", **kwargs) -> None:
        super().__init__(**kwargs)
        self.mailbox = mailbox
        self.docstore = docstore

    def compose(self) -> ComposeResult:
        yield Static(f"Mail: {self.mailbox}")
        yield Static(f"Docstore: {self.docstore}")


class BillSortApp(App):
    """Intake monitor: decisions on the left, debug output on the right.

    Pressing ``x`` requests cancellation; intake stops at the next
    attachment boundary and keeps what it already stored.
    """

    CSS = """
    Screen {
        layout: vertical;
    }

    RunInfo {
        height: auto;
        padding: 0 1;
        background: $boost;
    }

    #panes {
        height: 1fr;
    }

    #decisions-pane {
        width: 3fr;
        border: round $success;
        border-title-align: left;
    }

    #debug-pane {
        width: 2fr;
        border: round $secondary;
        border-title-align: left;
    }

    RichLog {
        height: 1fr;
        scrollbar-size-vertical: 1;
    }

    #status-row {
        height: 1;
        padding: 0 1;
        background: $boost;
    }

    #tallies {
        width: 1fr;
    }

    #progress-bar {
        width: 40;
    }

    #progress-label {
        width: auto;
        min-width: 16;
        margin-left: 1;
    }
    """

    BINDINGS = [
        Binding("x", "cancel", "Cancel intake"),
        Binding("q", "quit", "Quit"),
        Binding("ctrl+c", "quit", "Quit", show=False),
    ]

    def __init__(self, source: str = "", destination: str = "",
                 process_func: Optional[Callable[[CancellationToken], None]] = None) -> None:
        super().__init__()
        self.source = source
        self.destination = destination
        self.token = CancellationToken()
        self._process_func = process_func
        self._worker: Optional[threading.Thread] = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield RunInfo(self.source, self.destination)
        with Horizontal(id="panes"):
            decisions = Vertical(id="decisions-pane")
            decisions.border_title = "Decisions"
            with decisions:
                yield RichLog(id="decision-log", markup=True, wrap=True)
            debug = Vertical(id="debug-pane")
            debug.border_title = "Debug"
            with debug:
                yield RichLog(id="debug-log", markup=True, wrap=True)
        with Horizontal(id="status-row"):
            yield Label(format_tallies({}), id="tallies")
            yield ProgressBar(id="progress-bar", show_eta=False)
            yield Label("0/0 attachments", id="progress-label")
        yield Footer()

    def on_mount(self) -> None:
        self.title = f"BillSort v{__version__}"
        self.sub_title = "intake"
        BillSort.set_app(self)
        if self._process_func:
            self._worker = threading.Thread(target=self._run_intake, daemon=True)
            self._worker.start()

    def on_unmount(self) -> None:
        self.token.cancel()
        BillSort.set_app(None)

    def _run_intake(self) -> None:
        self._process_func(self.token)
        if self.is_running:
            self.call_from_thread(self._intake_finished)

    def _intake_finished(self) -> None:
        self.sub_title = "cancelled" if self.token.cancelled else "done"

    def action_cancel(self) -> None:
        if self.token.cancelled:
            return
        self.token.cancel()
        self.sub_title = "cancelling"
        self.add_debug("[yellow]Cancellation requested; finishing current attachment...[/yellow]")

    def add_decision(self, line1: str, line2: str) -> None:
        self.query_one("#decision-log", RichLog).write(f"{line1}\n{line2}")

    def add_debug(self, message: str) -> None:
        self.query_one("#debug-log", RichLog).write(message)

    def set_progress(self, current: int, total: int) -> None:
        self.query_one("#progress-bar", ProgressBar).update(total=total, progress=current)
        self.query_one("#progress-label", Label).update(f"{current}/{total} attachments")

    def set_tallies(self, counts: Dict[str, int]) -> None:
        self.query_one("#tallies", Label).update(format_tallies(counts))
