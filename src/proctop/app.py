"""proctop - Textual front end for the process engine."""

from queue import Empty, Queue

import structlog
from rich.text import Text
from textual import events
from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.widgets import DataTable, Footer, Input, Static

from proctop.config import Config
from proctop.engine import Engine
from proctop.models import CLOCK_TICKS, DisplayNode, ProcessRecord, Snapshot, ViewSettings
from proctop.monitor import SnapshotError, SystemMonitor
from proctop.scheduler import RedrawMode
from proctop.search import SearchMode

log = structlog.get_logger(__name__)

# (label, column key, width); None width takes the remaining space
COLUMNS = [
    ("PID", "pid", 8),
    ("USER", "user", 10),
    ("NI", "nice", 4),
    ("S", "state", 2),
    ("CPU%", "cpu", 6),
    ("MEM%", "mem", 6),
    ("RES", "res", 7),
    ("TIME+", "time", 10),
    ("THR", "threads", 4),
    ("Command", "command", None),
]
COLUMN_KEYS = [key for _, key, _ in COLUMNS]


def format_bytes(size: int | None) -> str:
    """Format bytes as a short human-readable string."""
    if size is None:
        return "?"
    value = float(size)
    for unit in ["B", "K", "M", "G", "T"]:
        if value < 1024:
            return f"{int(value)}{unit}" if unit == "B" else f"{value:.1f}{unit}"
        value /= 1024
    return f"{value:.1f}P"


def format_percent(value: float | None) -> str:
    """Percentages not computed yet render as N/A."""
    if value is None:
        return "N/A"
    return f"{value:5.1f}"


def format_time(ticks: int | None) -> str:
    """Format CPU time as h:mm:ss, or m:ss.cc below an hour."""
    if ticks is None:
        return "?"
    hundredths = ticks * 100 // CLOCK_TICKS
    total_seconds = hundredths // 100
    hours, rest = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}.{hundredths % 100:02d}"


def tree_prefix(node: DisplayNode) -> str:
    """Indentation and branch glyphs for a tree row."""
    if node.depth == 0:
        marker = ""
    else:
        marker = "  " * (node.depth - 1) + ("└─" if node.is_last else "├─")
    if node.has_children:
        marker += "+" if node.collapsed else "-"
    return f"{marker} " if marker else ""


def format_row(record: ProcessRecord, node: DisplayNode, tree_view: bool) -> tuple[str, ...]:
    """Render the cells of one process row."""
    command = record.display_command
    if tree_view:
        command = tree_prefix(node) + command
    return (
        str(record.pid),
        (record.user or "?")[:10],
        "?" if record.nice is None else str(record.nice),
        record.state.value,
        format_percent(record.cpu_percent),
        format_percent(record.mem_percent),
        format_bytes(record.rss),
        format_time(record.cpu_ticks),
        "?" if record.threads is None else str(record.threads),
        command,
    )


class HeaderStats(Static):
    """CPU, memory and task summary above the process list."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 4;
        padding: 0 1;
        background: $surface;
    }
    """

    def compose(self) -> ComposeResult:
        yield Horizontal(
            Static("Waiting for first sample...", id="cpu-info"),
            Static("", id="mem-info"),
        )

    def update_stats(self, snapshot: Snapshot, engine: Engine) -> None:
        """Refresh the summary from the latest snapshot."""
        self.query_one("#cpu-info", Static).update(self._cpu_text(snapshot))
        self.query_one("#mem-info", Static).update(self._mem_text(snapshot, engine))

    @staticmethod
    def _bar(percent: float, style: str, width: int = 20) -> str:
        filled = min(int(percent / 100 * width), width)
        return f"[{style}]" + "|" * filled + "[/]" + " " * (width - filled)

    def _cpu_text(self, snapshot: Snapshot) -> str:
        lines = [
            f"{i:>3} \\[{self._bar(usage, 'green')}] {usage:5.1f}%"
            for i, usage in enumerate(snapshot.cpu_aggregate.per_core)
        ]
        return "\n".join(lines) or "No CPU data"

    def _mem_text(self, snapshot: Snapshot, engine: Engine) -> str:
        mem = snapshot.mem_aggregate
        load = snapshot.load_avg
        days, rest = divmod(int(snapshot.uptime_seconds), 86400)
        hours, rest = divmod(rest, 3600)
        minutes, seconds = divmod(rest, 60)
        uptime = f"{hours:02d}:{minutes:02d}:{seconds:02d}"
        if days:
            uptime = f"{days} days, {uptime}"
        tagged = len(engine.table.tagged())
        return (
            f"Mem \\[{self._bar(mem.percent, 'cyan')}] "
            f"{format_bytes(mem.used)}/{format_bytes(mem.total)}\n"
            f"Swp \\[{self._bar(mem.swap_percent, 'yellow')}] "
            f"{format_bytes(mem.swap_used)}/{format_bytes(mem.swap_total)}\n"
            f"Tasks: {len(engine.table)}, {tagged} tagged; "
            f"Load average: {load[0]:.2f} {load[1]:.2f} {load[2]:.2f}\n"
            f"Uptime: {uptime}"
        )


class ProcessPanel(Container):
    """The process list. Repaints fully or cell by cell as the scheduler asks."""

    DEFAULT_CSS = """
    ProcessPanel {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, engine: Engine, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._engine = engine
        self._shown: list[int] = []
        self._cells: dict[int, tuple] = {}

    def compose(self) -> ComposeResult:
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"
        for label, key, width in COLUMNS:
            table.add_column(label, key=key, width=width)

    @property
    def shown_pids(self) -> list[int]:
        """Pids currently drawn, top to bottom."""
        return self._shown

    def _row_cells(self, node: DisplayNode) -> tuple:
        engine = self._engine
        record = engine.table.processes[node.pid]
        cells = format_row(record, node, engine.settings.tree_view)
        if record.tagged:
            cells = tuple(Text(cell, style="bold yellow") for cell in cells)
        return cells

    def repaint(self) -> RedrawMode:
        """Apply whatever repaint the scheduler has planned."""
        scheduler = self._engine.scheduler
        mode = scheduler.plan()
        if mode is RedrawMode.PARTIAL and self._shown != self._engine.rows:
            mode = RedrawMode.FULL
        if mode is RedrawMode.FULL:
            self._full_repaint()
        elif mode is RedrawMode.PARTIAL:
            self._partial_repaint()
        scheduler.redrawn(mode)
        return mode

    def _full_repaint(self) -> None:
        table = self.query_one("#process-table", DataTable)
        table.clear()
        self._cells = {}
        for node in self._engine.nodes:
            cells = self._row_cells(node)
            self._cells[node.pid] = cells
            table.add_row(*cells, key=str(node.pid))
        self._shown = list(self._engine.rows)
        self._sync_cursor(table)

    def _partial_repaint(self) -> None:
        table = self.query_one("#process-table", DataTable)
        for node in self._engine.nodes:
            cells = self._row_cells(node)
            old = self._cells.get(node.pid)
            if old == cells:
                continue
            for key, value, previous in zip(COLUMN_KEYS, cells, old or ()):
                if value != previous:
                    table.update_cell(str(node.pid), key, value)
            self._cells[node.pid] = cells
        self._sync_cursor(table)

    def _sync_cursor(self, table: DataTable) -> None:
        if self._shown and table.cursor_row != self._engine.selected:
            table.move_cursor(row=self._engine.selected)

    def on_data_table_row_highlighted(self, event: DataTable.RowHighlighted) -> None:
        self._engine.select_index(event.cursor_row)


class ProcTopApp(App):
    """Main proctop application."""

    TITLE = "proctop"
    SUB_TITLE = "Interactive process viewer"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
    }

    Horizontal {
        height: auto;
    }

    #cpu-info {
        width: 1fr;
    }

    #mem-info {
        width: 1fr;
    }

    #status-line {
        height: 1;
        color: $warning;
    }

    #search-input {
        display: none;
    }
    """

    BINDINGS = [
        ("q,f10", "quit", "Quit"),
        ("f6,greater_than_sign", "sort", "Sort"),
        ("i", "invert_sort", "Invert"),
        ("f5,t", "toggle_tree", "Tree"),
        ("r", "toggle_tree_root", "Subtree"),
        ("f3,slash", "search", "Search"),
        ("f4,backslash", "filter", "Filter"),
        ("n", "find_next", "Next"),
        ("p", "find_previous", "Prev"),
        ("space", "tag", "Tag"),
        ("c", "tag_children", "Tag+children"),
        ("u", "untag_all", "Untag"),
        ("f", "follow", "Follow"),
        ("f7,left_square_bracket", "nice(-1)", "Nice -"),
        ("f8,right_square_bracket", "nice(1)", "Nice +"),
        ("f9,k", "kill", "Kill"),
        ("plus,minus", "toggle_branch", "Fold"),
        ("asterisk", "toggle_all_branches", "Fold all"),
        ("escape", "cancel_search", "Cancel"),
    ]

    def __init__(
        self,
        config: Config | None = None,
        settings: ViewSettings | None = None,
        *,
        readonly: bool = False,
        max_iterations: int | None = None,
        monitor: SystemMonitor | None = None,
        update_queue: "Queue[Snapshot | SnapshotError] | None" = None,
    ) -> None:
        """
        Initialize the app.

        Args:
            config: Loaded configuration (defaults if None).
            settings: Initial view settings; derived from config if None.
            readonly: Refuse kill and renice.
            max_iterations: Exit after this many updates.
            monitor: Snapshot source; a SystemMonitor on ``update_queue`` if None.
            update_queue: Queue the monitor delivers snapshots on.
        """
        super().__init__()
        self.config_data = config or Config()
        display = self.config_data.display
        if settings is None:
            settings = ViewSettings(
                sort_field=display.sort_field,
                sort_descending=display.sort_descending,
                tree_view=display.tree_view,
            )
        self.engine = Engine(
            settings,
            deferral_ticks=display.sort_deferral_ticks,
            readonly=readonly,
            max_iterations=max_iterations,
            all_branches_collapsed=display.all_branches_collapsed,
        )
        self._update_queue: Queue = update_queue if update_queue is not None else Queue()
        self._monitor = monitor or SystemMonitor(self._update_queue, poll_rate=display.refresh_seconds)
        self._key_seen = False

    def compose(self) -> ComposeResult:
        yield HeaderStats(id="header-stats")
        yield ProcessPanel(self.engine)
        yield Static("", id="status-line")
        yield Input(id="search-input")
        yield Footer()

    def on_mount(self) -> None:
        """Start sampling and the refresh timer."""
        self._monitor.start()
        self.set_interval(self.config_data.display.refresh_seconds, self.tick)
        # Paint as soon as the first sample is in
        self.set_timer(0.2, self.tick)
        self.query_one("#process-table", DataTable).focus()

    def tick(self) -> None:
        """
        One loop iteration: hand over the newest snapshot, then repaint.

        A scan failure queued after that snapshot is still reported; one
        queued before it is superseded by the good scan.
        """
        snapshot = None
        error = None
        while True:
            try:
                item = self._update_queue.get_nowait()
            except Empty:
                break
            if isinstance(item, SnapshotError):
                error = item
            else:
                snapshot = item
                error = None

        idle = not self._key_seen
        self._key_seen = False
        try:
            self.engine.tick(snapshot, idle=idle)
            if error is not None:
                self.engine.report_scan_failure(error)
            self.refresh_view()
        except Exception:
            log.exception("tick_failed")

        if self.engine.quit_requested:
            self.action_quit()

    def refresh_view(self) -> None:
        """Repaint the header, process list and status line from the engine."""
        snapshot = self.engine.last_snapshot
        if snapshot is not None:
            self.query_one("#header-stats", HeaderStats).update_stats(snapshot, self.engine)
        self.query_one(ProcessPanel).repaint()
        self.query_one("#status-line", Static).update(self._status_text())

    def _status_text(self) -> str:
        engine = self.engine
        parts = []
        if engine.settings.filter_text:
            parts.append(f"Filter: {engine.settings.filter_text}")
        if engine.settings.search_text and not engine.search_found:
            parts.append(f"Search: {engine.settings.search_text} (not found)")
        if engine.settings.follow_pid is not None:
            parts.append(f"Following {engine.settings.follow_pid}")
        if engine.status:
            parts.append(engine.status)
        return " | ".join(parts)

    def _user_input(self) -> None:
        """Note a key: this tick is not idle and re-sorting waits."""
        self._key_seen = True
        self.engine.key_pressed()

    def on_key(self, event: events.Key) -> None:
        """Keys without a binding: navigation and the incremental pid search."""
        if event.key in BOUND_KEYS:
            return
        self._user_input()
        if event.character is not None and event.character.isdigit():
            self.engine.type_pid_digit(event.character)
            self.refresh_view()
        else:
            self.engine.clear_pid_search()

    def action_sort(self) -> None:
        """Cycle through the sort columns."""
        self._user_input()
        field = self.engine.cycle_sort()
        self.notify(f"Sort: {field.value.upper()}")
        self.refresh_view()

    def action_invert_sort(self) -> None:
        self._user_input()
        self.engine.invert_sort()
        self.refresh_view()

    def action_toggle_tree(self) -> None:
        self._user_input()
        self.engine.toggle_tree_view()
        self.refresh_view()

    def action_toggle_tree_root(self) -> None:
        self._user_input()
        if self.engine.settings.tree_view:
            self.engine.toggle_tree_root()
            self.refresh_view()

    def _open_input(self, placeholder: str, value: str) -> None:
        search_input = self.query_one("#search-input", Input)
        search_input.placeholder = placeholder
        search_input.value = value
        search_input.display = True
        search_input.focus()

    def _close_input(self) -> None:
        search_input = self.query_one("#search-input", Input)
        search_input.display = False
        self.query_one("#process-table", DataTable).focus()

    def action_search(self) -> None:
        self._user_input()
        self.engine.start_search()
        self._open_input("Search:", "")

    def action_filter(self) -> None:
        self._user_input()
        self.engine.start_filter()
        self._open_input("Filter:", self.engine.settings.filter_text or "")

    def action_cancel_search(self) -> None:
        if self.engine.search_mode is SearchMode.NONE:
            return
        self._user_input()
        self.engine.stop_search(cancel=True)
        self._close_input()
        self.refresh_view()

    def on_input_changed(self, event: Input.Changed) -> None:
        """Re-apply the filter or search on every keystroke."""
        if self.engine.search_mode is SearchMode.NONE:
            return
        self._user_input()
        if self.engine.search_mode is SearchMode.FILTER:
            self.engine.set_filter_text(event.value)
        else:
            self.engine.set_search_text(event.value)
        self.refresh_view()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        self._user_input()
        self.engine.stop_search()
        self._close_input()
        self.refresh_view()

    def action_find_next(self) -> None:
        self._user_input()
        self.engine.find_next()
        self.refresh_view()

    def action_find_previous(self) -> None:
        self._user_input()
        self.engine.find_previous()
        self.refresh_view()

    def action_tag(self) -> None:
        self._user_input()
        self.engine.toggle_tag()
        self.refresh_view()

    def action_tag_children(self) -> None:
        self._user_input()
        self.engine.tag_with_children()
        self.refresh_view()

    def action_untag_all(self) -> None:
        self._user_input()
        self.engine.untag_all()
        self.refresh_view()

    def action_follow(self) -> None:
        self._user_input()
        self.engine.toggle_follow()
        self.refresh_view()

    def action_nice(self, delta: int) -> None:
        """Lower (negative delta) or raise the nice value of the targets."""
        self._user_input()
        self.engine.renice(delta)
        self.refresh_view()

    def action_kill(self) -> None:
        """Send SIGTERM to the tagged processes, or the selected one."""
        self._user_input()
        self.engine.kill()
        self.refresh_view()

    def action_toggle_branch(self) -> None:
        self._user_input()
        if self.engine.settings.tree_view:
            self.engine.toggle_collapsed()
            self.refresh_view()

    def action_toggle_all_branches(self) -> None:
        self._user_input()
        if self.engine.settings.tree_view:
            self.engine.toggle_all_branches()
            self.refresh_view()

    def action_quit(self) -> None:
        """Stop sampling and exit."""
        self._monitor.stop()
        self.engine.table.clear()
        self.exit()


BOUND_KEYS = frozenset(key for keys, *_ in ProcTopApp.BINDINGS for key in keys.split(","))
