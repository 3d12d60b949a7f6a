"""Core loop state: table, display order, selection, and user actions."""

import signal
from collections.abc import Callable

import psutil
import structlog

from proctop.actions import ActionResult, PsutilActions
from proctop.display import DisplayListCache, build_display_nodes
from proctop.models import DisplayNode, MergeReport, ProcessRecord, Snapshot, SortField, ViewSettings
from proctop.monitor import SnapshotError
from proctop.scheduler import SORT_DEFERRAL_TICKS, RedrawScheduler
from proctop.search import SearchMode, fallback_index, find_first, find_next, find_pid_prefix
from proctop.sorting import sort_pids
from proctop.table import ProcessTable

log = structlog.get_logger(__name__)

TARGET_GONE = "target no longer exists"


class Engine:
    """
    Turns successive snapshots into the ordered, filtered rows a renderer shows.

    The engine is driven by one loop: ``tick()`` on every timer expiry (with
    the snapshot taken for that cycle, if any) and ``key_pressed()`` on every
    key. Everything it owns is mutated only from that loop.
    """

    def __init__(
        self,
        settings: ViewSettings | None = None,
        *,
        actions: PsutilActions | None = None,
        deferral_ticks: int = SORT_DEFERRAL_TICKS,
        readonly: bool = False,
        max_iterations: int | None = None,
        all_branches_collapsed: bool = False,
    ) -> None:
        """
        Initialize the engine.

        Args:
            settings: Initial view settings.
            actions: OS-action collaborator with send_signal() and renice().
            deferral_ticks: Idle ticks a key press postpones re-sorting for.
            readonly: Refuse kill and renice actions.
            max_iterations: Request quit after this many successful updates.
            all_branches_collapsed: Start tree view with branches collapsed.
        """
        self.settings = settings or ViewSettings()
        self.table = ProcessTable()
        self.scheduler = RedrawScheduler(deferral_ticks)
        self.cache = DisplayListCache(self._build_nodes)
        self.actions = actions or PsutilActions()
        self.readonly = readonly
        self.iterations_remaining = max_iterations
        self.all_branches_collapsed = all_branches_collapsed

        self.selected = 0
        self.search_mode = SearchMode.NONE
        self.search_found = True
        self.status: str | None = None
        self.quit_requested = False
        self.last_snapshot: Snapshot | None = None
        self.last_report: MergeReport | None = None

        self._order: list[int] | None = None
        self._rows: list[int] = []
        self._selected_pid: int | None = None
        self._pid_digits = ""
        self._scan_failed = False

    # Display list

    @property
    def rows(self) -> list[int]:
        """Pids in display order, as of the last refresh."""
        return self._rows

    @property
    def nodes(self) -> list[DisplayNode]:
        """Display nodes (depth, tree flags) in display order."""
        return self.cache.nodes(self.table.generation, self.settings.fingerprint())

    @property
    def selected_pid(self) -> int | None:
        return self._selected_pid

    @property
    def selected_record(self) -> ProcessRecord | None:
        if self._selected_pid is None:
            return None
        return self.table.get(self._selected_pid)

    def _sorted_order(self) -> list[int]:
        return sort_pids(
            self.table.processes,
            self.table.processes,
            self.settings.sort_field,
            self.settings.sort_descending,
        )

    def _build_nodes(self) -> list[DisplayNode]:
        if self._order is None and not self.settings.tree_view:
            self._order = self._sorted_order()
        return build_display_nodes(self.table.processes, self.settings, self._order)

    def refresh(self) -> list[int]:
        """
        Bring the rows and selection up to date with the table and settings.

        Requests a full redraw when the rows changed and a partial one when
        only their values may have.
        """
        previous = self._rows
        rows = self.cache.get(self.table.generation, self.settings.fingerprint())
        if rows is not previous:
            if rows != previous:
                self.scheduler.request_full_redraw()
            else:
                self.scheduler.request_partial_redraw()
            self._rows = rows
            self._resolve_selection(previous)
        return rows

    def _resolve_selection(self, previous: list[int]) -> None:
        rows = self._rows
        if not rows:
            self.selected = 0
            self._selected_pid = None
            return

        follow = self.settings.follow_pid
        target = follow if follow is not None else self._selected_pid
        positions = {pid: index for index, pid in enumerate(rows)}

        if target is None:
            self.selected = min(max(self.selected, 0), len(rows) - 1)
        elif target in positions:
            self.selected = positions[target]
        else:
            if follow is not None and follow not in self.table:
                log.info("follow_target_lost", pid=follow)
                self.settings.follow_pid = None
            self.selected = fallback_index(previous, rows, target, self.selected)
        self._selected_pid = rows[self.selected]

    # Loop

    def tick(self, snapshot: "Snapshot | SnapshotError | None" = None, idle: bool = True) -> MergeReport | None:
        """
        Run one timer cycle.

        Args:
            snapshot: This cycle's sample, a SnapshotError if sampling failed,
                or None when no new sample is available.
            idle: False if a key was pressed since the previous tick.

        Returns:
            The MergeReport if a snapshot was merged.
        """
        report = None
        if isinstance(snapshot, SnapshotError):
            self.report_scan_failure(snapshot)
        elif snapshot is not None:
            report = self.update(snapshot)

        if idle and self.scheduler.idle_tick() and self.table.needs_sort:
            self._apply_sort()

        self.refresh()
        return report

    def update(self, snapshot: Snapshot) -> MergeReport:
        """Merge a snapshot and re-sort now or defer the sort."""
        first = self.table.generation == 0
        report = self.table.merge(snapshot)
        self.last_snapshot = snapshot
        self.last_report = report
        if self._scan_failed:
            self._scan_failed = False
            self.status = None

        if first and self.settings.tree_view and self.all_branches_collapsed:
            self.table.collapse_all()

        if self.settings.tree_root_pid is not None and self.settings.tree_root_pid not in self.table:
            log.info("tree_root_lost", pid=self.settings.tree_root_pid)
            self.settings.tree_root_pid = None

        if self.scheduler.sort_allowed(self.settings.tree_view):
            self._order = self._sorted_order()
            self.table.needs_sort = False
        else:
            # Keep rows where they were; newcomers go to the end
            kept = [pid for pid in self._order or () if pid in self.table]
            known = set(kept)
            self._order = kept + [pid for pid in sorted(self.table.processes) if pid not in known]
            self.table.needs_sort = True

        if report:
            self.cache.invalidate()

        if self.iterations_remaining is not None:
            self.iterations_remaining -= 1
            if self.iterations_remaining <= 0:
                self.quit_requested = True
        return report

    def _apply_sort(self) -> None:
        self._order = self._sorted_order()
        self.table.needs_sort = False
        self.cache.invalidate()
        self.scheduler.request_full_redraw()

    def report_scan_failure(self, error: Exception) -> None:
        """Keep the table as it is and show the failure on the status line."""
        log.warning("snapshot_unavailable", error=str(error))
        self._scan_failed = True
        self.status = f"Scan failed: {error}"

    def key_pressed(self) -> None:
        """Note user activity: postpones re-sorting of the flat list."""
        self.scheduler.key_pressed()
        if not self._scan_failed:
            self.status = None

    def request_quit(self) -> None:
        self.quit_requested = True

    # Navigation

    def select_index(self, index: int) -> None:
        """Move the selection to a row, clamped to the list."""
        if not self._rows:
            return
        index = min(max(index, 0), len(self._rows) - 1)
        if index != self.selected or self._rows[index] != self._selected_pid:
            self.selected = index
            self._selected_pid = self._rows[index]
            self.scheduler.request_partial_redraw()

    def select_pid(self, pid: int) -> bool:
        try:
            index = self._rows.index(pid)
        except ValueError:
            return False
        self.select_index(index)
        return True

    def move_selection(self, delta: int) -> None:
        self.select_index(self.selected + delta)

    def page(self, delta_rows: int) -> None:
        """Scroll by a page; the visible rows change entirely."""
        self.select_index(self.selected + delta_rows)
        self.scheduler.request_full_redraw()

    def toggle_follow(self) -> None:
        """Pin the selection to the selected process across updates, or unpin it."""
        if self.settings.follow_pid is None:
            self.settings.follow_pid = self._selected_pid
        else:
            self.settings.follow_pid = None
        self.scheduler.request_partial_redraw()

    # Sorting and tree

    def _resort(self) -> None:
        self._apply_sort()
        self.refresh()

    def set_sort_field(self, field: SortField, descending: bool | None = None) -> None:
        """Order by a column, in its default direction unless one is given."""
        self.settings.sort_field = field
        self.settings.sort_descending = field.default_descending if descending is None else descending
        self._resort()

    def cycle_sort(self) -> SortField:
        """Switch to the next sort column and return it."""
        fields = list(SortField)
        field = fields[(fields.index(self.settings.sort_field) + 1) % len(fields)]
        self.set_sort_field(field)
        return field

    def invert_sort(self) -> None:
        self.settings.sort_descending = not self.settings.sort_descending
        self._resort()

    def toggle_tree_view(self) -> bool:
        """Switch between tree and flat view. Returns the new tree flag."""
        self.settings.tree_view = not self.settings.tree_view
        if self.settings.tree_view and self.all_branches_collapsed:
            self.table.collapse_all()
        self._resort()
        return self.settings.tree_view

    def toggle_tree_root(self) -> int | None:
        """Limit the tree to the selected process's subtree, or show the whole tree again."""
        if self.settings.tree_root_pid is not None:
            self.settings.tree_root_pid = None
        else:
            self.settings.tree_root_pid = self._selected_pid
        self._resort()
        return self.settings.tree_root_pid

    def _tree_edit(self, edit: Callable[[], object]) -> None:
        edit()
        self.cache.invalidate()
        self.scheduler.request_full_redraw()
        self.refresh()

    def toggle_collapsed(self) -> None:
        """Expand or collapse the selected branch."""
        if self._selected_pid is not None:
            self._tree_edit(lambda: self.table.toggle_collapsed(self._selected_pid))

    def expand_selected(self) -> None:
        if self._selected_pid is not None:
            self._tree_edit(lambda: self.table.expand(self._selected_pid))

    def collapse_selected(self) -> None:
        if self._selected_pid is not None:
            self._tree_edit(lambda: self.table.collapse(self._selected_pid))

    def toggle_all_branches(self) -> None:
        self._tree_edit(self.table.toggle_all)

    # Filter and search

    def start_search(self) -> None:
        self.search_mode = SearchMode.SEARCH
        self.settings.search_text = None
        self.search_found = True

    def start_filter(self) -> None:
        self.search_mode = SearchMode.FILTER

    def stop_search(self, cancel: bool = False) -> None:
        """
        Leave the text entry mode.

        Cancelling a filter clears it; cancelling a search drops the search
        text. Confirming keeps either.
        """
        if cancel:
            if self.search_mode is SearchMode.FILTER:
                self.set_filter_text(None)
            elif self.search_mode is SearchMode.SEARCH:
                self.settings.search_text = None
        self.search_mode = SearchMode.NONE

    def set_filter_text(self, text: str | None) -> None:
        """Narrow the rows to commands containing ``text`` (case-insensitive)."""
        text = text or None
        if text != self.settings.filter_text:
            self.settings.filter_text = text
            self.scheduler.request_full_redraw()
        self.refresh()

    def set_search_text(self, text: str | None) -> None:
        """Select the first row whose command contains ``text`` and follow it."""
        text = text or None
        if text != self.settings.search_text:
            self.scheduler.request_full_redraw()
        self.settings.search_text = text
        if text is None:
            self.search_found = True
            self.settings.follow_pid = None
            return
        index = find_first(self._rows, self.table.processes, text)
        self._search_landed(index)

    def find_next(self, step: int = 1) -> bool:
        """Move to the next (step 1) or previous (step -1) search match."""
        index = find_next(self._rows, self.table.processes, self.settings.search_text, self.selected, step)
        self._search_landed(index)
        return index is not None

    def find_previous(self) -> bool:
        return self.find_next(-1)

    def _search_landed(self, index: int | None) -> None:
        self.search_found = index is not None
        if index is not None:
            self.select_index(index)
            self.settings.follow_pid = self._rows[index]

    def type_pid_digit(self, digit: str) -> None:
        """Extend the incremental pid search and jump to the first matching pid."""
        self._pid_digits += digit
        index = find_pid_prefix(self._rows, self._pid_digits)
        if index is not None:
            self.select_index(index)

    def clear_pid_search(self) -> None:
        self._pid_digits = ""

    # Tagging

    def toggle_tag(self) -> None:
        if self._selected_pid is not None and self.table.toggle_tag(self._selected_pid):
            self.scheduler.request_partial_redraw()

    def tag_with_children(self) -> None:
        if self._selected_pid is not None and self.table.tag_with_children(self._selected_pid):
            self.scheduler.request_partial_redraw()

    def untag_all(self) -> None:
        self.table.untag_all()
        self.scheduler.request_partial_redraw()

    # Actions

    def targets(self) -> list[int]:
        """Tagged pids if any are tagged, otherwise the selected pid."""
        tagged = self.table.tagged()
        if tagged:
            return tagged
        return [self._selected_pid] if self._selected_pid is not None else []

    def kill(self, sig: int = signal.SIGTERM, pids: list[int] | None = None) -> list[ActionResult]:
        """Send a signal to the target processes."""
        return self._act("signal", lambda pid: self.actions.send_signal(pid, sig), pids)

    def renice(self, delta: int, pids: list[int] | None = None) -> list[ActionResult]:
        """Shift the nice value of the target processes."""
        return self._act("renice", lambda pid: self.actions.renice(pid, delta), pids)

    def _act(self, name: str, apply: Callable[[int], object], pids: list[int] | None) -> list[ActionResult]:
        pids = self.targets() if pids is None else pids
        if self.readonly:
            self.status = "Read-only mode: action refused"
            return [ActionResult(pid, False, "read-only mode") for pid in pids]

        results: list[ActionResult] = []
        for pid in pids:
            if pid not in self.table:
                results.append(ActionResult(pid, False, TARGET_GONE))
                continue
            try:
                apply(pid)
            except psutil.NoSuchProcess:
                results.append(ActionResult(pid, False, TARGET_GONE))
            except psutil.AccessDenied:
                results.append(ActionResult(pid, False, "permission denied"))
            except (psutil.Error, OSError) as e:
                results.append(ActionResult(pid, False, str(e) or type(e).__name__))
            else:
                results.append(ActionResult(pid, True))

        failed = [r for r in results if not r.ok]
        log.info(
            "user_action",
            action=name,
            pids=pids,
            failed={r.pid: r.message for r in failed},
        )
        if failed:
            first = failed[0]
            self.status = f"{name} failed for {len(failed)} of {len(results)}: pid {first.pid} {first.message}"
        elif results:
            self.status = f"{name} applied to {len(results)} process(es)"
        return results
