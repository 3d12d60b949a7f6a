"""Redraw and deferred-sort state machine."""

from enum import Enum

# Idle ticks after a key press before a merge may reorder the flat list
SORT_DEFERRAL_TICKS = 5


class RedrawMode(Enum):
    """How much of the process list the renderer has to repaint."""

    NONE = "none"
    PARTIAL = "partial"
    FULL = "full"


class RedrawScheduler:
    """
    Tracks whether a full or partial repaint is due and when sorting may resume.

    Two knobs drive it: ``needs_full_redraw`` is raised by anything that
    changes which rows are visible or their order, and
    ``sort_deferral_counter`` counts idle ticks down from
    ``deferral_ticks`` after each key press. While the counter is non-zero
    a flat (non-tree) list is not re-sorted.
    """

    def __init__(self, deferral_ticks: int = SORT_DEFERRAL_TICKS) -> None:
        """
        Initialize the scheduler.

        Args:
            deferral_ticks: Counter value set by each key press.
        """
        if deferral_ticks < 0:
            raise ValueError(f"deferral_ticks must be >= 0, got {deferral_ticks}")
        self.deferral_ticks = deferral_ticks
        self.sort_deferral_counter = 0
        # Nothing has been drawn yet
        self.needs_full_redraw = True
        self.needs_partial_redraw = False

    def key_pressed(self) -> None:
        """Restart the deferral window."""
        self.sort_deferral_counter = self.deferral_ticks

    def idle_tick(self) -> bool:
        """
        Count down one idle tick.

        Returns:
            True if this tick brought the counter to zero.
        """
        if self.sort_deferral_counter == 0:
            return False
        self.sort_deferral_counter -= 1
        return self.sort_deferral_counter == 0

    def sort_allowed(self, tree_view: bool) -> bool:
        """Whether a merge may re-sort right now. Tree view is never deferred."""
        return tree_view or self.sort_deferral_counter == 0

    def request_full_redraw(self) -> None:
        self.needs_full_redraw = True

    def request_partial_redraw(self) -> None:
        self.needs_partial_redraw = True

    def plan(self) -> RedrawMode:
        """Decide what the next repaint has to cover."""
        if self.needs_full_redraw:
            return RedrawMode.FULL
        if self.needs_partial_redraw:
            return RedrawMode.PARTIAL
        return RedrawMode.NONE

    def redrawn(self, mode: RedrawMode) -> None:
        """Record that a repaint of the given kind has been performed."""
        if mode is RedrawMode.FULL:
            self.needs_full_redraw = False
            self.needs_partial_redraw = False
        elif mode is RedrawMode.PARTIAL:
            self.needs_partial_redraw = False
