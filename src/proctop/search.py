"""Incremental filter and search over the displayed processes."""

from collections.abc import Mapping, Sequence
from enum import Enum

from proctop.models import DisplayNode, ProcessRecord, ViewSettings


class SearchMode(Enum):
    """What the text entry line is currently editing."""

    NONE = "none"
    SEARCH = "search"
    FILTER = "filter"


def matches(record: ProcessRecord, text: str | None) -> bool:
    """Case-insensitive substring match against the command text."""
    if not text:
        return True
    return text.lower() in record.display_command.lower()


def is_visible(record: ProcessRecord, settings: ViewSettings) -> bool:
    """Whether a record passes the text, user and pid filters."""
    if settings.pid_filter is not None and record.pid not in settings.pid_filter:
        return False
    if settings.user_filter is not None and record.user != settings.user_filter:
        return False
    return matches(record, settings.filter_text)


def filter_nodes(
    nodes: Sequence[DisplayNode],
    processes: Mapping[int, ProcessRecord],
    settings: ViewSettings,
) -> list[DisplayNode]:
    """Keep only the nodes whose records pass the active filters, in order."""
    return [node for node in nodes if is_visible(processes[node.pid], settings)]


def find_first(
    pids: Sequence[int],
    processes: Mapping[int, ProcessRecord],
    text: str | None,
) -> int | None:
    """Index of the first row whose command contains ``text``."""
    if not text:
        return None
    for index, pid in enumerate(pids):
        if matches(processes[pid], text):
            return index
    return None


def find_next(
    pids: Sequence[int],
    processes: Mapping[int, ProcessRecord],
    text: str | None,
    start: int,
    step: int = 1,
) -> int | None:
    """
    Walk from ``start`` in direction ``step``, wrapping around, to the next match.

    The starting row itself is not considered. Returns None when the walk
    gets back to ``start`` without a match.
    """
    size = len(pids)
    if not text or size == 0:
        return None
    start = min(max(start, 0), size - 1)
    index = start
    for _ in range(size - 1):
        index = (index + step) % size
        if matches(processes[pids[index]], text):
            return index
    return None


def find_pid_prefix(pids: Sequence[int], digits: str) -> int | None:
    """Index of the first row whose pid starts with ``digits``."""
    if not digits:
        return None
    for index, pid in enumerate(pids):
        if str(pid).startswith(digits):
            return index
    return None


def fallback_index(previous: Sequence[int], current: Sequence[int], lost_pid: int, old_index: int) -> int:
    """
    Pick a row to select after the selected pid disappeared.

    Prefers the nearest surviving neighbour of the lost pid in the previous
    order (the following row first), otherwise clamps the old index to the
    new list bounds.
    """
    if not current:
        return 0
    positions = {pid: index for index, pid in enumerate(current)}
    try:
        origin = previous.index(lost_pid)
    except ValueError:
        origin = None
    if origin is not None:
        for distance in range(1, len(previous)):
            for candidate in (origin + distance, origin - distance):
                if 0 <= candidate < len(previous) and previous[candidate] in positions:
                    return positions[previous[candidate]]
    return min(max(old_index, 0), len(current) - 1)
