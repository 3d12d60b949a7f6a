"""Materialized display order, recomputed only when its inputs change."""

from collections.abc import Callable, Mapping, Sequence

from proctop.models import DisplayNode, ProcessRecord, ViewSettings
from proctop.search import filter_nodes
from proctop.sorting import sort_pids
from proctop.tree import build_tree


def build_display_nodes(
    processes: Mapping[int, ProcessRecord],
    settings: ViewSettings,
    order: Sequence[int] | None = None,
) -> list[DisplayNode]:
    """
    Run the tree, sort and filter steps for the current settings.

    Args:
        processes: Mapping of pid to record.
        settings: Current view settings.
        order: Flat order to use instead of sorting (a deferred sort).
            Ignored in tree view.
    """
    if settings.tree_view:
        # A subtree root that has exited falls back to the whole tree
        root = settings.tree_root_pid if settings.tree_root_pid in processes else None
        nodes = build_tree(processes, settings.sort_field, settings.sort_descending, root)
    else:
        if order is None:
            order = sort_pids(processes, processes, settings.sort_field, settings.sort_descending)
        nodes = [DisplayNode(pid=pid) for pid in order]
    return filter_nodes(nodes, processes, settings)


class DisplayListCache:
    """
    Caches the ordered rows keyed by table generation and settings fingerprint.

    The cache never patches its contents: any key mismatch (or an explicit
    invalidate()) rebuilds the whole list through ``builder``.
    """

    def __init__(self, builder: Callable[[], list[DisplayNode]]) -> None:
        """
        Initialize the cache.

        Args:
            builder: Produces a fresh list of display nodes on demand.
        """
        self._builder = builder
        self._key: tuple | None = None
        self._nodes: list[DisplayNode] = []
        self._pids: list[int] = []
        self.rebuilds = 0

    def is_valid(self, generation: int, fingerprint: tuple) -> bool:
        return self._key == (generation, fingerprint)

    def invalidate(self) -> None:
        self._key = None

    def nodes(self, generation: int, fingerprint: tuple) -> list[DisplayNode]:
        """Return the display nodes, rebuilding if the key changed."""
        if not self.is_valid(generation, fingerprint):
            self._nodes = self._builder()
            self._pids = [node.pid for node in self._nodes]
            self._key = (generation, fingerprint)
            self.rebuilds += 1
        return self._nodes

    def get(self, generation: int, fingerprint: tuple) -> list[int]:
        """Return the ordered pids, rebuilding if the key changed."""
        self.nodes(generation, fingerprint)
        return self._pids
