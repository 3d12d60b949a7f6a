"""Parent/child tree ordering of the process table."""

from collections.abc import Mapping
from functools import cmp_to_key

from proctop.models import DisplayNode, ProcessRecord, SortField
from proctop.sorting import make_comparator


def build_children(processes: Mapping[int, ProcessRecord]) -> tuple[list[int], dict[int, list[int]]]:
    """
    Split the table into root pids and a parent -> children adjacency.

    A record whose parent is missing, unknown, or itself lands in the root
    bucket.
    """
    roots: list[int] = []
    children: dict[int, list[int]] = {}
    for record in processes.values():
        parent = record.parent_pid
        if parent is None or parent == record.pid or parent not in processes:
            roots.append(record.pid)
        else:
            children.setdefault(parent, []).append(record.pid)
    return roots, children


def build_tree(
    processes: Mapping[int, ProcessRecord],
    field: SortField,
    descending: bool,
    root_pid: int | None = None,
) -> list[DisplayNode]:
    """
    Produce the depth-first display order of the process tree.

    Siblings are ordered with the same comparator as the flat list.
    Collapsed nodes are emitted without their descendants. Records caught
    in a parent cycle, or hanging below one, are never reachable from a
    real root. Each such cycle is broken by emitting its first member (in
    sort order) as an extra root; records hanging below the cycle keep
    their place under their real parent.

    Args:
        processes: Mapping of pid to record.
        field: Column used to order siblings.
        descending: Direction of the column comparison.
        root_pid: When set, only this process and its subtree are emitted.
    """
    key = cmp_to_key(make_comparator(field, descending))
    roots, children = build_children(processes)

    def ordered(pids: list[int]) -> list[int]:
        return [record.pid for record in sorted((processes[p] for p in pids), key=key)]

    children = {parent: ordered(kids) for parent, kids in children.items()}
    nodes: list[DisplayNode] = []

    def cycle_entry(pid: int) -> int:
        return ordered(_cycle_members(processes, pid))[0]

    visited: set[int] = set()

    def hide(pids: list[int]) -> None:
        stack = list(pids)
        while stack:
            pid = stack.pop()
            if pid in visited:
                continue
            visited.add(pid)
            stack.extend(children.get(pid, ()))

    def walk(start: int, start_is_last: bool) -> None:
        stack = [(start, 0, start_is_last)]
        while stack:
            pid, depth, is_last = stack.pop()
            if pid in visited:
                continue
            visited.add(pid)
            record = processes[pid]
            # Children already visited are ancestors on a cycle
            kids = [kid for kid in children.get(pid, ()) if kid not in visited]
            nodes.append(
                DisplayNode(
                    pid=pid,
                    depth=depth,
                    has_children=bool(kids),
                    is_last=is_last,
                    collapsed=record.tree_collapsed,
                )
            )
            if record.tree_collapsed:
                hide(kids)
                continue
            last = len(kids) - 1
            for index in range(last, -1, -1):
                stack.append((kids[index], depth + 1, index == last))

    if root_pid is not None:
        if root_pid in processes:
            walk(root_pid, True)
        return nodes

    roots = ordered(roots)
    for index, pid in enumerate(roots):
        walk(pid, index == len(roots) - 1)

    if len(visited) < len(processes):
        for pid in ordered([pid for pid in processes if pid not in visited]):
            if pid not in visited:
                walk(cycle_entry(pid), False)

    return nodes


def _cycle_members(processes: Mapping[int, ProcessRecord], pid: int) -> list[int]:
    """Follow parent links from ``pid`` and return the cycle they run into."""
    seen: list[int] = []
    position: dict[int, int] = {}
    current = pid
    while current not in position:
        position[current] = len(seen)
        seen.append(current)
        current = processes[current].parent_pid
    return seen[position[current]:]
