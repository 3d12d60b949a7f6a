"""Tests for the tree builder."""

from proctop.models import ProcessRecord, SortField
from proctop.tree import build_children, build_tree


def _table(*pairs: tuple[int, int | None], **cpu: float) -> dict[int, ProcessRecord]:
    """Build records from (pid, parent) pairs; cpu values keyed as p<pid>."""
    return {
        pid: ProcessRecord(pid=pid, parent_pid=parent, cpu_percent=cpu.get(f"p{pid}"))
        for pid, parent in pairs
    }


def _order(nodes):
    return [(node.pid, node.depth) for node in nodes]


class TestBuildChildren:
    """Tests for build_children()."""

    def test_orphans_and_self_parents_are_roots(self):
        """Test missing, unknown and self parents all make roots."""
        processes = _table((1, 0), (2, 1), (3, 99), (4, 4), (5, None))
        roots, children = build_children(processes)
        assert sorted(roots) == [1, 3, 4, 5]
        assert children == {1: [2]}


class TestBuildTree:
    """Tests for build_tree()."""

    def test_parent_with_two_children(self):
        """Test a root with two children, ordered by pid."""
        processes = _table((1, 0), (2, 1), (3, 1))
        nodes = build_tree(processes, SortField.PID, descending=False)

        assert _order(nodes) == [(1, 0), (2, 1), (3, 1)]
        assert nodes[0].has_children
        assert not nodes[1].has_children
        assert not nodes[1].is_last
        assert nodes[2].is_last

    def test_siblings_follow_sort(self):
        """Test siblings use the flat comparator."""
        processes = _table((1, 0), (2, 1), (3, 1), p2=1.0, p3=9.0)
        nodes = build_tree(processes, SortField.CPU, descending=True)
        assert [node.pid for node in nodes] == [1, 3, 2]

    def test_children_directly_follow_parent(self):
        """Test every node is emitted after its parent, depth first."""
        processes = _table((1, 0), (2, 1), (3, 2), (4, 1), (5, 0), (6, 5))
        nodes = build_tree(processes, SortField.PID, descending=False)
        assert _order(nodes) == [(1, 0), (2, 1), (3, 2), (4, 1), (5, 0), (6, 1)]

    def test_every_record_emitted_once(self):
        """Test the tree covers the whole table exactly once."""
        processes = _table(*[(pid, pid // 2) for pid in range(1, 40)])
        nodes = build_tree(processes, SortField.PID, descending=False)
        pids = [node.pid for node in nodes]
        assert sorted(pids) == sorted(processes)
        assert len(pids) == len(set(pids))

    def test_cycle_is_broken(self):
        """Test a parent cycle terminates and emits each member once."""
        processes = _table((1, 0), (10, 11), (11, 12), (12, 10))
        nodes = build_tree(processes, SortField.PID, descending=False)

        assert [node.pid for node in nodes] == [1, 10, 12, 11]
        assert [node.depth for node in nodes] == [0, 0, 1, 2]
        assert not nodes[-1].has_children

    def test_process_below_cycle_stays_under_parent(self):
        """Test a process whose parent is on a cycle is nested, not a root."""
        processes = _table((1, 0), (5, 10), (10, 11), (11, 10))
        nodes = build_tree(processes, SortField.PID, descending=False)

        assert _order(nodes) == [(1, 0), (10, 0), (5, 1), (11, 1)]
        by_pid = {node.pid: node for node in nodes}
        assert by_pid[10].has_children
        assert not by_pid[11].has_children

    def test_cycle_entry_follows_sort(self):
        """Test the cycle member that sorts first becomes the extra root."""
        processes = _table((3, 20), (20, 21), (21, 20), p20=1.0, p21=9.0, p3=50.0)
        nodes = build_tree(processes, SortField.CPU, descending=True)

        assert _order(nodes) == [(21, 0), (20, 1), (3, 2)]

    def test_collapsed_branch_hides_descendants(self):
        """Test a collapsed node is shown without its subtree."""
        processes = _table((1, 0), (2, 1), (3, 2), (4, 1))
        processes[2].tree_collapsed = True
        nodes = build_tree(processes, SortField.PID, descending=False)

        assert [node.pid for node in nodes] == [1, 2, 4]
        assert nodes[1].collapsed
        assert nodes[1].has_children

    def test_root_pid_limits_output(self):
        """Test a chosen root emits only its subtree."""
        processes = _table((1, 0), (2, 1), (3, 2), (4, 1))
        nodes = build_tree(processes, SortField.PID, descending=False, root_pid=2)
        assert _order(nodes) == [(2, 0), (3, 1)]

    def test_missing_root_pid(self):
        """Test an unknown root gives an empty tree."""
        assert build_tree(_table((1, 0)), SortField.PID, descending=False, root_pid=50) == []

    def test_empty_table(self):
        """Test an empty table gives an empty tree."""
        assert build_tree({}, SortField.CPU, descending=True) == []
